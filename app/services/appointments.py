"""Ciclo de vida de turnos: alta (simple o serie), edición, estado, baja.

Orden de trabajo en todas las operaciones: validar y chequear primero, escribir
después, un solo commit al final. Si algo falla antes de escribir, la sesión se
descarta sin cambios.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import day_of_week, format_hhmm, at_time, start_of_next_day
from app.core.errors import ValidationFailed, AvailabilityViolation, NotFound
from app.models.appointment import (
    Appointment, AppointmentStatus, AppointmentType, NON_BLOCKING_TYPES, CANCELLED_STATUSES,
)
from app.models.clinic import Clinic
from app.models.links import AppointmentProfessional, RecurrenceProfessional
from app.models.patient import Patient
from app.models.professional import Professional
from app.models.recurrence import AppointmentRecurrence, RecurrenceEndType
from app.schemas.appointment import AppointmentCreate, AppointmentUpdate
from app.services import availability as av
from app.services.conflicts import check_conflict, check_conflicts_bulk, conflict_error
from app.services.recurrence import (
    RecurrenceDate, RecurrenceOptions, calculate_recurrence_dates, validate_recurrence_options,
)
from app.services.status import compute_status_update, should_update_last_visit

logger = logging.getLogger(__name__)


@dataclass
class CreationResult:
    appointments: list[Appointment]
    recurrence: AppointmentRecurrence | None = None


@dataclass
class UpdateResult:
    appointment: Appointment
    old_values: dict = field(default_factory=dict)
    status_changed: bool = False


# ---------- lookups ----------
async def get_professional(db: AsyncSession, clinic_id: str, professional_id: str) -> Professional:
    res = await db.execute(
        select(Professional).where(Professional.id == professional_id, Professional.clinic_id == clinic_id)
    )
    prof = res.scalar_one_or_none()
    if not prof:
        raise NotFound("Profesional no encontrado en la clínica")
    return prof


async def get_active_patient(db: AsyncSession, clinic_id: str, patient_id: str) -> Patient:
    res = await db.execute(
        select(Patient).where(Patient.id == patient_id, Patient.clinic_id == clinic_id, Patient.is_active.is_(True))
    )
    patient = res.scalar_one_or_none()
    if not patient:
        raise NotFound("Paciente no encontrado o inactivo en la clínica")
    return patient


async def normalize_additional(
    db: AsyncSession, clinic_id: str, primary_id: str, ids: Iterable[str] | None,
) -> list[str]:
    """Sin duplicados, sin el profesional principal, y todos de la clínica."""
    out: list[str] = []
    for pid in ids or []:
        if pid != primary_id and pid not in out:
            out.append(pid)
    if out:
        res = await db.execute(
            select(Professional.id).where(Professional.id.in_(out), Professional.clinic_id == clinic_id)
        )
        found = set(res.scalars().all())
        missing = [p for p in out if p not in found]
        if missing:
            raise NotFound(f"Profesionales adicionales no encontrados: {', '.join(missing)}")
    return out


async def load_additional_ids(db: AsyncSession, appointment_id: str) -> list[str]:
    res = await db.execute(
        select(AppointmentProfessional.professional_id).where(AppointmentProfessional.appointment_id == appointment_id)
    )
    return list(res.scalars().all())


async def replace_additional(db: AsyncSession, appointment_ids: list[str], professional_ids: list[str]) -> None:
    if not appointment_ids:
        return
    await db.execute(
        delete(AppointmentProfessional).where(AppointmentProfessional.appointment_id.in_(appointment_ids))
    )
    db.add_all([
        AppointmentProfessional(appointment_id=aid, professional_id=pid)
        for aid in appointment_ids for pid in professional_ids
    ])


# ---------- create ----------
def _planned_dates(payload: AppointmentCreate, duration: int) -> list[RecurrenceDate]:
    if not payload.recurrence:
        start = at_time(payload.date, payload.start_time)
        return [RecurrenceDate(payload.date, start, start + timedelta(minutes=duration))]
    rec = payload.recurrence
    options = RecurrenceOptions(rec.recurrence_type, rec.recurrence_end_type, rec.end_date, rec.occurrences)
    validate_recurrence_options(options, payload.date)
    return calculate_recurrence_dates(payload.date, payload.start_time, duration, options)


async def create_appointments(
    db: AsyncSession,
    clinic: Clinic,
    professional: Professional,
    payload: AppointmentCreate,
    now: datetime,
) -> CreationResult:
    """Turno simple o serie completa. Todo o nada."""
    if payload.date < now.date():
        raise ValidationFailed("No se pueden agendar turnos en el pasado")

    duration = payload.duration or professional.appointment_duration
    if payload.patient_id:
        await get_active_patient(db, clinic.id, payload.patient_id)
    additional = await normalize_additional(db, clinic.id, professional.id, payload.additional_professional_ids)
    blocks_time = payload.blocks_time if payload.blocks_time is not None else payload.type not in NON_BLOCKING_TYPES

    dates = _planned_dates(payload, duration)

    # 1) disponibilidad de todas las instancias (solo consultas)
    if payload.type == AppointmentType.CONSULTA:
        rules, exceptions = await av.load_availability(
            db, professional.id, clinic.id, dates[0].date, dates[-1].date
        )
        failure = av.validate_series_availability(dates, rules, exceptions)
        if failure:
            index, day, decision = failure
            raise AvailabilityViolation(
                decision.message or "Horario no disponible",
                reason=decision.reason.value,
                conflict_date=day.isoformat(),
                occurrence_index=index + 1,
            )

    # 2) conflictos de toda la serie, bajo lock
    if blocks_time:
        conflicts = await check_conflicts_bulk(
            db,
            professional.id,
            [(d.scheduled_at, d.end_at) for d in dates],
            professional.buffer_between_slots,
            additional_professional_ids=additional,
        )
        if conflicts:
            first = conflicts[0]
            raise conflict_error(
                first.conflicting_appointment,
                conflict_date=dates[first.index].iso,
                occurrence_index=first.index + 1,
            )

    # 3) escribir
    recurrence = None
    if payload.recurrence:
        rec = payload.recurrence
        recurrence = AppointmentRecurrence(
            id=str(uuid.uuid4()),
            clinic_id=clinic.id,
            professional_id=professional.id,
            patient_id=payload.patient_id,
            modality=payload.modality,
            day_of_week=day_of_week(payload.date),
            start_time=payload.start_time,
            end_time=format_hhmm(dates[0].end_at),
            duration=duration,
            recurrence_type=rec.recurrence_type,
            recurrence_end_type=rec.recurrence_end_type,
            start_date=payload.date,
            end_date=rec.end_date if rec.recurrence_end_type == RecurrenceEndType.BY_DATE else None,
            occurrences=rec.occurrences if rec.recurrence_end_type == RecurrenceEndType.BY_OCCURRENCES else None,
            last_generated_date=dates[-1].date if rec.recurrence_end_type == RecurrenceEndType.INDEFINITE else None,
            exceptions=[],
            is_active=True,
        )
        db.add(recurrence)
        if additional:
            db.add_all([RecurrenceProfessional(recurrence_id=recurrence.id, professional_id=pid) for pid in additional])

    created = [
        new_appointment(
            clinic.id, professional.id, d.scheduled_at, d.end_at,
            patient_id=payload.patient_id,
            recurrence_id=recurrence.id if recurrence else None,
            type=payload.type,
            title=payload.title,
            modality=payload.modality,
            blocks_time=blocks_time,
            notes=payload.notes,
            price=payload.price,
        )
        for d in dates
    ]
    db.add_all(created)
    if additional:
        db.add_all([
            AppointmentProfessional(appointment_id=ap.id, professional_id=pid)
            for ap in created for pid in additional
        ])
    await db.commit()

    if recurrence:
        logger.info("Serie %s creada: %d turnos (%s)", recurrence.id, len(created),
                    recurrence.recurrence_type.value)
    return CreationResult(created, recurrence)


def new_appointment(clinic_id: str, professional_id: str, scheduled_at: datetime, end_at: datetime,
                    **fields) -> Appointment:
    fields.setdefault("status", AppointmentStatus.AGENDADO)
    fields.setdefault("blocks_time", True)
    return Appointment(
        id=str(uuid.uuid4()),
        clinic_id=clinic_id,
        professional_id=professional_id,
        scheduled_at=scheduled_at,
        end_at=end_at,
        **fields,
    )


# ---------- update ----------
_SIMPLE_FIELDS = ("title", "modality", "notes", "price", "blocks_time")


async def update_appointment(
    db: AsyncSession,
    appointment: Appointment,
    changes: AppointmentUpdate,
    now: datetime,
) -> UpdateResult:
    sent = changes.model_fields_set
    result = UpdateResult(appointment)
    old = result.old_values

    new_start = changes.scheduled_at if "scheduled_at" in sent and changes.scheduled_at else appointment.scheduled_at
    if "end_at" in sent and changes.end_at:
        new_end = changes.end_at
    elif new_start != appointment.scheduled_at:
        # mueve el turno conservando la duración
        new_end = new_start + (appointment.end_at - appointment.scheduled_at)
    else:
        new_end = appointment.end_at
    if new_end <= new_start:
        raise ValidationFailed("end_at debe ser posterior a scheduled_at")

    professional_id = appointment.professional_id
    if "professional_id" in sent and changes.professional_id and changes.professional_id != professional_id:
        await get_professional(db, appointment.clinic_id, changes.professional_id)
        professional_id = changes.professional_id
    professional = await get_professional(db, appointment.clinic_id, professional_id)

    if "patient_id" in sent and changes.patient_id and changes.patient_id != appointment.patient_id:
        await get_active_patient(db, appointment.clinic_id, changes.patient_id)

    roster_changed = "additional_professional_ids" in sent and changes.additional_professional_ids is not None
    if roster_changed:
        additional = await normalize_additional(db, appointment.clinic_id, professional_id,
                                                changes.additional_professional_ids)
    else:
        additional = [p for p in await load_additional_ids(db, appointment.id) if p != professional_id]

    status_data: dict = {}
    target_status = appointment.status
    if "status" in sent and changes.status and changes.status != appointment.status:
        status_data = compute_status_update(appointment.status, changes.status, now)
        target_status = changes.status

    blocks_time = changes.blocks_time if "blocks_time" in sent and changes.blocks_time is not None else appointment.blocks_time
    moved = (new_start != appointment.scheduled_at or new_end != appointment.end_at
             or professional_id != appointment.professional_id or roster_changed
             or (blocks_time and not appointment.blocks_time))
    if moved and blocks_time and target_status not in CANCELLED_STATUSES:
        found = await check_conflict(
            db, professional_id, new_start, new_end,
            professional.buffer_between_slots,
            exclude_appointment_id=appointment.id,
            additional_professional_ids=additional,
        )
        if found.has_conflict:
            raise conflict_error(found.conflicting_appointment, conflict_date=new_start.date().isoformat())

    # --- escribir ---
    if new_start != appointment.scheduled_at or new_end != appointment.end_at:
        old.update(scheduled_at=appointment.scheduled_at, end_at=appointment.end_at)
        appointment.scheduled_at, appointment.end_at = new_start, new_end
    if professional_id != appointment.professional_id:
        old["professional_id"] = appointment.professional_id
        appointment.professional_id = professional_id
    if "patient_id" in sent and changes.patient_id != appointment.patient_id:
        old["patient_id"] = appointment.patient_id
        appointment.patient_id = changes.patient_id
    for name in _SIMPLE_FIELDS:
        if name in sent:
            value = getattr(changes, name)
            if name in ("title", "modality", "blocks_time") and value is None:
                continue
            if getattr(appointment, name) != value:
                old[name] = getattr(appointment, name)
                setattr(appointment, name, value)
    if status_data:
        old["status"] = appointment.status
        for k, v in status_data.items():
            setattr(appointment, k, v)
        if "cancellation_reason" in sent:
            appointment.cancellation_reason = changes.cancellation_reason
        await _after_status_change(db, appointment, target_status)
        result.status_changed = True
    if roster_changed:
        await replace_additional(db, [appointment.id], additional)

    await db.commit()
    return result


async def _after_status_change(db: AsyncSession, appointment: Appointment, target: AppointmentStatus) -> None:
    if should_update_last_visit(target) and appointment.patient_id:
        patient = await db.get(Patient, appointment.patient_id)
        if patient:
            patient.last_visit_at = appointment.scheduled_at


async def change_status(
    db: AsyncSession,
    appointment: Appointment,
    target: AppointmentStatus,
    now: datetime,
    reason: str | None = None,
) -> AppointmentStatus:
    """Aplica una transición válida y commitea. Devuelve el estado anterior."""
    previous = appointment.status
    data = compute_status_update(previous, target, now)
    for k, v in data.items():
        setattr(appointment, k, v)
    if target in CANCELLED_STATUSES:
        appointment.cancellation_reason = reason
    await _after_status_change(db, appointment, target)
    await db.commit()
    return previous


async def cancel_appointment(
    db: AsyncSession,
    appointment: Appointment,
    cancelled_by: str,
    now: datetime,
    reason: str | None = None,
) -> AppointmentStatus:
    target = (AppointmentStatus.CANCELADO_PACIENTE if cancelled_by == "patient"
              else AppointmentStatus.CANCELADO_PROFISSIONAL)
    return await change_status(db, appointment, target, now, reason)


async def delete_appointment(db: AsyncSession, appointment: Appointment) -> None:
    """Borra un turno. La serie (si tiene) queda intacta."""
    await db.execute(delete(AppointmentProfessional).where(AppointmentProfessional.appointment_id == appointment.id))
    await db.execute(delete(Appointment).where(Appointment.id == appointment.id))
    await db.commit()


def soft_cancel(appointment: Appointment, now: datetime, reason: str,
                status: AppointmentStatus = AppointmentStatus.CANCELADO_PROFISSIONAL) -> None:
    appointment.status = status
    appointment.cancelled_at = now
    appointment.cancellation_reason = reason


async def list_appointments(
    db: AsyncSession,
    clinic_id: str,
    professional_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    status: AppointmentStatus | None = None,
    patient_id: str | None = None,
) -> list[Appointment]:
    q = select(Appointment).where(Appointment.clinic_id == clinic_id)
    if professional_id:
        co = select(AppointmentProfessional.appointment_id).where(
            AppointmentProfessional.professional_id == professional_id)
        q = q.where((Appointment.professional_id == professional_id) | Appointment.id.in_(co))
    if date_from:
        q = q.where(Appointment.scheduled_at >= at_time(date_from, "00:00"))
    if date_to:
        q = q.where(Appointment.scheduled_at < start_of_next_day(date_to))
    if status:
        q = q.where(Appointment.status == status)
    if patient_id:
        q = q.where(Appointment.patient_id == patient_id)
    res = await db.execute(q.order_by(Appointment.scheduled_at))
    return list(res.scalars().all())
