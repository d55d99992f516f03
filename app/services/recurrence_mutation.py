"""Cambios sobre series en curso: edición, finalización, saltear/reponer fechas.

Solo se tocan los turnos futuros de la serie (AGENDADO/CONFIRMADO desde ahora).
Todo se chequea antes de escribir; un conflicto aborta la mutación entera.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import at_time, minutes_between, start_of_next_day, format_date_br
from app.core.db import raise_lock_timeout
from app.core.errors import ValidationFailed, MutationConflicts
from app.models.appointment import Appointment, AppointmentType, ACTIVE_STATUSES
from app.models.links import AppointmentProfessional, RecurrenceProfessional
from app.models.recurrence import AppointmentRecurrence, RecurrenceType, RecurrenceEndType
from app.schemas.recurrence import RecurrenceUpdate
from app.services.appointments import normalize_additional, new_appointment, soft_cancel
from app.services.audit import AuditAction, audit_entry, record_audit_entries
from app.services.conflicts import check_conflicts_bulk, check_conflict, conflict_error
from app.services.recurrence import add_exception, remove_exception, calculate_day_shifted_dates, day_shift_offset

logger = logging.getLogger(__name__)

FINALIZED_REASON = "Recurrencia finalizada"
SKIPPED_REASON = "Fecha salteada"


@dataclass
class MutationResult:
    recurrence: AppointmentRecurrence
    updated: int = 0
    deleted: int = 0
    cancelled: int = 0
    created: int = 0
    old_values: dict = field(default_factory=dict)
    appointments: list[Appointment] = field(default_factory=list)


async def load_future_appointments(db: AsyncSession, recurrence_id: str, now: datetime) -> list[Appointment]:
    res = await db.execute(
        select(Appointment)
        .where(
            Appointment.recurrence_id == recurrence_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.scheduled_at >= now,
        )
        .order_by(Appointment.scheduled_at)
    )
    return list(res.scalars().all())


async def load_recurrence_roster(db: AsyncSession, recurrence_id: str) -> list[str]:
    res = await db.execute(
        select(RecurrenceProfessional.professional_id).where(RecurrenceProfessional.recurrence_id == recurrence_id)
    )
    return list(res.scalars().all())


def _fits_new_pattern(anchor: date, d: date, recurrence_type: RecurrenceType) -> bool:
    if recurrence_type == RecurrenceType.MONTHLY:
        return d.day == anchor.day
    step = 7 if recurrence_type == RecurrenceType.WEEKLY else 14
    return (d - anchor).days % step == 0


def snapshot(rec: AppointmentRecurrence) -> dict:
    return {
        "recurrence_type": rec.recurrence_type,
        "start_time": rec.start_time,
        "end_time": rec.end_time,
        "modality": rec.modality,
        "recurrence_end_type": rec.recurrence_end_type,
        "end_date": rec.end_date,
        "occurrences": rec.occurrences,
        "day_of_week": rec.day_of_week,
    }


async def update_recurrence(
    db: AsyncSession,
    recurrence: AppointmentRecurrence,
    changes: RecurrenceUpdate,
    buffer_minutes: int,
    now: datetime,
) -> MutationResult:
    if not recurrence.is_active:
        raise ValidationFailed("La recurrencia está inactiva")

    sent = changes.model_fields_set

    def pick(name):
        value = getattr(changes, name)
        return value if name in sent and value is not None else getattr(recurrence, name)

    new_type = pick("recurrence_type")
    new_start_time = pick("start_time")
    new_end_time = pick("end_time")
    new_modality = pick("modality")
    new_end_type = pick("recurrence_end_type")
    new_dow = pick("day_of_week")
    # end_date / occurrences admiten null explícito
    new_end_date = changes.end_date if "end_date" in sent else recurrence.end_date
    new_occurrences = changes.occurrences if "occurrences" in sent else recurrence.occurrences

    if new_end_type == RecurrenceEndType.BY_DATE and not new_end_date:
        raise ValidationFailed("La fecha de fin es obligatoria para recurrencias por fecha")
    if new_end_type == RecurrenceEndType.BY_OCCURRENCES and not new_occurrences:
        raise ValidationFailed("La cantidad de sesiones es obligatoria para recurrencias por cantidad")
    if new_end_type == RecurrenceEndType.BY_DATE and new_end_date < recurrence.start_date:
        raise ValidationFailed("La fecha de fin no puede ser anterior a la de inicio")
    if new_end_time <= new_start_time:
        raise ValidationFailed("La hora de fin debe ser posterior a la de inicio")

    current_roster = await load_recurrence_roster(db, recurrence.id)
    roster_changed = False
    new_roster = current_roster
    if "additional_professional_ids" in sent and changes.additional_professional_ids is not None:
        new_roster = await normalize_additional(db, recurrence.clinic_id, recurrence.professional_id,
                                                changes.additional_professional_ids)
        roster_changed = set(new_roster) != set(current_roster)

    type_changed = new_type != recurrence.recurrence_type
    day_changed = new_dow != recurrence.day_of_week
    time_changed = (new_start_time, new_end_time) != (recurrence.start_time, recurrence.end_time)
    modality_changed = new_modality != recurrence.modality
    end_changed = (new_end_type != recurrence.recurrence_end_type or new_end_date != recurrence.end_date
                   or new_occurrences != recurrence.occurrences)

    if not (type_changed or day_changed or time_changed or modality_changed or end_changed or roster_changed):
        raise ValidationFailed("No hay cambios para aplicar")

    await raise_lock_timeout(db)
    future = await load_future_appointments(db, recurrence.id, now)
    result = MutationResult(recurrence, old_values=snapshot(recurrence))

    # 1) cambio de frecuencia: se conservan los turnos que caen en el nuevo patrón
    to_delete: list[Appointment] = []
    kept = future
    if type_changed and future:
        anchor = future[0].scheduled_at.date()
        kept = [ap for ap in future if _fits_new_pattern(anchor, ap.scheduled_at.date(), new_type)]
        to_delete = [ap for ap in future if ap not in kept]

    # 2) rango final de cada turno que queda
    apply_future = changes.apply_to == "future" or day_changed
    time_applied = time_changed and apply_future
    offset = timedelta(days=day_shift_offset(recurrence.day_of_week, new_dow)) if day_changed else timedelta(0)
    planned: list[tuple[Appointment, datetime, datetime]] = []
    for ap in kept:
        start, end = ap.scheduled_at, ap.end_at
        if day_changed:
            start, end = calculate_day_shifted_dates(start, end, recurrence.day_of_week, new_dow)
        if time_applied:
            start, end = at_time(start.date(), new_start_time), at_time(start.date(), new_end_time)
        planned.append((ap, start, end))

    # 3) conflictos, antes de escribir nada
    if planned and (day_changed or time_applied or roster_changed):
        found = await check_conflicts_bulk(
            db,
            recurrence.professional_id,
            [(s, e) for _, s, e in planned],
            buffer_minutes,
            exclude_appointment_ids=[ap.id for ap in future],
            additional_professional_ids=new_roster,
        )
        if found:
            if day_changed:
                code, msg = "DAY_CHANGE_CONFLICTS", "Conflictos de horario al cambiar el día de la semana"
            elif time_applied:
                code, msg = "TIME_CHANGE_CONFLICTS", "Conflictos de horario al cambiar el horario"
            else:
                code, msg = "ROSTER_CHANGE_CONFLICTS", "Conflictos de agenda de los profesionales adicionales"
            logger.warning("Serie %s: %d conflictos (%s)", recurrence.id, len(found), code)
            raise MutationConflicts(
                msg,
                code=code,
                conflicts=[
                    {
                        "date": format_date_br(planned[c.index][1]),
                        "conflicts_with": c.conflicting_appointment.display_name,
                    }
                    for c in found
                ],
            )

    # --- escribir ---
    if to_delete:
        ids = [ap.id for ap in to_delete]
        await db.execute(delete(AppointmentProfessional).where(AppointmentProfessional.appointment_id.in_(ids)))
        await db.execute(delete(Appointment).where(Appointment.id.in_(ids)))
        result.deleted = len(ids)

    for ap, start, end in planned:
        touched = False
        if (start, end) != (ap.scheduled_at, ap.end_at):
            ap.scheduled_at, ap.end_at = start, end
            touched = True
        if modality_changed and apply_future and ap.modality != new_modality:
            ap.modality = new_modality
            touched = True
        result.updated += int(touched)

    if roster_changed:
        await db.execute(delete(RecurrenceProfessional).where(RecurrenceProfessional.recurrence_id == recurrence.id))
        db.add_all([RecurrenceProfessional(recurrence_id=recurrence.id, professional_id=p) for p in new_roster])
        kept_ids = [ap.id for ap, _, _ in planned]
        if kept_ids:
            await db.execute(
                delete(AppointmentProfessional).where(AppointmentProfessional.appointment_id.in_(kept_ids))
            )
            db.add_all([AppointmentProfessional(appointment_id=a, professional_id=p)
                        for a in kept_ids for p in new_roster])

    was_indefinite = recurrence.recurrence_end_type == RecurrenceEndType.INDEFINITE
    recurrence.recurrence_type = new_type
    recurrence.start_time = new_start_time
    recurrence.end_time = new_end_time
    recurrence.duration = minutes_between(new_start_time, new_end_time)
    recurrence.modality = new_modality
    recurrence.recurrence_end_type = new_end_type
    recurrence.end_date = new_end_date if new_end_type == RecurrenceEndType.BY_DATE else None
    recurrence.occurrences = new_occurrences if new_end_type == RecurrenceEndType.BY_OCCURRENCES else None
    if day_changed:
        recurrence.day_of_week = new_dow
        recurrence.start_date = recurrence.start_date + offset
        if recurrence.last_generated_date:
            recurrence.last_generated_date = recurrence.last_generated_date + offset
    if type_changed and new_type == RecurrenceType.MONTHLY and planned:
        # las MONTHLY se extienden desde start_date: debe ser el nuevo ancla
        recurrence.start_date = planned[0][1].date()
    if new_end_type != RecurrenceEndType.INDEFINITE:
        recurrence.last_generated_date = None
    elif type_changed and planned:
        # la extensión sigue desde el último turno que quedó
        recurrence.last_generated_date = planned[-1][1].date()
    elif not was_indefinite:
        recurrence.last_generated_date = planned[-1][1].date() if planned else now.date()

    await db.commit()
    result.appointments = [ap for ap, _, _ in planned]
    logger.info("Serie %s actualizada: %d modificados, %d borrados", recurrence.id, result.updated, result.deleted)
    return result


async def finalize_recurrence(
    db: AsyncSession,
    recurrence: AppointmentRecurrence,
    end_date: date,
    now: datetime,
    user_id: str | None = None,
) -> MutationResult:
    """INDEFINITE -> BY_DATE. Los turnos posteriores a end_date quedan cancelados (no se borran)."""
    if not recurrence.is_active:
        raise ValidationFailed("La recurrencia está inactiva")
    if recurrence.recurrence_end_type != RecurrenceEndType.INDEFINITE:
        raise ValidationFailed("Solo se pueden finalizar recurrencias sin fecha de fin")
    if end_date < now.date():
        raise ValidationFailed("La fecha de fin no puede estar en el pasado")

    await raise_lock_timeout(db)
    res = await db.execute(
        select(Appointment).where(
            Appointment.recurrence_id == recurrence.id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.scheduled_at >= start_of_next_day(end_date),
        )
    )
    to_cancel = list(res.scalars().all())

    result = MutationResult(recurrence, old_values=snapshot(recurrence))
    old_status = {ap.id: ap.status for ap in to_cancel}
    for ap in to_cancel:
        soft_cancel(ap, now, FINALIZED_REASON)
    recurrence.recurrence_end_type = RecurrenceEndType.BY_DATE
    recurrence.end_date = end_date
    recurrence.last_generated_date = None
    await db.commit()
    result.cancelled = len(to_cancel)
    result.appointments = to_cancel

    entries = [
        audit_entry(
            recurrence.clinic_id, AuditAction.APPOINTMENT_CANCELLED, "Appointment", ap.id,
            user_id=user_id,
            old_values={"status": old_status[ap.id]},
            new_values={"status": ap.status, "cancellation_reason": FINALIZED_REASON, "recurrence_id": recurrence.id},
        )
        for ap in to_cancel
    ]
    entries.append(audit_entry(
        recurrence.clinic_id, AuditAction.RECURRENCE_FINALIZED, "AppointmentRecurrence", recurrence.id,
        user_id=user_id,
        old_values={"recurrence_end_type": RecurrenceEndType.INDEFINITE},
        new_values={"end_date": end_date, "cancelled": len(to_cancel)},
    ))
    await record_audit_entries(db, entries)
    logger.info("Serie %s finalizada al %s: %d turnos cancelados", recurrence.id, end_date, len(to_cancel))
    return result


async def _active_on(db: AsyncSession, recurrence_id: str, d: date) -> list[Appointment]:
    res = await db.execute(
        select(Appointment).where(
            Appointment.recurrence_id == recurrence_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.scheduled_at >= at_time(d, "00:00"),
            Appointment.scheduled_at < start_of_next_day(d),
        )
    )
    return list(res.scalars().all())


async def skip_date(db: AsyncSession, recurrence: AppointmentRecurrence, d: date, now: datetime) -> MutationResult:
    """Agrega la fecha a las excepciones y cancela el turno de ese día."""
    if not recurrence.is_active:
        raise ValidationFailed("La recurrencia está inactiva")
    if d < recurrence.start_date:
        raise ValidationFailed("La fecha es anterior al inicio de la serie")

    result = MutationResult(recurrence)
    result.old_values = {"exceptions": list(recurrence.exceptions or [])}
    on_date = await _active_on(db, recurrence.id, d)
    for ap in on_date:
        soft_cancel(ap, now, SKIPPED_REASON)
    recurrence.exceptions = add_exception(d, recurrence.exceptions)
    await db.commit()
    result.cancelled = len(on_date)
    result.appointments = on_date
    return result


async def unskip_date(
    db: AsyncSession,
    recurrence: AppointmentRecurrence,
    d: date,
    buffer_minutes: int,
    now: datetime,
) -> MutationResult:
    """Saca la fecha de las excepciones; si es hoy o después, agenda un turno nuevo."""
    if not recurrence.is_active:
        raise ValidationFailed("La recurrencia está inactiva")
    if d.isoformat() not in (recurrence.exceptions or []):
        raise ValidationFailed("La fecha no está salteada")

    result = MutationResult(recurrence)
    result.old_values = {"exceptions": list(recurrence.exceptions or [])}
    fresh = None
    if d >= now.date() and not await _active_on(db, recurrence.id, d):
        start = at_time(d, recurrence.start_time)
        end = start + timedelta(minutes=recurrence.duration)
        roster = await load_recurrence_roster(db, recurrence.id)
        found = await check_conflict(db, recurrence.professional_id, start, end, buffer_minutes,
                                     additional_professional_ids=roster)
        if found.has_conflict:
            raise conflict_error(found.conflicting_appointment, conflict_date=d.isoformat())
        fresh = new_appointment(
            recurrence.clinic_id, recurrence.professional_id, start, end,
            patient_id=recurrence.patient_id,
            recurrence_id=recurrence.id,
            type=AppointmentType.CONSULTA,
            modality=recurrence.modality,
        )
        db.add(fresh)
        db.add_all([AppointmentProfessional(appointment_id=fresh.id, professional_id=p) for p in roster])

    recurrence.exceptions = remove_exception(d, recurrence.exceptions)
    await db.commit()
    if fresh:
        result.created = 1
        result.appointments = [fresh]
    return result
