"""Sesiones de grupos terapéuticos: un turno por (fecha de sesión x miembro activo)."""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import at_time, day_of_week, start_of_next_day
from app.core.errors import ValidationFailed
from app.models.appointment import Appointment, AppointmentType, ACTIVE_STATUSES
from app.models.group import TherapyGroup, GroupMembership
from app.models.recurrence import RecurrenceType
from app.services.appointments import new_appointment, soft_cancel
from app.services.conflicts import check_conflicts_bulk, conflict_error
from app.services.recurrence import RecurrenceDate, add_months

logger = logging.getLogger(__name__)

MAX_GENERATION_DAYS = 366
LEFT_GROUP_REASON = "Paciente fuera del grupo"


@dataclass
class GenerationResult:
    sessions_created: int = 0
    appointments_created: int = 0
    appointments_cancelled: int = 0


def first_weekday_on_or_after(d: date, dow: int) -> date:
    return d + timedelta(days=(dow - day_of_week(d)) % 7)


def calculate_group_session_dates(
    start_date: date,
    end_date: date,
    dow: int,
    start_time: str,
    duration: int,
    recurrence_type: RecurrenceType,
) -> list[RecurrenceDate]:
    dates: list[RecurrenceDate] = []
    current = first_weekday_on_or_after(start_date, dow)
    months = 0
    while current <= end_date:
        scheduled = at_time(current, start_time)
        dates.append(RecurrenceDate(current, scheduled, scheduled + timedelta(minutes=duration)))
        if recurrence_type == RecurrenceType.MONTHLY:
            # primer día de la semana del grupo en cada mes siguiente
            months += 1
            first_of_month = add_months(start_date.replace(day=1), months)
            current = first_weekday_on_or_after(first_of_month, dow)
        else:
            current += timedelta(days=7 if recurrence_type == RecurrenceType.WEEKLY else 14)
    return dates


async def load_memberships(db: AsyncSession, group_id: str) -> list[GroupMembership]:
    res = await db.execute(select(GroupMembership).where(GroupMembership.group_id == group_id))
    return list(res.scalars().all())


async def _group_appointments(db: AsyncSession, group_id: str, since: datetime,
                              until: datetime | None = None) -> list[Appointment]:
    q = select(Appointment).where(Appointment.group_id == group_id, Appointment.scheduled_at >= since)
    if until:
        q = q.where(Appointment.scheduled_at < until)
    res = await db.execute(q.order_by(Appointment.scheduled_at))
    return list(res.scalars().all())


def _session_appointment(group: TherapyGroup, patient_id: str, start: datetime, end: datetime) -> Appointment:
    return new_appointment(
        group.clinic_id, group.professional_id, start, end,
        patient_id=patient_id,
        group_id=group.id,
        type=AppointmentType.CONSULTA,
        title=group.name,
    )


async def generate_sessions(
    db: AsyncSession,
    group: TherapyGroup,
    start_date: date,
    end_date: date,
    buffer_minutes: int,
    now: datetime,
) -> GenerationResult:
    """Idempotente: lo que ya existe (mismo horario y paciente, cualquier estado) no se duplica."""
    if not group.is_active:
        raise ValidationFailed("El grupo está inactivo")
    if end_date < start_date:
        raise ValidationFailed("La fecha de fin debe ser posterior a la de inicio")
    if (end_date - start_date).days > MAX_GENERATION_DAYS:
        raise ValidationFailed(f"El rango máximo de generación es de {MAX_GENERATION_DAYS} días")

    dates = [d for d in calculate_group_session_dates(
        start_date, end_date, group.day_of_week, group.start_time, group.duration, group.recurrence_type,
    ) if d.scheduled_at >= now]
    if not dates:
        return GenerationResult()

    members = await load_memberships(db, group.id)
    existing = await _group_appointments(db, group.id, dates[0].scheduled_at, start_of_next_day(end_date))
    existing_pairs = {(ap.scheduled_at, ap.patient_id) for ap in existing}
    existing_slots = {ap.scheduled_at for ap in existing}

    pending: list[tuple[RecurrenceDate, list[str]]] = []
    for d in dates:
        patients = [m.patient_id for m in members
                    if m.is_active_on(d.date) and (d.scheduled_at, m.patient_id) not in existing_pairs]
        if patients:
            pending.append((d, patients))
    if not pending:
        return GenerationResult()

    conflicts = await check_conflicts_bulk(
        db,
        group.professional_id,
        [(d.scheduled_at, d.end_at) for d, _ in pending],
        buffer_minutes,
        exclude_group_id=group.id,
    )
    if conflicts:
        first = conflicts[0]
        raise conflict_error(first.conflicting_appointment, conflict_date=pending[first.index][0].iso)

    result = GenerationResult()
    for d, patients in pending:
        if d.scheduled_at not in existing_slots:
            result.sessions_created += 1
        db.add_all([_session_appointment(group, pid, d.scheduled_at, d.end_at) for pid in patients])
        result.appointments_created += len(patients)
    await db.commit()
    logger.info("Grupo %s: %d sesiones nuevas, %d turnos", group.id, result.sessions_created,
                result.appointments_created)
    return result


async def regenerate_sessions(db: AsyncSession, group: TherapyGroup, now: datetime) -> GenerationResult:
    """Ajusta las sesiones futuras a la lista actual de miembros."""
    members = await load_memberships(db, group.id)
    future = await _group_appointments(db, group.id, now)

    sessions: dict[datetime, list[Appointment]] = {}
    for ap in future:
        sessions.setdefault(ap.scheduled_at, []).append(ap)

    result = GenerationResult()
    for start, appointments in sessions.items():
        day = start.date()
        end = appointments[0].end_at
        active = {m.patient_id for m in members if m.is_active_on(day)}
        present = {ap.patient_id for ap in appointments}
        for ap in appointments:
            if ap.status in ACTIVE_STATUSES and ap.patient_id not in active:
                soft_cancel(ap, now, LEFT_GROUP_REASON)
                result.appointments_cancelled += 1
        missing = [pid for pid in active if pid not in present]
        db.add_all([_session_appointment(group, pid, start, end) for pid in sorted(missing)])
        result.appointments_created += len(missing)

    await db.commit()
    return result
