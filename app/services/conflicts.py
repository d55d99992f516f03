"""Detección de solapamientos en la agenda.

Un turno existente choca con el candidato si
    existente.inicio < candidato.fin + buffer  y  existente.fin + buffer > candidato.inicio
Solo cuentan los turnos que bloquean agenda (blocks_time) y no están cancelados.
La lectura toma FOR UPDATE sobre los turnos encontrados: el chequeo y el insert
posterior tienen que ir en la misma transacción.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import format_hhmm, format_date_br
from app.core.errors import AppointmentConflict
from app.models.appointment import Appointment, CANCELLED_STATUSES
from app.models.links import AppointmentProfessional
from app.models.patient import Patient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictingAppointment:
    id: str
    scheduled_at: datetime
    end_at: datetime
    patient_name: str | None
    title: str | None
    type: str

    @property
    def display_name(self) -> str:
        return self.patient_name or self.title or "otro compromiso"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scheduled_at": self.scheduled_at.isoformat(),
            "end_at": self.end_at.isoformat(),
            "patient_name": self.patient_name,
            "title": self.title,
            "type": self.type,
        }


@dataclass(frozen=True)
class ConflictCheckResult:
    has_conflict: bool
    conflicting_appointment: ConflictingAppointment | None = None


@dataclass(frozen=True)
class BulkConflict:
    index: int
    conflicting_appointment: ConflictingAppointment


def _participants(professional_id: str, additional_professional_ids: Iterable[str] | None) -> list[str]:
    ids = [professional_id]
    for pid in additional_professional_ids or []:
        if pid not in ids:
            ids.append(pid)
    return ids


async def _load_blocking(
    db: AsyncSession,
    participants: list[str],
    window_start: datetime,
    window_end: datetime,
    exclude_appointment_ids: Sequence[str] = (),
    exclude_group_id: str | None = None,
) -> list[ConflictingAppointment]:
    # agenda de cada participante = turnos propios + turnos donde es profesional adicional
    co_attended = select(AppointmentProfessional.appointment_id).where(
        AppointmentProfessional.professional_id.in_(participants)
    )
    q = (
        select(Appointment, Patient.name)
        .outerjoin(Patient, Appointment.patient_id == Patient.id)
        .where(
            or_(
                Appointment.professional_id.in_(participants),
                Appointment.id.in_(co_attended),
            ),
            Appointment.status.notin_(CANCELLED_STATUSES),
            Appointment.blocks_time.is_(True),
            Appointment.scheduled_at < window_end,
            Appointment.end_at > window_start,
        )
        .order_by(Appointment.scheduled_at)
        .with_for_update(of=Appointment)
    )
    if exclude_appointment_ids:
        q = q.where(Appointment.id.notin_(list(exclude_appointment_ids)))
    if exclude_group_id:
        q = q.where(or_(Appointment.group_id.is_(None), Appointment.group_id != exclude_group_id))

    res = await db.execute(q)
    return [
        ConflictingAppointment(
            id=ap.id,
            scheduled_at=ap.scheduled_at,
            end_at=ap.end_at,
            patient_name=patient_name,
            title=ap.title,
            type=ap.type.value,
        )
        for ap, patient_name in res.all()
    ]


def _hits(existing: ConflictingAppointment, start: datetime, end: datetime, buffer: timedelta) -> bool:
    return existing.scheduled_at < end + buffer and existing.end_at + buffer > start


async def check_conflict(
    db: AsyncSession,
    professional_id: str,
    scheduled_at: datetime,
    end_at: datetime,
    buffer_minutes: int = 0,
    exclude_appointment_id: str | None = None,
    exclude_group_id: str | None = None,
    additional_professional_ids: Iterable[str] | None = None,
) -> ConflictCheckResult:
    buffer = timedelta(minutes=buffer_minutes or 0)
    found = await _load_blocking(
        db,
        _participants(professional_id, additional_professional_ids),
        scheduled_at - buffer,
        end_at + buffer,
        [exclude_appointment_id] if exclude_appointment_id else (),
        exclude_group_id,
    )
    if found:
        return ConflictCheckResult(True, found[0])
    return ConflictCheckResult(False)


async def check_conflicts_bulk(
    db: AsyncSession,
    professional_id: str,
    dates: Sequence[tuple[datetime, datetime]],
    buffer_minutes: int = 0,
    exclude_appointment_ids: Sequence[str] = (),
    exclude_group_id: str | None = None,
    additional_professional_ids: Iterable[str] | None = None,
) -> list[BulkConflict]:
    """Una sola consulta para toda la serie; devuelve los índices que chocan, en orden."""
    if not dates:
        return []
    buffer = timedelta(minutes=buffer_minutes or 0)
    window_start = min(s for s, _ in dates) - buffer
    window_end = max(e for _, e in dates) + buffer

    found = await _load_blocking(
        db,
        _participants(professional_id, additional_professional_ids),
        window_start,
        window_end,
        exclude_appointment_ids,
        exclude_group_id,
    )
    conflicts: list[BulkConflict] = []
    for i, (start, end) in enumerate(dates):
        hit = next((ap for ap in found if _hits(ap, start, end, buffer)), None)
        if hit:
            conflicts.append(BulkConflict(i, hit))
    return conflicts


def conflict_message(conflict: ConflictingAppointment) -> str:
    return (
        f"Conflicto de horario: ya existe un compromiso con {conflict.display_name} "
        f"el {format_date_br(conflict.scheduled_at)} de {format_hhmm(conflict.scheduled_at)} "
        f"a {format_hhmm(conflict.end_at)}"
    )


def conflict_error(conflict: ConflictingAppointment, **extra) -> AppointmentConflict:
    logger.warning("Conflicto de agenda con turno %s (%s)", conflict.id, conflict.scheduled_at)
    return AppointmentConflict(
        conflict_message(conflict),
        conflicting_appointment=conflict.to_dict(),
        **extra,
    )
