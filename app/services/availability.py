"""Disponibilidad: reglas semanales + excepciones por fecha.

evaluate_availability es pura; load_availability trae de la base lo que
necesita para evaluar un rango de fechas.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterable, Sequence

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import day_of_week, format_hhmm, at_time, format_date_br
from app.models.availability import AvailabilityRule, AvailabilityException


class AvailabilityReason(str, Enum):
    ALLOWED = "ALLOWED"
    NO_RULE = "NO_RULE"
    OUTSIDE_RULES = "OUTSIDE_RULES"
    FULL_DAY_BLOCK = "FULL_DAY_BLOCK"
    PARTIAL_BLOCK = "PARTIAL_BLOCK"


@dataclass(frozen=True)
class AvailabilityDecision:
    allowed: bool
    reason: AvailabilityReason
    message: str | None = None


ALLOWED = AvailabilityDecision(True, AvailabilityReason.ALLOWED)


def _rules_for(day: date, rules: Iterable[AvailabilityRule]) -> list[AvailabilityRule]:
    dow = day_of_week(day)
    return [r for r in rules if r.is_active and r.day_of_week == dow]


def _exceptions_for(day: date, exceptions: Iterable[AvailabilityException]) -> list[AvailabilityException]:
    return [e for e in exceptions if e.date == day]


def _overlaps(a_start: str, a_end: str, b_start: str, b_end: str) -> bool:
    return a_start < b_end and a_end > b_start


def evaluate_availability(
    day: date,
    start_time: str,
    end_time: str,
    rules: Sequence[AvailabilityRule],
    exceptions: Sequence[AvailabilityException],
) -> AvailabilityDecision:
    """¿Se puede atender [start_time, end_time) en `day`? Horas "HH:MM"."""
    day_exceptions = _exceptions_for(day, exceptions)

    # el bloqueo de día completo gana siempre
    for ex in day_exceptions:
        if not ex.is_available and ex.is_full_day:
            return AvailabilityDecision(
                False, AvailabilityReason.FULL_DAY_BLOCK,
                f"Día bloqueado ({format_date_br(day)}){': ' + ex.reason if ex.reason else ''}",
            )

    windows = [(r.start_time, r.end_time) for r in _rules_for(day, rules)]
    # excepción parcial con is_available abre horario extra ese día
    windows += [(e.start_time, e.end_time) for e in day_exceptions
                if e.is_available and not e.is_full_day]

    if not windows:
        return AvailabilityDecision(False, AvailabilityReason.NO_RULE,
                                    f"Sin horario de atención el {format_date_br(day)}")

    if not any(ws <= start_time and end_time <= we for ws, we in windows):
        return AvailabilityDecision(False, AvailabilityReason.OUTSIDE_RULES,
                                    f"{start_time}-{end_time} fuera del horario de atención")

    for ex in day_exceptions:
        if ex.is_available or ex.is_full_day:
            continue
        if _overlaps(start_time, end_time, ex.start_time, ex.end_time):
            return AvailabilityDecision(
                False, AvailabilityReason.PARTIAL_BLOCK,
                f"Horario bloqueado {ex.start_time}-{ex.end_time}{': ' + ex.reason if ex.reason else ''}",
            )

    return ALLOWED


def evaluate_range(scheduled_at: datetime, end_at: datetime, rules, exceptions) -> AvailabilityDecision:
    return evaluate_availability(scheduled_at.date(), format_hhmm(scheduled_at), format_hhmm(end_at),
                                 rules, exceptions)


def validate_series_availability(
    dates: Sequence,
    rules: Sequence[AvailabilityRule],
    exceptions: Sequence[AvailabilityException],
) -> tuple[int, date, AvailabilityDecision] | None:
    """Primer (índice, fecha, decisión) que no pasa, o None si pasan todas.
    `dates` son RecurrenceDate (o cualquier cosa con scheduled_at/end_at)."""
    for i, d in enumerate(dates):
        decision = evaluate_range(d.scheduled_at, d.end_at, rules, exceptions)
        if not decision.allowed:
            return i, d.scheduled_at.date(), decision
    return None


async def load_availability(
    db: AsyncSession,
    professional_id: str,
    clinic_id: str,
    date_from: date,
    date_to: date,
) -> tuple[list[AvailabilityRule], list[AvailabilityException]]:
    """Reglas activas del profesional + excepciones suyas y de la clínica en el rango."""
    res = await db.execute(
        select(AvailabilityRule).where(
            AvailabilityRule.professional_id == professional_id,
            AvailabilityRule.is_active.is_(True),
        )
    )
    rules = list(res.scalars().all())

    res = await db.execute(
        select(AvailabilityException).where(
            AvailabilityException.clinic_id == clinic_id,
            or_(
                AvailabilityException.professional_id == professional_id,
                AvailabilityException.professional_id.is_(None),
            ),
            AvailabilityException.date >= date_from,
            AvailabilityException.date <= date_to,
        )
    )
    exceptions = list(res.scalars().all())
    return rules, exceptions


def compute_available_slots(
    day: date,
    rules: Sequence[AvailabilityRule],
    exceptions: Sequence[AvailabilityException],
    busy: Sequence[tuple[datetime, datetime]],
    duration: int,
    buffer: int = 0,
) -> list[str]:
    """Horarios libres ("HH:MM") de `day`, avanzando duration + buffer dentro de cada franja."""
    step = timedelta(minutes=duration + buffer)
    length = timedelta(minutes=duration)
    pad = timedelta(minutes=buffer)

    windows = [(r.start_time, r.end_time) for r in _rules_for(day, rules)]
    windows += [(e.start_time, e.end_time) for e in _exceptions_for(day, exceptions)
                if e.is_available and not e.is_full_day]

    slots: set[str] = set()
    for ws, we in windows:
        cursor = at_time(day, ws)
        window_end = at_time(day, we)
        while cursor + length <= window_end:
            slot_end = cursor + length
            if evaluate_range(cursor, slot_end, rules, exceptions).allowed and not any(
                b_start < slot_end + pad and b_end + pad > cursor for b_start, b_end in busy
            ):
                slots.add(format_hhmm(cursor))
            cursor += step
    return sorted(slots)


def validate_exception_payload(
    start_time: str | None,
    end_time: str | None,
    existing: Sequence[AvailabilityException],
) -> str | None:
    """Mensaje de error si la nueva excepción rompe las reglas del día, o None.
    `existing` son las excepciones del mismo alcance y fecha."""
    if (start_time is None) != (end_time is None):
        return "Hora de inicio y fin deben informarse juntas"
    if start_time is None:
        if any(e.is_full_day for e in existing):
            return "Ya existe una excepción de día completo para esa fecha"
        return None
    if end_time <= start_time:
        return "La hora de fin debe ser posterior a la de inicio"
    for e in existing:
        if e.is_full_day:
            continue
        if _overlaps(start_time, end_time, e.start_time, e.end_time):
            return f"Se superpone con la excepción {e.start_time}-{e.end_time}"
    return None
