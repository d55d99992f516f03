"""Cálculo de fechas de series recurrentes.

Funciones puras: no tocan la base. Las fechas/horas devueltas son naive en la
hora local de la clínica.
"""
import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from app.core.clock import at_time, format_date_br
from app.core.errors import ValidationFailed
from app.models.recurrence import RecurrenceType, RecurrenceEndType

MAX_OCCURRENCES = 52  # un año semanal
INDEFINITE_WINDOW_MONTHS = 6  # ventana inicial de las INDEFINITE
EXTENSION_WINDOW_MONTHS = 3

_STEP_DAYS = {RecurrenceType.WEEKLY: 7, RecurrenceType.BIWEEKLY: 14}

TYPE_LABELS = {
    RecurrenceType.WEEKLY: "Semanal",
    RecurrenceType.BIWEEKLY: "Quincenal",
    RecurrenceType.MONTHLY: "Mensual",
}


@dataclass(frozen=True)
class RecurrenceDate:
    date: date
    scheduled_at: datetime
    end_at: datetime

    @property
    def iso(self) -> str:
        return self.date.isoformat()


@dataclass
class RecurrenceOptions:
    recurrence_type: RecurrenceType
    recurrence_end_type: RecurrenceEndType
    end_date: date | None = None
    occurrences: int | None = None


def validate_recurrence_options(options: RecurrenceOptions, start_date: date | None = None) -> None:
    if options.recurrence_end_type == RecurrenceEndType.BY_OCCURRENCES:
        if not options.occurrences or options.occurrences < 1:
            raise ValidationFailed("La cantidad de sesiones debe ser al menos 1")
        if options.occurrences > MAX_OCCURRENCES:
            raise ValidationFailed(f"Máximo de {MAX_OCCURRENCES} sesiones permitido")
    elif options.recurrence_end_type == RecurrenceEndType.BY_DATE:
        if not options.end_date:
            raise ValidationFailed("La fecha de fin es obligatoria para recurrencias por fecha")
        if start_date and options.end_date < start_date:
            raise ValidationFailed("La fecha de fin no puede ser anterior a la de inicio")


def add_months(d: date, months: int) -> date:
    """Mismo día del mes; si el mes destino es más corto, último día del mes."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def _nth_date(anchor: date, n: int, recurrence_type: RecurrenceType) -> date:
    if recurrence_type == RecurrenceType.MONTHLY:
        return add_months(anchor, n)
    return anchor + timedelta(days=n * _STEP_DAYS[recurrence_type])


def _make(d: date, start_time: str, duration: int) -> RecurrenceDate:
    scheduled = at_time(d, start_time)
    return RecurrenceDate(date=d, scheduled_at=scheduled, end_at=scheduled + timedelta(minutes=duration))


def calculate_recurrence_dates(
    start_date: date,
    start_time: str,
    duration: int,
    options: RecurrenceOptions,
) -> list[RecurrenceDate]:
    """Todas las instancias de la serie, en orden. La primera es start_date."""
    limit = MAX_OCCURRENCES
    last: date | None = None

    if options.recurrence_end_type == RecurrenceEndType.BY_OCCURRENCES and options.occurrences:
        limit = min(options.occurrences, MAX_OCCURRENCES)
    elif options.recurrence_end_type == RecurrenceEndType.BY_DATE and options.end_date:
        last = options.end_date
    elif options.recurrence_end_type == RecurrenceEndType.INDEFINITE:
        last = add_months(start_date, INDEFINITE_WINDOW_MONTHS)

    dates = [_make(start_date, start_time, duration)]
    n = 1
    while len(dates) < limit:
        current = _nth_date(start_date, n, options.recurrence_type)
        if last and current > last:
            break
        dates.append(_make(current, start_time, duration))
        n += 1
    return dates


def calculate_next_window_dates(
    last_generated: date,
    start_time: str,
    duration: int,
    recurrence_type: RecurrenceType,
    months: int = EXTENSION_WINDOW_MONTHS,
    anchor: date | None = None,
) -> list[RecurrenceDate]:
    """Fechas del patrón estrictamente posteriores a last_generated, hasta +months (inclusive).

    Las MONTHLY con anchor (start_date de la serie) se calculan desde el anchor,
    así un mes recortado (31 -> 28) no arrastra el día a los meses siguientes.
    """
    if recurrence_type == RecurrenceType.MONTHLY and anchor:
        n = 1
        while add_months(anchor, n) <= last_generated:
            n += 1
        return [_make(add_months(anchor, n + i), start_time, duration) for i in range(months)]

    window_end = add_months(last_generated, months)
    dates: list[RecurrenceDate] = []
    n = 1
    while True:
        current = _nth_date(last_generated, n, recurrence_type)
        if current > window_end:
            break
        dates.append(_make(current, start_time, duration))
        n += 1
    return dates


def calculate_day_shifted_dates(
    scheduled_at: datetime,
    end_at: datetime,
    current_dow: int,
    new_dow: int,
) -> tuple[datetime, datetime]:
    delta = day_shift_offset(current_dow, new_dow)
    return scheduled_at + timedelta(days=delta), end_at + timedelta(days=delta)


def day_shift_offset(current_dow: int, new_dow: int) -> int:
    # siempre hacia adelante; mismo día => una semana
    return (new_dow - current_dow) % 7 or 7


# --- excepciones (fechas salteadas) ---
def _key(d: date | str) -> str:
    return d if isinstance(d, str) else d.isoformat()


def is_date_exception(d: date | str, exceptions: list[str] | None) -> bool:
    return _key(d) in (exceptions or [])


def add_exception(d: date | str, exceptions: list[str] | None) -> list[str]:
    current = list(exceptions or [])
    if _key(d) in current:
        return current
    return sorted(current + [_key(d)])


def remove_exception(d: date | str, exceptions: list[str] | None) -> list[str]:
    return [x for x in (exceptions or []) if x != _key(d)]


def format_recurrence_summary(
    recurrence_type: RecurrenceType,
    recurrence_end_type: RecurrenceEndType,
    occurrences: int | None = None,
    end_date: date | None = None,
) -> str:
    summary = TYPE_LABELS[recurrence_type]
    if recurrence_end_type == RecurrenceEndType.BY_OCCURRENCES and occurrences:
        summary += f" - {occurrences} sesiones"
    elif recurrence_end_type == RecurrenceEndType.BY_DATE and end_date:
        summary += f" - hasta {format_date_br(end_date)}"
    elif recurrence_end_type == RecurrenceEndType.INDEFINITE:
        summary += " - sin fecha de fin"
    return summary
