"""Helpers de fecha/hora de la agenda.

Convenciones:
- las fechas/horas se guardan naive, en la hora local de la clínica;
- hora del día = "HH:MM" con ceros, por eso se comparan como strings;
- día de semana 0 = domingo ... 6 = sábado.
"""
import re
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

WEEKDAY_LABELS = ["Domingo", "Lunes", "Martes", "Miércoles", "Jueves", "Viernes", "Sábado"]


def parse_hhmm(value: str) -> time:
    m = TIME_RE.match(value or "")
    if not m:
        raise ValueError(f"hora inválida (HH:MM): {value!r}")
    return time(int(m.group(1)), int(m.group(2)))


def format_hhmm(dt: datetime | time) -> str:
    return f"{dt.hour:02d}:{dt.minute:02d}"


def day_of_week(d: date | datetime) -> int:
    # date.weekday(): lunes=0 -> lo llevamos a domingo=0
    return (d.weekday() + 1) % 7


def at_time(d: date, hhmm: str) -> datetime:
    return datetime.combine(d, parse_hhmm(hhmm))


def minutes_between(start_hhmm: str, end_hhmm: str) -> int:
    s, e = parse_hhmm(start_hhmm), parse_hhmm(end_hhmm)
    return (e.hour * 60 + e.minute) - (s.hour * 60 + s.minute)


def clinic_now(tz_name: str) -> datetime:
    """'Ahora' en la hora de pared de la clínica (naive)."""
    return datetime.now(ZoneInfo(tz_name)).replace(tzinfo=None, microsecond=0)


def start_of_next_day(d: date) -> datetime:
    return datetime.combine(d + timedelta(days=1), time.min)


def format_date_br(d: date | datetime) -> str:
    return f"{d.day:02d}/{d.month:02d}/{d.year}"
