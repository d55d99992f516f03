from datetime import date, datetime

import pytest

from app.core.errors import ValidationFailed
from app.models.recurrence import RecurrenceType, RecurrenceEndType
from app.services.recurrence import (
    RecurrenceOptions, add_months, add_exception, calculate_day_shifted_dates, calculate_next_window_dates,
    calculate_recurrence_dates, day_shift_offset, format_recurrence_summary, is_date_exception,
    remove_exception, validate_recurrence_options, MAX_OCCURRENCES,
)

W, BW, M = RecurrenceType.WEEKLY, RecurrenceType.BIWEEKLY, RecurrenceType.MONTHLY


def test_weekly_by_occurrences():
    dates = calculate_recurrence_dates(
        date(2026, 2, 23), "08:45", 60, RecurrenceOptions(W, RecurrenceEndType.BY_OCCURRENCES, occurrences=4),
    )
    assert [d.iso for d in dates] == ["2026-02-23", "2026-03-02", "2026-03-09", "2026-03-16"]
    assert dates[0].scheduled_at == datetime(2026, 2, 23, 8, 45)
    assert dates[0].end_at == datetime(2026, 2, 23, 9, 45)
    assert all(d.end_at.hour == 9 and d.end_at.minute == 45 for d in dates)


def test_biweekly_by_date_includes_end_date():
    dates = calculate_recurrence_dates(
        date(2026, 3, 2), "10:00", 50, RecurrenceOptions(BW, RecurrenceEndType.BY_DATE, end_date=date(2026, 4, 13)),
    )
    assert [d.iso for d in dates] == ["2026-03-02", "2026-03-16", "2026-03-30", "2026-04-13"]


def test_monthly_clamps_to_month_end_and_keeps_anchor():
    dates = calculate_recurrence_dates(
        date(2026, 1, 31), "09:00", 50, RecurrenceOptions(M, RecurrenceEndType.BY_OCCURRENCES, occurrences=4),
    )
    assert [d.iso for d in dates] == ["2026-01-31", "2026-02-28", "2026-03-31", "2026-04-30"]


def test_indefinite_covers_six_months():
    dates = calculate_recurrence_dates(
        date(2026, 1, 5), "09:00", 50, RecurrenceOptions(W, RecurrenceEndType.INDEFINITE),
    )
    assert len(dates) == 26
    assert dates[-1].date == date(2026, 6, 29)
    assert dates[-1].date <= add_months(date(2026, 1, 5), 6)


def test_series_is_capped():
    dates = calculate_recurrence_dates(
        date(2026, 1, 5), "09:00", 50, RecurrenceOptions(W, RecurrenceEndType.BY_DATE, end_date=date(2028, 1, 1)),
    )
    assert len(dates) == MAX_OCCURRENCES


@pytest.mark.parametrize("options", [
    RecurrenceOptions(W, RecurrenceEndType.BY_OCCURRENCES, occurrences=53),
    RecurrenceOptions(W, RecurrenceEndType.BY_OCCURRENCES, occurrences=0),
    RecurrenceOptions(W, RecurrenceEndType.BY_DATE),
    RecurrenceOptions(W, RecurrenceEndType.BY_DATE, end_date=date(2026, 1, 1)),
])
def test_invalid_options(options):
    with pytest.raises(ValidationFailed):
        validate_recurrence_options(options, date(2026, 2, 2))


def test_next_window_starts_after_last_generated():
    dates = calculate_next_window_dates(date(2026, 3, 2), "09:00", 50, W, 3)
    assert dates[0].date == date(2026, 3, 9)
    assert dates[-1].date <= date(2026, 6, 2)
    assert len(dates) == 13


def test_monthly_window_follows_series_start_day():
    dates = calculate_next_window_dates(date(2027, 2, 28), "09:00", 50, M, 3, anchor=date(2026, 8, 31))
    assert [d.date for d in dates] == [date(2027, 3, 31), date(2027, 4, 30), date(2027, 5, 31)]


def test_day_shift_is_always_forward():
    assert day_shift_offset(1, 3) == 2
    assert day_shift_offset(5, 1) == 3
    assert day_shift_offset(2, 2) == 7
    start, end = calculate_day_shifted_dates(datetime(2026, 3, 6, 9), datetime(2026, 3, 6, 10), 5, 1)
    assert (start, end) == (datetime(2026, 3, 9, 9), datetime(2026, 3, 9, 10))


def test_exception_list_helpers_do_not_mutate():
    original = ["2026-03-16"]
    updated = add_exception(date(2026, 3, 9), original)
    assert updated == ["2026-03-09", "2026-03-16"]
    assert original == ["2026-03-16"]
    assert add_exception("2026-03-09", updated) == updated
    assert is_date_exception(date(2026, 3, 9), updated)
    assert remove_exception(date(2026, 3, 9), updated) == ["2026-03-16"]
    assert not is_date_exception(date(2026, 3, 9), None)


def test_summary():
    assert format_recurrence_summary(W, RecurrenceEndType.BY_OCCURRENCES, occurrences=4) == "Semanal - 4 sesiones"
    assert format_recurrence_summary(M, RecurrenceEndType.BY_DATE, end_date=date(2026, 6, 30)) == \
        "Mensual - hasta 30/06/2026"
    assert format_recurrence_summary(BW, RecurrenceEndType.INDEFINITE) == "Quincenal - sin fecha de fin"
