from datetime import date, datetime

import pytest
from sqlalchemy import func, select

from app.core.errors import AppointmentConflict, ValidationFailed
from app.models.appointment import Appointment, AppointmentStatus
from app.models.group import TherapyGroup, GroupMembership
from app.models.recurrence import RecurrenceType
from app.services.group_sessions import (
    LEFT_GROUP_REASON, calculate_group_session_dates, generate_sessions, regenerate_sessions,
)

from .helpers import book, make_patient

NOW = datetime(2026, 2, 1, 9, 0)


async def make_group(db, clinic, professional, **kw) -> TherapyGroup:
    group = TherapyGroup(clinic_id=clinic.id, professional_id=professional.id, name="Grupo Ansiedad",
                         day_of_week=1, start_time="18:00", duration=90,
                         recurrence_type=kw.pop("recurrence_type", RecurrenceType.WEEKLY), is_active=True)
    db.add(group)
    await db.commit()
    return group


async def join(db, group, patient, joined=date(2026, 3, 1), left=None):
    db.add(GroupMembership(group_id=group.id, patient_id=patient.id, join_date=joined, leave_date=left))
    await db.commit()


async def active_count(db, group, patient=None):
    q = select(func.count()).select_from(Appointment).where(
        Appointment.group_id == group.id, Appointment.status == AppointmentStatus.AGENDADO)
    if patient:
        q = q.where(Appointment.patient_id == patient.id)
    return (await db.execute(q)).scalar_one()


def test_session_dates():
    weekly = calculate_group_session_dates(date(2026, 3, 1), date(2026, 3, 31), 1, "18:00", 90, RecurrenceType.WEEKLY)
    assert [d.iso for d in weekly] == ["2026-03-02", "2026-03-09", "2026-03-16", "2026-03-23", "2026-03-30"]
    assert weekly[0].end_at == datetime(2026, 3, 2, 19, 30)

    monthly = calculate_group_session_dates(date(2026, 3, 1), date(2026, 5, 31), 1, "18:00", 90,
                                            RecurrenceType.MONTHLY)
    assert [d.iso for d in monthly] == ["2026-03-02", "2026-04-06", "2026-05-04"]


async def test_generate_one_appointment_per_active_member(db, clinic, professional, patient):
    group = await make_group(db, clinic, professional)
    other = await make_patient(db, clinic, name="Lucía")
    await join(db, group, patient)
    await join(db, group, other, left=date(2026, 3, 16))

    result = await generate_sessions(db, group, date(2026, 3, 1), date(2026, 3, 31), 0, NOW)

    assert result.sessions_created == 5
    assert result.appointments_created == 7
    assert await active_count(db, group, other) == 2


async def test_generation_is_idempotent(db, clinic, professional, patient):
    group = await make_group(db, clinic, professional)
    await join(db, group, patient)
    await generate_sessions(db, group, date(2026, 3, 1), date(2026, 3, 31), 0, NOW)

    again = await generate_sessions(db, group, date(2026, 3, 1), date(2026, 3, 31), 0, NOW)
    assert (again.sessions_created, again.appointments_created) == (0, 0)
    assert await active_count(db, group) == 5


async def test_overlapping_windows_match_a_single_run(db, clinic, professional, patient):
    group = await make_group(db, clinic, professional)
    await join(db, group, patient)

    await generate_sessions(db, group, date(2026, 3, 1), date(2026, 3, 31), 0, NOW)
    second = await generate_sessions(db, group, date(2026, 3, 15), date(2026, 4, 15), 0, NOW)

    assert (second.sessions_created, second.appointments_created) == (2, 2)
    single_run = calculate_group_session_dates(date(2026, 3, 1), date(2026, 4, 15), 1, "18:00", 90,
                                               RecurrenceType.WEEKLY)
    assert await active_count(db, group) == len(single_run) == 7


async def test_generation_aborts_on_conflict(db, clinic, professional, patient):
    group = await make_group(db, clinic, professional)
    await join(db, group, patient)
    await book(db, professional, datetime(2026, 3, 23, 19))

    with pytest.raises(AppointmentConflict) as exc:
        await generate_sessions(db, group, date(2026, 3, 1), date(2026, 3, 31), 0, NOW)
    assert exc.value.extra["conflict_date"] == "2026-03-23"
    assert await active_count(db, group) == 0


async def test_generation_range_is_limited(db, clinic, professional):
    group = await make_group(db, clinic, professional)
    with pytest.raises(ValidationFailed):
        await generate_sessions(db, group, date(2026, 3, 1), date(2027, 6, 1), 0, NOW)


async def test_regenerate_follows_membership_changes(db, clinic, professional, patient):
    group = await make_group(db, clinic, professional)
    leaving = await make_patient(db, clinic, name="Lucía")
    await join(db, group, patient)
    await join(db, group, leaving)
    await generate_sessions(db, group, date(2026, 3, 1), date(2026, 3, 31), 0, NOW)

    membership = (await db.execute(select(GroupMembership).where(GroupMembership.patient_id == leaving.id))).scalar_one()
    membership.leave_date = date(2026, 3, 16)
    newcomer = await make_patient(db, clinic, name="Tomás")
    await join(db, group, newcomer, joined=date(2026, 3, 10))

    result = await regenerate_sessions(db, group, NOW)

    assert result.appointments_cancelled == 3
    assert result.appointments_created == 3
    assert await active_count(db, group, leaving) == 2
    assert await active_count(db, group, newcomer) == 3
    reasons = (await db.execute(select(Appointment.cancellation_reason).distinct()
                                .where(Appointment.patient_id == leaving.id,
                                       Appointment.status == AppointmentStatus.CANCELADO_PROFISSIONAL))).scalars().all()
    assert reasons == [LEFT_GROUP_REASON]
