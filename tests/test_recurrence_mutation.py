from datetime import date, datetime

import pytest
from sqlalchemy import func, select

from app.core.errors import AppointmentConflict, MutationConflicts, ValidationFailed
from app.models.appointment import Appointment, AppointmentStatus
from app.models.audit import AuditLog
from app.models.links import AppointmentProfessional, RecurrenceProfessional
from app.models.recurrence import AppointmentRecurrence, RecurrenceEndType, RecurrenceType
from app.schemas.appointment import AppointmentCreate
from app.schemas.recurrence import RecurrenceUpdate
from app.services import recurrence_mutation as mut
from app.services.appointments import create_appointments
from app.services.recurrence_mutation import FINALIZED_REASON, SKIPPED_REASON

from .helpers import book, make_patient, make_professional

NOW = datetime(2026, 2, 1, 9, 0)


async def series(db, clinic, professional, patient, end="BY_OCCURRENCES", **kw):
    recurrence = {"recurrence_type": kw.pop("recurrence_type", "WEEKLY"), "recurrence_end_type": end}
    if end == "BY_OCCURRENCES":
        recurrence["occurrences"] = kw.pop("occurrences", 4)
    payload = AppointmentCreate(patient_id=patient.id, date=date(2026, 3, 2), start_time="10:00", duration=60,
                                recurrence=recurrence, **kw)
    result = await create_appointments(db, clinic, professional, payload, NOW)
    return result.recurrence


async def starts(db, recurrence_id, status=None):
    q = select(Appointment.scheduled_at).where(Appointment.recurrence_id == recurrence_id)
    if status:
        q = q.where(Appointment.status == status)
    return list((await db.execute(q.order_by(Appointment.scheduled_at))).scalars().all())


async def test_day_change_conflict_aborts_without_changes(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)
    other = await make_patient(db, clinic, name="María Gómez")
    await book(db, professional, datetime(2026, 3, 11, 10, 30), patient_id=other.id)

    with pytest.raises(MutationConflicts) as exc:
        await mut.update_recurrence(db, rec, RecurrenceUpdate(day_of_week=3), 0, NOW)

    body = exc.value.to_dict()
    assert body["code"] == "DAY_CHANGE_CONFLICTS"
    assert body["conflicts"] == [{"date": "11/03/2026", "conflicts_with": "María Gómez"}]
    assert await starts(db, rec.id) == [datetime(2026, 3, d, 10) for d in (2, 9, 16, 23)]
    dow = (await db.execute(select(AppointmentRecurrence.day_of_week)
                            .where(AppointmentRecurrence.id == rec.id))).scalar_one()
    assert dow == 1


async def test_day_change_shifts_every_future_appointment(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)
    result = await mut.update_recurrence(db, rec, RecurrenceUpdate(day_of_week=3), 0, NOW)

    assert result.updated == 4
    assert await starts(db, rec.id) == [datetime(2026, 3, d, 10) for d in (4, 11, 18, 25)]
    assert rec.day_of_week == 3
    assert rec.start_date == date(2026, 3, 4)


async def test_time_change_applies_to_future(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)
    changes = RecurrenceUpdate(start_time="14:00", end_time="15:30", apply_to="future")
    result = await mut.update_recurrence(db, rec, changes, 0, NOW)

    assert result.updated == 4
    assert await starts(db, rec.id) == [datetime(2026, 3, d, 14) for d in (2, 9, 16, 23)]
    assert rec.duration == 90


async def test_time_change_conflict(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)
    await book(db, professional, datetime(2026, 3, 16, 14, 30))
    changes = RecurrenceUpdate(start_time="14:00", end_time="15:00", apply_to="future")
    with pytest.raises(MutationConflicts) as exc:
        await mut.update_recurrence(db, rec, changes, 0, NOW)
    assert exc.value.code == "TIME_CHANGE_CONFLICTS"


async def test_type_change_keeps_dates_on_new_pattern(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)
    result = await mut.update_recurrence(db, rec, RecurrenceUpdate(recurrence_type="BIWEEKLY"), 0, NOW)

    assert result.deleted == 2
    assert await starts(db, rec.id) == [datetime(2026, 3, 2, 10), datetime(2026, 3, 16, 10)]
    assert rec.recurrence_type == RecurrenceType.BIWEEKLY


async def test_change_to_monthly_reanchors_on_first_kept_date(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient, end="INDEFINITE")
    later = datetime(2026, 3, 5, 9, 0)
    await mut.update_recurrence(db, rec, RecurrenceUpdate(recurrence_type="MONTHLY"), 0, later)

    assert rec.start_date == date(2026, 3, 9)
    assert rec.last_generated_date == date(2026, 3, 9)
    assert await starts(db, rec.id, AppointmentStatus.AGENDADO) == [datetime(2026, 3, 2, 10), datetime(2026, 3, 9, 10)]


async def test_roster_change_replaces_links(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)
    colleague = await make_professional(db, clinic, name="Dr. Luis")
    await mut.update_recurrence(
        db, rec, RecurrenceUpdate(additional_professional_ids=[colleague.id, professional.id]), 0, NOW,
    )

    roster = (await db.execute(select(RecurrenceProfessional.professional_id)
                               .where(RecurrenceProfessional.recurrence_id == rec.id))).scalars().all()
    assert roster == [colleague.id]
    links = (await db.execute(select(func.count()).select_from(AppointmentProfessional)
                              .where(AppointmentProfessional.professional_id == colleague.id))).scalar_one()
    assert links == 4


async def test_roster_change_conflict(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)
    colleague = await make_professional(db, clinic, name="Dr. Luis")
    await book(db, colleague, datetime(2026, 3, 9, 10))
    with pytest.raises(MutationConflicts) as exc:
        await mut.update_recurrence(db, rec, RecurrenceUpdate(additional_professional_ids=[colleague.id]), 0, NOW)
    assert exc.value.code == "ROSTER_CHANGE_CONFLICTS"


async def test_no_changes_is_rejected(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)
    with pytest.raises(ValidationFailed):
        await mut.update_recurrence(db, rec, RecurrenceUpdate(day_of_week=1), 0, NOW)


async def test_finalize_soft_cancels_later_appointments(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient, end="INDEFINITE")
    total = len(await starts(db, rec.id))

    result = await mut.finalize_recurrence(db, rec, date(2026, 3, 9), NOW, user_id=None)

    assert rec.recurrence_end_type == RecurrenceEndType.BY_DATE
    assert rec.end_date == date(2026, 3, 9)
    assert rec.last_generated_date is None
    assert result.cancelled == total - 2
    assert await starts(db, rec.id, AppointmentStatus.AGENDADO) == [datetime(2026, 3, 2, 10),
                                                                    datetime(2026, 3, 9, 10)]
    reasons = (await db.execute(select(Appointment.cancellation_reason).distinct()
                                .where(Appointment.status == AppointmentStatus.CANCELADO_PROFISSIONAL))).scalars().all()
    assert reasons == [FINALIZED_REASON]
    actions = (await db.execute(select(AuditLog.action))).scalars().all()
    assert actions.count("APPOINTMENT_CANCELLED") == total - 2
    assert actions.count("RECURRENCE_FINALIZED") == 1


async def test_finalize_only_indefinite(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)
    with pytest.raises(ValidationFailed):
        await mut.finalize_recurrence(db, rec, date(2026, 3, 9), NOW)


async def test_skip_and_unskip_date(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)

    skipped = await mut.skip_date(db, rec, date(2026, 3, 9), NOW)
    assert skipped.cancelled == 1
    assert rec.exceptions == ["2026-03-09"]
    reason = (await db.execute(select(Appointment.cancellation_reason)
                               .where(Appointment.scheduled_at == datetime(2026, 3, 9, 10)))).scalar_one()
    assert reason == SKIPPED_REASON

    restored = await mut.unskip_date(db, rec, date(2026, 3, 9), 0, NOW)
    assert restored.created == 1
    assert rec.exceptions == []
    assert datetime(2026, 3, 9, 10) in await starts(db, rec.id, AppointmentStatus.AGENDADO)


async def test_unskip_checks_conflicts(db, clinic, professional, patient):
    rec = await series(db, clinic, professional, patient)
    await mut.skip_date(db, rec, date(2026, 3, 9), NOW)
    await book(db, professional, datetime(2026, 3, 9, 10))
    with pytest.raises(AppointmentConflict):
        await mut.unskip_date(db, rec, date(2026, 3, 9), 0, NOW)
