from datetime import date, datetime, timedelta

from sqlalchemy import func, select

from app.core.clock import clinic_now
from app.models.appointment import Appointment
from app.models.audit import AuditLog
from app.models.notification import Notification, NotificationStatus, NotificationType
from app.models.recurrence import AppointmentRecurrence, RecurrenceEndType, RecurrenceType
from app.schemas.appointment import AppointmentCreate
from app.services.appointments import create_appointments
from app.services.extension import extend_indefinite_recurrences, extend_recurrence
from app.services.reminders import send_due_reminders

from .helpers import book, future_weekday, make_patient

CRON = {"Authorization": "Bearer test-cron-secret"}


async def count_appointments(db, recurrence_id):
    return (await db.execute(select(func.count()).select_from(Appointment)
                             .where(Appointment.recurrence_id == recurrence_id))).scalar_one()


async def test_extend_recurrence_skips_exceptions_and_conflicts(db, clinic, professional, patient):
    payload = AppointmentCreate(patient_id=patient.id, date=date(2026, 3, 2), start_time="10:00", duration=60,
                                recurrence={"recurrence_type": "WEEKLY", "recurrence_end_type": "INDEFINITE"})
    rec = (await create_appointments(db, clinic, professional, payload, datetime(2026, 2, 1, 9))).recurrence
    assert rec.last_generated_date == date(2026, 8, 31)

    rec.exceptions = ["2026-09-14"]
    await db.commit()
    await book(db, professional, datetime(2026, 9, 21, 10))

    created = await extend_recurrence(db, rec, 0, datetime(2026, 7, 15, 9))
    assert created == 11
    assert rec.last_generated_date == date(2026, 11, 30)

    # ya extendida: la próxima corrida no hace nada
    assert await extend_recurrence(db, rec, 0, datetime(2026, 7, 15, 9)) is None


async def test_extension_job_reports_and_audits(db, clinic, professional, patient):
    start = future_weekday(1, weeks_ahead=1)
    rec = AppointmentRecurrence(
        clinic_id=clinic.id, professional_id=professional.id, patient_id=patient.id,
        day_of_week=1, start_time="09:00", end_time="10:00", duration=60,
        recurrence_type=RecurrenceType.WEEKLY, recurrence_end_type=RecurrenceEndType.INDEFINITE,
        start_date=start, last_generated_date=start, exceptions=[], is_active=True,
    )
    db.add(rec)
    await db.commit()

    report = await extend_indefinite_recurrences(db)
    assert report.recurrences_processed == 1
    assert report.appointments_created >= 12
    assert report.errors == []
    assert await count_appointments(db, rec.id) == report.appointments_created

    again = await extend_indefinite_recurrences(db)
    assert (again.recurrences_processed, again.recurrences_skipped) == (0, 1)

    actions = (await db.execute(select(AuditLog.action))).scalars().all()
    assert actions.count("EXTEND_RECURRENCES_JOB_EXECUTED") == 2


async def test_reminders_are_sent_once(db, clinic, professional, patient):
    silent = await make_patient(db, clinic, name="Sin Consentimiento")
    start = clinic_now(clinic.timezone).replace(second=0) + timedelta(hours=48, minutes=15)
    ap = await book(db, professional, start, patient_id=patient.id)
    await book(db, professional, start + timedelta(minutes=5), patient_id=silent.id, minutes=5)

    report = await send_due_reminders(db)
    assert report.appointments_found == 2
    assert report.reminders_created == 1
    assert report.reminders_sent == 1
    assert report.skipped_no_consent == 1

    rows = (await db.execute(select(Notification.status, Notification.type)
                             .where(Notification.appointment_id == ap.id))).all()
    assert [tuple(r) for r in rows] == [(NotificationStatus.SENT, NotificationType.APPOINTMENT_REMINDER)]

    again = await send_due_reminders(db)
    assert again.reminders_created == 0
    assert again.skipped_already_sent == 1


async def test_job_endpoints_require_cron_secret(client, clinic):
    assert (await client.post("/jobs/extend-recurrences")).status_code == 401
    bad = await client.get("/jobs/send-reminders", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401

    res = await client.get("/jobs/extend-recurrences", headers=CRON)
    assert res.status_code == 200
    assert res.json()["ok"] is True
    res = await client.post("/jobs/send-reminders", headers=CRON)
    assert res.status_code == 200
    assert res.json()["clinics_processed"] == 1


async def test_monthly_extension_keeps_start_day_after_short_month(db, clinic, professional, patient):
    rec = AppointmentRecurrence(
        clinic_id=clinic.id, professional_id=professional.id, patient_id=patient.id,
        day_of_week=1, start_time="09:00", end_time="10:00", duration=60,
        recurrence_type=RecurrenceType.MONTHLY, recurrence_end_type=RecurrenceEndType.INDEFINITE,
        start_date=date(2026, 8, 31), last_generated_date=date(2027, 2, 28), exceptions=[], is_active=True,
    )
    db.add(rec)
    await db.commit()

    assert await extend_recurrence(db, rec, 0, datetime(2027, 1, 15, 9)) == 3
    starts = (await db.execute(select(Appointment.scheduled_at).where(Appointment.recurrence_id == rec.id)
                               .order_by(Appointment.scheduled_at))).scalars().all()
    assert [s.date() for s in starts] == [date(2027, 3, 31), date(2027, 4, 30), date(2027, 5, 31)]
    assert rec.last_generated_date == date(2027, 5, 31)
