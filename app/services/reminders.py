# app/services/reminders.py
# Job de recordatorios (cron cada hora). Por clínica y por cada valor de
# reminder_hours busca consultas que empiezan dentro de [ahora + h, ahora + h + ventana).
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.clock import clinic_now
from app.core.config import settings
from app.models.appointment import Appointment, AppointmentType, ACTIVE_STATUSES
from app.models.clinic import Clinic
from app.models.notification import Notification, NotificationType
from app.services.audit import AuditAction, audit_entry, record_audit_entries
from app.services.notifications import build_notifications, consented_channels, dispatch_pending

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_HOURS = [48, 2]


@dataclass
class ReminderReport:
    clinics_processed: int = 0
    appointments_found: int = 0
    reminders_created: int = 0
    reminders_sent: int = 0
    skipped_already_sent: int = 0
    skipped_no_consent: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return dict(self.__dict__)


async def _already_reminded(db: AsyncSession, appointment_id: str, since: datetime) -> bool:
    res = await db.execute(
        select(Notification.id).where(
            Notification.appointment_id == appointment_id,
            Notification.type == NotificationType.APPOINTMENT_REMINDER,
            Notification.created_at >= since,
        ).limit(1)
    )
    return res.scalar_one_or_none() is not None


async def process_clinic(db: AsyncSession, clinic: Clinic, now: datetime, report: ReminderReport) -> None:
    window = timedelta(minutes=settings.REMINDER_WINDOW_MINUTES)
    lookback = timedelta(minutes=settings.REMINDER_LOOKBACK_MINUTES)
    created: list[Notification] = []

    for hours in clinic.reminder_hours or DEFAULT_REMINDER_HOURS:
        start = now + timedelta(hours=hours)
        res = await db.execute(
            select(Appointment)
            .options(
                selectinload(Appointment.patient),
                selectinload(Appointment.professional),
                selectinload(Appointment.clinic),
            )
            .where(
                Appointment.clinic_id == clinic.id,
                Appointment.type == AppointmentType.CONSULTA,
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.scheduled_at >= start,
                Appointment.scheduled_at < start + window,
            )
        )
        for ap in res.scalars().all():
            report.appointments_found += 1
            if not consented_channels(ap.patient):
                report.skipped_no_consent += 1
                continue
            if await _already_reminded(db, ap.id, now - lookback):
                report.skipped_already_sent += 1
                continue
            items = build_notifications(ap, NotificationType.APPOINTMENT_REMINDER, now)
            db.add_all(items)
            created.extend(items)

    await db.commit()
    report.reminders_created += len(created)
    report.reminders_sent += await dispatch_pending(db, created, now)


async def send_due_reminders(db: AsyncSession) -> ReminderReport:
    report = ReminderReport()
    res = await db.execute(select(Clinic).where(Clinic.is_active.is_(True)))
    clinics = [(c.id, c.timezone) for c in res.scalars().all()]

    for clinic_id, tz in clinics:
        try:
            clinic = await db.get(Clinic, clinic_id)
            await process_clinic(db, clinic, clinic_now(tz), report)
            report.clinics_processed += 1
        except SQLAlchemyError as e:
            await db.rollback()
            logger.exception("Error procesando recordatorios de la clínica %s", clinic_id)
            report.errors.append(f"Clínica {clinic_id}: {e.__class__.__name__}")

    await record_audit_entries(db, [
        audit_entry(cid, AuditAction.REMINDER_JOB_EXECUTED, "CronJob", "send-reminders",
                    new_values={k: v for k, v in report.as_dict().items() if k != "errors"})
        for cid, _ in clinics
    ])
    logger.info("send-reminders: %d encontrados, %d creados, %d enviados",
                report.appointments_found, report.reminders_created, report.reminders_sent)
    return report
