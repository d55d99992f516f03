"""Notificaciones al paciente (confirmación, cancelación, recordatorio).

Se disparan después del commit del turno y nunca lo deshacen: cualquier error
del proveedor queda como Notification FAILED y en el log.
WhatsApp es un proveedor simulado (solo log). Email va por la API HTTP de
Resend cuando hay RESEND_API_KEY; si no, también queda en el log.
"""
import logging
from datetime import datetime

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.clock import WEEKDAY_LABELS, day_of_week, format_date_br, format_hhmm, clinic_now
from app.core.config import settings
from app.core.links import build_action_url
from app.models.appointment import Appointment, Modality
from app.models.notification import (
    Notification, NotificationChannel, NotificationStatus, NotificationType,
)

logger = logging.getLogger(__name__)

T, C = NotificationType, NotificationChannel

TEMPLATES: dict[tuple[NotificationType, NotificationChannel], tuple[str | None, str]] = {
    (T.APPOINTMENT_CONFIRMATION, C.WHATSAPP): (
        None,
        "Hola, {patient_name}!\n\nTu turno quedó agendado.\n\n"
        "Fecha: {date}\nHorario: {time}\nProfesional: {professional_name}\nModalidad: {modality}\n\n"
        "Para confirmar tu asistencia:\n{confirm_link}\n\nSi necesitás cancelar:\n{cancel_link}\n\n{clinic_name}",
    ),
    (T.APPOINTMENT_CONFIRMATION, C.EMAIL): (
        "Confirmación de turno - {clinic_name}",
        "Hola, {patient_name}!\n\nTu turno quedó agendado.\n\n"
        "Fecha: {date}\nHorario: {time}\nProfesional: {professional_name}\nModalidad: {modality}\n\n"
        "Para confirmar tu asistencia:\n{confirm_link}\n\nSi necesitás cancelar:\n{cancel_link}\n\n"
        "Saludos,\n{clinic_name}",
    ),
    (T.APPOINTMENT_REMINDER, C.WHATSAPP): (
        None,
        "Hola, {patient_name}!\n\nTe recordamos tu turno.\n\n"
        "Fecha: {date}\nHorario: {time}\nProfesional: {professional_name}\nModalidad: {modality}\n\n"
        "Confirmá tu asistencia:\n{confirm_link}\n\n¿Necesitás cancelar?\n{cancel_link}\n\n{clinic_name}",
    ),
    (T.APPOINTMENT_REMINDER, C.EMAIL): (
        "Recordatorio de turno - {clinic_name}",
        "Hola, {patient_name}!\n\nEste es un recordatorio de tu turno.\n\n"
        "Fecha: {date}\nHorario: {time}\nProfesional: {professional_name}\nModalidad: {modality}\n\n"
        "Confirmá tu asistencia:\n{confirm_link}\n\nSi necesitás cancelar:\n{cancel_link}\n\n"
        "Saludos,\n{clinic_name}",
    ),
    (T.APPOINTMENT_CANCELLATION, C.WHATSAPP): (
        None,
        "Hola, {patient_name}.\n\nTu turno del {date} a las {time} con {professional_name} fue cancelado.\n\n"
        "Para reagendar, comunicate con nosotros.\n\n{clinic_name}",
    ),
    (T.APPOINTMENT_CANCELLATION, C.EMAIL): (
        "Turno cancelado - {clinic_name}",
        "Hola, {patient_name}.\n\nTu turno del {date} a las {time} con {professional_name} fue cancelado.\n\n"
        "Para reagendar, comunicate con nosotros.\n\nSaludos,\n{clinic_name}",
    ),
}


class _SafeDict(dict):
    def __missing__(self, key):
        return ""


def render_template(template: str, variables: dict) -> str:
    return template.format_map(_SafeDict(variables))


def build_variables(appointment: Appointment) -> dict:
    tz = appointment.clinic.timezone if appointment.clinic else None
    when = appointment.scheduled_at
    return {
        "patient_name": appointment.patient.name if appointment.patient else "",
        "professional_name": appointment.professional.name if appointment.professional else "",
        "date": f"{WEEKDAY_LABELS[day_of_week(when)]} {format_date_br(when)}",
        "time": format_hhmm(when),
        "modality": "Online" if appointment.modality == Modality.ONLINE else "Presencial",
        "clinic_name": appointment.clinic.name if appointment.clinic else "",
        "confirm_link": build_action_url(appointment.id, "confirm", when, tz),
        "cancel_link": build_action_url(appointment.id, "cancel", when, tz),
    }


def consented_channels(patient) -> list[tuple[NotificationChannel, str]]:
    out = []
    if patient is None:
        return out
    if patient.consent_whatsapp and patient.phone:
        out.append((NotificationChannel.WHATSAPP, patient.phone))
    if patient.consent_email and patient.email:
        out.append((NotificationChannel.EMAIL, patient.email))
    return out


# --- proveedores ---
async def send_whatsapp(to: str, content: str) -> None:
    # mock: todavía no hay proveedor real de WhatsApp
    logger.info("[whatsapp] -> %s (%d caracteres)", to, len(content))


async def send_email(to: str, subject: str, content: str) -> None:
    if not settings.RESEND_API_KEY:
        logger.info("[email] sin RESEND_API_KEY, no se envía a %s: %s", to, subject)
        return
    async with httpx.AsyncClient(timeout=10) as cx:
        r = await cx.post(
            settings.RESEND_API_URL,
            headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
            json={"from": settings.EMAIL_FROM, "to": [to], "subject": subject, "text": content},
        )
    r.raise_for_status()


async def deliver(notification: Notification) -> None:
    if notification.channel == NotificationChannel.WHATSAPP:
        await send_whatsapp(notification.recipient, notification.content)
    else:
        await send_email(notification.recipient, notification.subject or "", notification.content)


def build_notifications(appointment: Appointment, ntype: NotificationType, now: datetime) -> list[Notification]:
    """Una Notification PENDING por canal con consentimiento."""
    variables = build_variables(appointment)
    out = []
    for channel, recipient in consented_channels(appointment.patient):
        subject, content = TEMPLATES[(ntype, channel)]
        out.append(Notification(
            clinic_id=appointment.clinic_id,
            patient_id=appointment.patient_id,
            appointment_id=appointment.id,
            type=ntype,
            channel=channel,
            recipient=recipient,
            subject=render_template(subject, variables) if subject else None,
            content=render_template(content, variables),
            status=NotificationStatus.PENDING,
            created_at=now,
        ))
    return out


async def dispatch_pending(db: AsyncSession, notifications: list[Notification], now: datetime) -> int:
    """Envía y marca SENT/FAILED. Devuelve cuántas salieron."""
    sent = 0
    for n in notifications:
        try:
            await deliver(n)
            n.status = NotificationStatus.SENT
            n.sent_at = now
            sent += 1
        except Exception as e:
            logger.exception("Falló el envío de la notificación %s", n.id)
            n.status = NotificationStatus.FAILED
            n.failure_reason = str(e)[:500]
    await db.commit()
    return sent


async def notify_appointment(db: AsyncSession, appointment_id: str, ntype: NotificationType) -> int:
    """Best-effort: no propaga errores de base ni de proveedor."""
    try:
        res = await db.execute(
            select(Appointment)
            .options(
                selectinload(Appointment.patient),
                selectinload(Appointment.professional),
                selectinload(Appointment.clinic),
            )
            .where(Appointment.id == appointment_id)
        )
        ap = res.scalar_one_or_none()
        if not ap or not ap.patient:
            return 0
        now = clinic_now(ap.clinic.timezone)
        items = build_notifications(ap, ntype, now)
        if not items:
            return 0
        db.add_all(items)
        await db.commit()
        return await dispatch_pending(db, items, now)
    except Exception:
        await db.rollback()
        logger.exception("No se pudo notificar el turno %s (%s)", appointment_id, ntype.value)
        return 0
