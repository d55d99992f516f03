# app/services/audit.py
# Registro de auditoría. Se escribe después del commit del negocio:
# si falla, se loguea y la operación sigue siendo válida.
import logging
from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    APPOINTMENT_CREATED = "APPOINTMENT_CREATED"
    APPOINTMENT_UPDATED = "APPOINTMENT_UPDATED"
    APPOINTMENT_DELETED = "APPOINTMENT_DELETED"
    APPOINTMENT_STATUS_CHANGED = "APPOINTMENT_STATUS_CHANGED"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
    RECURRENCE_CREATED = "RECURRENCE_CREATED"
    RECURRENCE_UPDATED = "RECURRENCE_UPDATED"
    RECURRENCE_FINALIZED = "RECURRENCE_FINALIZED"
    RECURRENCE_DATE_SKIPPED = "RECURRENCE_DATE_SKIPPED"
    RECURRENCE_DATE_UNSKIPPED = "RECURRENCE_DATE_UNSKIPPED"
    AVAILABILITY_UPDATED = "AVAILABILITY_UPDATED"
    AVAILABILITY_EXCEPTION_CREATED = "AVAILABILITY_EXCEPTION_CREATED"
    AVAILABILITY_EXCEPTION_DELETED = "AVAILABILITY_EXCEPTION_DELETED"
    GROUP_CREATED = "GROUP_CREATED"
    GROUP_SESSIONS_GENERATED = "GROUP_SESSIONS_GENERATED"
    GROUP_SESSIONS_REGENERATED = "GROUP_SESSIONS_REGENERATED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    EXTEND_RECURRENCES_JOB_EXECUTED = "EXTEND_RECURRENCES_JOB_EXECUTED"
    REMINDER_JOB_EXECUTED = "REMINDER_JOB_EXECUTED"


def audit_entry(
    clinic_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str | None = None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog:
    return AuditLog(
        clinic_id=clinic_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=jsonable_encoder(old_values) if old_values is not None else None,
        new_values=jsonable_encoder(new_values) if new_values is not None else None,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:255] or None,
    )


async def record_audit_entries(db: AsyncSession, entries: list[AuditLog]) -> bool:
    if not entries:
        return True
    try:
        db.add_all(entries)
        await db.commit()
        return True
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("No se pudo guardar la auditoría (%s)", entries[0].action)
        return False


async def record_audit(db: AsyncSession, clinic_id: str, action: str, entity_type: str,
                       entity_id: str, **kwargs: Any) -> bool:
    return await record_audit_entries(
        db, [audit_entry(clinic_id, action, entity_type, entity_id, **kwargs)]
    )
