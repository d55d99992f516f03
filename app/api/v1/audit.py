from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import at_time, start_of_next_day
from app.core.db import get_db
from app.api.deps import AuthContext, authorize
from app.models.audit import AuditLog
from app.schemas.audit import AuditLogOut

router = APIRouter(prefix="/audit-logs", tags=["audit"])

@router.get("/", response_model=list[AuditLogOut])
async def list_audit_logs(
    entity_type: str | None = Query(None),
    entity_id: str | None = Query(None),
    action: str | None = Query(None),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: AuthContext = Depends(authorize("audit-log", "list")),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(AuditLog).where(AuditLog.clinic_id == ctx.clinic.id)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if date_from:
        stmt = stmt.where(AuditLog.created_at >= at_time(date_from, "00:00"))
    if date_to:
        stmt = stmt.where(AuditLog.created_at < start_of_next_day(date_to))
    res = await db.execute(stmt.order_by(AuditLog.created_at.desc()).offset(offset).limit(limit))
    return res.scalars().all()
