from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.api.deps import AuthContext, authorize, client_meta
from app.models.professional import Professional
from app.models.recurrence import AppointmentRecurrence
from app.schemas.recurrence import (
    RecurrenceUpdate, RecurrenceOut, RecurrenceDetailOut, MutationOut, FinalizeIn, ExceptionIn,
)
from app.services import recurrence_mutation as mut
from app.services.audit import AuditAction, record_audit
from app.services.recurrence import format_recurrence_summary

router = APIRouter(prefix="/appointments/recurrences", tags=["recurrences"])

UPCOMING_LIMIT = 10

async def _get_rec_or_404(id: str, ctx: AuthContext, db: AsyncSession) -> AppointmentRecurrence:
    res = await db.execute(
        select(AppointmentRecurrence).where(
            AppointmentRecurrence.id == id, AppointmentRecurrence.clinic_id == ctx.clinic.id,
        )
    )
    rec = res.scalar_one_or_none()
    if not rec:
        raise HTTPException(status_code=404, detail="Recurrencia no encontrada")
    ctx.ensure_access(rec.professional_id)
    return rec

async def _buffer_for(rec: AppointmentRecurrence, db: AsyncSession) -> int:
    prof = await db.get(Professional, rec.professional_id)
    return prof.buffer_between_slots if prof else 0

def _mutation_out(result: mut.MutationResult) -> MutationOut:
    return MutationOut(
        recurrence=RecurrenceOut.model_validate(result.recurrence),
        updated=result.updated,
        deleted=result.deleted,
        cancelled=result.cancelled,
        created=result.created,
    )

@router.get("/{id}", response_model=RecurrenceDetailOut)
async def get_recurrence(
    id: str,
    ctx: AuthContext = Depends(authorize("recurrence", "read")),
    db: AsyncSession = Depends(get_db),
):
    rec = await _get_rec_or_404(id, ctx, db)
    upcoming = await mut.load_future_appointments(db, rec.id, ctx.now())
    base = RecurrenceOut.model_validate(rec).model_dump()
    return RecurrenceDetailOut(
        **base,
        summary=format_recurrence_summary(rec.recurrence_type, rec.recurrence_end_type, rec.occurrences, rec.end_date),
        additional_professional_ids=await mut.load_recurrence_roster(db, rec.id),
        upcoming=[ap.scheduled_at for ap in upcoming[:UPCOMING_LIMIT]],
    )

@router.patch("/{id}", response_model=MutationOut)
async def update_recurrence(
    id: str,
    patch: RecurrenceUpdate,
    request: Request,
    ctx: AuthContext = Depends(authorize("recurrence", "update")),
    db: AsyncSession = Depends(get_db),
):
    rec = await _get_rec_or_404(id, ctx, db)
    result = await mut.update_recurrence(db, rec, patch, await _buffer_for(rec, db), ctx.now())
    await record_audit(
        db, ctx.clinic.id, AuditAction.RECURRENCE_UPDATED, "AppointmentRecurrence", rec.id,
        user_id=ctx.user.id,
        old_values=result.old_values,
        new_values={**mut.snapshot(rec), "updated": result.updated, "deleted": result.deleted},
        **client_meta(request),
    )
    return _mutation_out(result)

@router.post("/{id}/finalize", response_model=MutationOut)
async def finalize_recurrence(
    id: str,
    payload: FinalizeIn,
    ctx: AuthContext = Depends(authorize("recurrence", "update")),
    db: AsyncSession = Depends(get_db),
):
    rec = await _get_rec_or_404(id, ctx, db)
    # la auditoría la escribe el servicio (un registro por turno cancelado)
    result = await mut.finalize_recurrence(db, rec, payload.end_date, ctx.now(), user_id=ctx.user.id)
    return _mutation_out(result)

@router.post("/{id}/exceptions", response_model=MutationOut)
async def toggle_exception(
    id: str,
    payload: ExceptionIn,
    request: Request,
    ctx: AuthContext = Depends(authorize("recurrence", "update")),
    db: AsyncSession = Depends(get_db),
):
    rec = await _get_rec_or_404(id, ctx, db)
    if payload.action == "skip":
        result = await mut.skip_date(db, rec, payload.date, ctx.now())
        action = AuditAction.RECURRENCE_DATE_SKIPPED
    else:
        result = await mut.unskip_date(db, rec, payload.date, await _buffer_for(rec, db), ctx.now())
        action = AuditAction.RECURRENCE_DATE_UNSKIPPED
    await record_audit(
        db, ctx.clinic.id, action, "AppointmentRecurrence", rec.id,
        user_id=ctx.user.id,
        old_values=result.old_values,
        new_values={"exceptions": rec.exceptions, "date": payload.date,
                    "cancelled": result.cancelled, "created": result.created},
        **client_meta(request),
    )
    return _mutation_out(result)
