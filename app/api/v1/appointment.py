from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.api.deps import AuthContext, authorize, client_meta
from app.models.appointment import Appointment, AppointmentStatus, AppointmentType, CANCELLED_STATUSES
from app.models.notification import NotificationType
from app.schemas.appointment import (
    AppointmentCreate, AppointmentUpdate, AppointmentOut, AppointmentCreatedOut, StatusIn, CancelIn,
)
from app.services import appointments as svc
from app.services.audit import AuditAction, record_audit
from app.services.notifications import notify_appointment


router = APIRouter(prefix="/appointments", tags=["appointments"])

# ---------- helpers ----------
async def _get_appt_or_404(id: str, ctx: AuthContext, db: AsyncSession) -> Appointment:
    res = await db.execute(select(Appointment).where(Appointment.id == id, Appointment.clinic_id == ctx.clinic.id))
    ap = res.scalar_one_or_none()
    if not ap:
        raise HTTPException(status_code=404, detail="Turno no encontrado")
    return ap

async def _ensure_can_touch(ap: Appointment, ctx: AuthContext, db: AsyncSession) -> None:
    # el profesional ve también los turnos donde participa como adicional
    if ctx.can_access(ap.professional_id):
        return
    if ctx.professional_id and ctx.professional_id in await svc.load_additional_ids(db, ap.id):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permiso denegado")

def _is_consulta(ap: Appointment) -> bool:
    return ap.type == AppointmentType.CONSULTA and ap.patient_id is not None

# ---------- endpoints ----------
@router.get("/", response_model=list[AppointmentOut])
async def list_appointments(
    professional_id: str | None = Query(None),
    patient_id: str | None = Query(None),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    status_: AppointmentStatus | None = Query(None, alias="status"),
    ctx: AuthContext = Depends(authorize("appointment", "list")),
    db: AsyncSession = Depends(get_db),
):
    if ctx.scope == "own":
        # un profesional solo lista su agenda
        professional_id = ctx.professional_id
    return await svc.list_appointments(
        db, ctx.clinic.id,
        professional_id=professional_id,
        date_from=date_from,
        date_to=date_to,
        status=status_,
        patient_id=patient_id,
    )

@router.post("/", response_model=AppointmentCreatedOut, status_code=201)
async def create_appointment(
    payload: AppointmentCreate,
    request: Request,
    ctx: AuthContext = Depends(authorize("appointment", "create")),
    db: AsyncSession = Depends(get_db),
):
    professional_id = payload.professional_id or ctx.professional_id
    if not professional_id:
        raise HTTPException(status_code=400, detail="professional_id es obligatorio")
    ctx.ensure_access(professional_id)

    professional = await svc.get_professional(db, ctx.clinic.id, professional_id)
    if not professional.is_active:
        raise HTTPException(status_code=400, detail="El profesional está inactivo")

    result = await svc.create_appointments(db, ctx.clinic, professional, payload, ctx.now())

    meta = client_meta(request)
    if result.recurrence:
        rec = result.recurrence
        await record_audit(
            db, ctx.clinic.id, AuditAction.RECURRENCE_CREATED, "AppointmentRecurrence", rec.id,
            user_id=ctx.user.id,
            new_values={
                "recurrence_type": rec.recurrence_type,
                "recurrence_end_type": rec.recurrence_end_type,
                "start_date": rec.start_date,
                "appointments_created": len(result.appointments),
            },
            **meta,
        )
    else:
        ap = result.appointments[0]
        await record_audit(
            db, ctx.clinic.id, AuditAction.APPOINTMENT_CREATED, "Appointment", ap.id,
            user_id=ctx.user.id,
            new_values={"scheduled_at": ap.scheduled_at, "end_at": ap.end_at, "type": ap.type,
                        "patient_id": ap.patient_id, "professional_id": ap.professional_id},
            **meta,
        )
        if _is_consulta(ap):
            await notify_appointment(db, ap.id, NotificationType.APPOINTMENT_CONFIRMATION)

    return AppointmentCreatedOut(
        appointments=[AppointmentOut.model_validate(a) for a in result.appointments],
        recurrence_id=result.recurrence.id if result.recurrence else None,
        total=len(result.appointments),
    )

@router.get("/{id}", response_model=AppointmentOut)
async def get_appointment(
    id: str,
    ctx: AuthContext = Depends(authorize("appointment", "read")),
    db: AsyncSession = Depends(get_db),
):
    ap = await _get_appt_or_404(id, ctx, db)
    await _ensure_can_touch(ap, ctx, db)
    return ap

@router.patch("/{id}", response_model=AppointmentOut)
async def update_appointment(
    id: str,
    patch: AppointmentUpdate,
    request: Request,
    ctx: AuthContext = Depends(authorize("appointment", "update")),
    db: AsyncSession = Depends(get_db),
):
    ap = await _get_appt_or_404(id, ctx, db)
    await _ensure_can_touch(ap, ctx, db)
    if "professional_id" in patch.model_fields_set and patch.professional_id:
        ctx.ensure_access(patch.professional_id)

    result = await svc.update_appointment(db, ap, patch, ctx.now())

    if result.old_values:
        await record_audit(
            db, ctx.clinic.id,
            AuditAction.APPOINTMENT_STATUS_CHANGED if result.status_changed else AuditAction.APPOINTMENT_UPDATED,
            "Appointment", ap.id,
            user_id=ctx.user.id,
            old_values=result.old_values,
            new_values={k: getattr(ap, k) for k in result.old_values},
            **client_meta(request),
        )
    if result.status_changed and ap.status in CANCELLED_STATUSES and _is_consulta(ap):
        await notify_appointment(db, ap.id, NotificationType.APPOINTMENT_CANCELLATION)
    return ap

@router.delete("/{id}", status_code=204)
async def delete_appointment(
    id: str,
    request: Request,
    ctx: AuthContext = Depends(authorize("appointment", "delete")),
    db: AsyncSession = Depends(get_db),
):
    ap = await _get_appt_or_404(id, ctx, db)
    ctx.ensure_access(ap.professional_id)
    snapshot = {"scheduled_at": ap.scheduled_at, "end_at": ap.end_at, "status": ap.status,
                "patient_id": ap.patient_id, "recurrence_id": ap.recurrence_id}
    await svc.delete_appointment(db, ap)
    await record_audit(
        db, ctx.clinic.id, AuditAction.APPOINTMENT_DELETED, "Appointment", id,
        user_id=ctx.user.id, old_values=snapshot, **client_meta(request),
    )
    return None

@router.post("/{id}/status", response_model=AppointmentOut)
async def change_status(
    id: str,
    payload: StatusIn,
    request: Request,
    ctx: AuthContext = Depends(authorize("appointment", "update")),
    db: AsyncSession = Depends(get_db),
):
    ap = await _get_appt_or_404(id, ctx, db)
    await _ensure_can_touch(ap, ctx, db)
    previous = await svc.change_status(db, ap, payload.status, ctx.now(), payload.reason)
    await record_audit(
        db, ctx.clinic.id, AuditAction.APPOINTMENT_STATUS_CHANGED, "Appointment", ap.id,
        user_id=ctx.user.id,
        old_values={"status": previous},
        new_values={"status": ap.status, "cancellation_reason": ap.cancellation_reason},
        **client_meta(request),
    )
    if ap.status in CANCELLED_STATUSES and _is_consulta(ap):
        await notify_appointment(db, ap.id, NotificationType.APPOINTMENT_CANCELLATION)
    return ap

@router.post("/{id}/cancel", response_model=AppointmentOut)
async def cancel_appointment(
    id: str,
    payload: CancelIn,
    request: Request,
    ctx: AuthContext = Depends(authorize("appointment", "update")),
    db: AsyncSession = Depends(get_db),
):
    ap = await _get_appt_or_404(id, ctx, db)
    await _ensure_can_touch(ap, ctx, db)
    previous = await svc.cancel_appointment(db, ap, payload.cancelled_by, ctx.now(), payload.reason)
    await record_audit(
        db, ctx.clinic.id, AuditAction.APPOINTMENT_CANCELLED, "Appointment", ap.id,
        user_id=ctx.user.id,
        old_values={"status": previous},
        new_values={"status": ap.status, "cancellation_reason": ap.cancellation_reason},
        **client_meta(request),
    )
    if _is_consulta(ap):
        await notify_appointment(db, ap.id, NotificationType.APPOINTMENT_CANCELLATION)
    return ap
