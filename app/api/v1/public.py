# Endpoints sin login: el paciente confirma o cancela con el link firmado del mensaje.
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import clinic_now
from app.core.db import get_db
from app.core.links import verify_link, LinkAction
from app.api.deps import client_meta
from app.models.appointment import Appointment, AppointmentStatus, ACTIVE_STATUSES
from app.models.clinic import Clinic
from app.models.notification import NotificationType
from app.services.appointments import change_status
from app.services.audit import AuditAction, record_audit
from app.services.notifications import notify_appointment

router = APIRouter(prefix="/public/appointments", tags=["public"])

PATIENT_CANCEL_REASON = "Cancelado por el paciente (link)"

class LinkResult(BaseModel):
    appointment_id: str
    status: AppointmentStatus
    message: str

async def _load_verified(action: LinkAction, id: str, expires: int, sig: str,
                         db: AsyncSession) -> tuple[Appointment, Clinic]:
    reason = verify_link(id, action, expires, sig)
    if reason:
        raise HTTPException(status_code=400, detail=reason)
    ap = await db.get(Appointment, id)
    if not ap:
        raise HTTPException(status_code=404, detail="Turno no encontrado")
    clinic = await db.get(Clinic, ap.clinic_id)
    return ap, clinic

@router.get("/confirm", response_model=LinkResult)
async def confirm_by_link(
    request: Request,
    id: str = Query(...),
    expires: int = Query(...),
    sig: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    ap, clinic = await _load_verified("confirm", id, expires, sig, db)
    if ap.status == AppointmentStatus.CONFIRMADO:
        return LinkResult(appointment_id=ap.id, status=ap.status, message="Tu turno ya estaba confirmado")
    if ap.status not in ACTIVE_STATUSES:
        raise HTTPException(status_code=400, detail="El turno ya no puede confirmarse")

    previous = await change_status(db, ap, AppointmentStatus.CONFIRMADO, clinic_now(clinic.timezone))
    await record_audit(
        db, ap.clinic_id, AuditAction.APPOINTMENT_STATUS_CHANGED, "Appointment", ap.id,
        old_values={"status": previous}, new_values={"status": ap.status, "via": "link"},
        **client_meta(request),
    )
    return LinkResult(appointment_id=ap.id, status=ap.status, message="¡Turno confirmado!")

@router.get("/cancel", response_model=LinkResult)
async def cancel_by_link(
    request: Request,
    id: str = Query(...),
    expires: int = Query(...),
    sig: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    ap, clinic = await _load_verified("cancel", id, expires, sig, db)
    if ap.status == AppointmentStatus.CANCELADO_PACIENTE:
        return LinkResult(appointment_id=ap.id, status=ap.status, message="Tu turno ya estaba cancelado")
    if ap.status not in ACTIVE_STATUSES:
        raise HTTPException(status_code=400, detail="El turno ya no puede cancelarse")

    previous = await change_status(db, ap, AppointmentStatus.CANCELADO_PACIENTE,
                                   clinic_now(clinic.timezone), PATIENT_CANCEL_REASON)
    await record_audit(
        db, ap.clinic_id, AuditAction.APPOINTMENT_CANCELLED, "Appointment", ap.id,
        old_values={"status": previous},
        new_values={"status": ap.status, "cancellation_reason": PATIENT_CANCEL_REASON, "via": "link"},
        **client_meta(request),
    )
    await notify_appointment(db, ap.id, NotificationType.APPOINTMENT_CANCELLATION)
    return LinkResult(appointment_id=ap.id, status=ap.status, message="Turno cancelado")
