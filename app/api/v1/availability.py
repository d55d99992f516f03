from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import at_time, start_of_next_day
from app.core.db import get_db
from app.api.deps import AuthContext, authorize, client_meta
from app.models.appointment import Appointment, CANCELLED_STATUSES
from app.models.availability import AvailabilityRule, AvailabilityException
from app.models.links import AppointmentProfessional
from app.models.professional import Professional
from app.schemas.availability import RulesIn, RuleOut, ExceptionCreate, ExceptionOut, SlotsOut
from app.services import availability as av
from app.services.audit import AuditAction, record_audit

router = APIRouter(prefix="/availability", tags=["availability"])

async def _get_prof_or_404(id: str, ctx: AuthContext, db: AsyncSession) -> Professional:
    res = await db.execute(select(Professional).where(Professional.id == id, Professional.clinic_id == ctx.clinic.id))
    prof = res.scalar_one_or_none()
    if not prof:
        raise HTTPException(status_code=404, detail="Profesional no encontrado")
    ctx.ensure_access(prof.id)
    return prof

# ---------- reglas semanales ----------
@router.get("/professionals/{professional_id}/rules", response_model=list[RuleOut])
async def list_rules(
    professional_id: str,
    ctx: AuthContext = Depends(authorize("availability", "read")),
    db: AsyncSession = Depends(get_db),
):
    await _get_prof_or_404(professional_id, ctx, db)
    res = await db.execute(
        select(AvailabilityRule)
        .where(AvailabilityRule.professional_id == professional_id)
        .order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time)
    )
    return res.scalars().all()

@router.put("/professionals/{professional_id}/rules", response_model=list[RuleOut])
async def replace_rules(
    professional_id: str,
    payload: RulesIn,
    request: Request,
    ctx: AuthContext = Depends(authorize("availability", "update")),
    db: AsyncSession = Depends(get_db),
):
    """Reemplazo total: borra las reglas actuales y crea las enviadas."""
    await _get_prof_or_404(professional_id, ctx, db)

    by_day: dict[int, list] = {}
    for r in payload.rules:
        by_day.setdefault(r.day_of_week, []).append(r)
    for day_rules in by_day.values():
        ordered = sorted(day_rules, key=lambda r: r.start_time)
        for a, b in zip(ordered, ordered[1:]):
            if b.start_time < a.end_time:
                raise HTTPException(status_code=400, detail="Las franjas de un mismo día no pueden superponerse")

    res = await db.execute(select(AvailabilityRule).where(AvailabilityRule.professional_id == professional_id))
    old = [{"day_of_week": r.day_of_week, "start_time": r.start_time, "end_time": r.end_time}
           for r in res.scalars().all()]

    await db.execute(delete(AvailabilityRule).where(AvailabilityRule.professional_id == professional_id))
    rules = [AvailabilityRule(professional_id=professional_id, **r.model_dump()) for r in payload.rules]
    db.add_all(rules)
    await db.commit()

    await record_audit(
        db, ctx.clinic.id, AuditAction.AVAILABILITY_UPDATED, "Professional", professional_id,
        user_id=ctx.user.id,
        old_values={"rules": old},
        new_values={"rules": [r.model_dump() for r in payload.rules]},
        **client_meta(request),
    )
    return sorted(rules, key=lambda r: (r.day_of_week, r.start_time))

# ---------- excepciones ----------
@router.get("/exceptions", response_model=list[ExceptionOut])
async def list_exceptions(
    professional_id: str | None = Query(None),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    ctx: AuthContext = Depends(authorize("availability", "list")),
    db: AsyncSession = Depends(get_db),
):
    if ctx.scope == "own":
        professional_id = ctx.professional_id
    stmt = select(AvailabilityException).where(AvailabilityException.clinic_id == ctx.clinic.id)
    if professional_id:
        # las de toda la clínica también aplican al profesional
        stmt = stmt.where(or_(AvailabilityException.professional_id == professional_id,
                              AvailabilityException.professional_id.is_(None)))
    if date_from:
        stmt = stmt.where(AvailabilityException.date >= date_from)
    if date_to:
        stmt = stmt.where(AvailabilityException.date <= date_to)
    res = await db.execute(stmt.order_by(AvailabilityException.date, AvailabilityException.start_time))
    return res.scalars().all()

@router.post("/exceptions", response_model=ExceptionOut, status_code=201)
async def create_exception(
    payload: ExceptionCreate,
    request: Request,
    ctx: AuthContext = Depends(authorize("availability", "create")),
    db: AsyncSession = Depends(get_db),
):
    if payload.clinic_wide:
        if not ctx.is_admin:
            raise HTTPException(status_code=403, detail="Solo un administrador puede bloquear toda la clínica")
        professional_id = None
    else:
        professional_id = payload.professional_id or ctx.professional_id
        if not professional_id:
            raise HTTPException(status_code=400, detail="professional_id es obligatorio")
        await _get_prof_or_404(professional_id, ctx, db)

    scope = (AvailabilityException.professional_id.is_(None) if professional_id is None
             else AvailabilityException.professional_id == professional_id)
    res = await db.execute(
        select(AvailabilityException).where(
            AvailabilityException.clinic_id == ctx.clinic.id,
            AvailabilityException.date == payload.date,
            scope,
        )
    )
    error = av.validate_exception_payload(payload.start_time, payload.end_time, res.scalars().all())
    if error:
        raise HTTPException(status_code=400, detail=error)

    exc = AvailabilityException(
        clinic_id=ctx.clinic.id,
        professional_id=professional_id,
        date=payload.date,
        is_available=payload.is_available,
        start_time=payload.start_time,
        end_time=payload.end_time,
        reason=payload.reason,
    )
    db.add(exc)
    await db.commit()
    await db.refresh(exc)

    await record_audit(
        db, ctx.clinic.id, AuditAction.AVAILABILITY_EXCEPTION_CREATED, "AvailabilityException", exc.id,
        user_id=ctx.user.id,
        new_values=payload.model_dump(),
        **client_meta(request),
    )
    return exc

@router.delete("/exceptions/{id}", status_code=204)
async def delete_exception(
    id: str,
    request: Request,
    ctx: AuthContext = Depends(authorize("availability", "delete")),
    db: AsyncSession = Depends(get_db),
):
    res = await db.execute(
        select(AvailabilityException).where(AvailabilityException.id == id,
                                            AvailabilityException.clinic_id == ctx.clinic.id)
    )
    exc = res.scalar_one_or_none()
    if not exc:
        raise HTTPException(status_code=404, detail="Excepción no encontrada")
    if exc.professional_id is None and not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Permiso denegado")
    if exc.professional_id is not None:
        ctx.ensure_access(exc.professional_id)

    old = {"date": exc.date, "start_time": exc.start_time, "end_time": exc.end_time,
           "professional_id": exc.professional_id, "reason": exc.reason}
    await db.execute(delete(AvailabilityException).where(AvailabilityException.id == id))
    await db.commit()
    await record_audit(
        db, ctx.clinic.id, AuditAction.AVAILABILITY_EXCEPTION_DELETED, "AvailabilityException", id,
        user_id=ctx.user.id, old_values=old, **client_meta(request),
    )
    return None

# ---------- horarios libres ----------
@router.get("/professionals/{professional_id}/slots", response_model=SlotsOut)
async def available_slots(
    professional_id: str,
    day: date = Query(..., alias="date"),
    duration: int | None = Query(None, ge=5, le=480),
    ctx: AuthContext = Depends(authorize("availability", "read")),
    db: AsyncSession = Depends(get_db),
):
    prof = await _get_prof_or_404(professional_id, ctx, db)
    duration = duration or prof.appointment_duration
    rules, exceptions = await av.load_availability(db, prof.id, ctx.clinic.id, day, day)

    co = select(AppointmentProfessional.appointment_id).where(AppointmentProfessional.professional_id == prof.id)
    res = await db.execute(
        select(Appointment.scheduled_at, Appointment.end_at).where(
            or_(Appointment.professional_id == prof.id, Appointment.id.in_(co)),
            Appointment.blocks_time.is_(True),
            Appointment.status.not_in(CANCELLED_STATUSES),
            Appointment.scheduled_at < start_of_next_day(day),
            Appointment.end_at > at_time(day, "00:00"),
        )
    )
    busy = [(s, e) for s, e in res.all()]
    slots = av.compute_available_slots(day, rules, exceptions, busy, duration, prof.buffer_between_slots)

    now = ctx.now()
    if day == now.date():
        slots = [s for s in slots if at_time(day, s) >= now]
    return SlotsOut(date=day, professional_id=prof.id, duration=duration, slots=slots)
