from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.api.deps import AuthContext, authorize, client_meta
from app.models.group import TherapyGroup, GroupMembership
from app.models.professional import Professional
from app.schemas.group import (
    GroupCreate, GroupOut, MemberIn, MemberLeaveIn, MemberOut, GenerateIn, GenerationOut,
)
from app.services import group_sessions as gs
from app.services.appointments import get_professional, get_active_patient
from app.services.audit import AuditAction, record_audit

router = APIRouter(prefix="/groups", tags=["groups"])

async def _get_group_or_404(id: str, ctx: AuthContext, db: AsyncSession) -> TherapyGroup:
    res = await db.execute(select(TherapyGroup).where(TherapyGroup.id == id, TherapyGroup.clinic_id == ctx.clinic.id))
    group = res.scalar_one_or_none()
    if not group:
        raise HTTPException(status_code=404, detail="Grupo no encontrado")
    ctx.ensure_access(group.professional_id)
    return group

async def _buffer_for(group: TherapyGroup, db: AsyncSession) -> int:
    prof = await db.get(Professional, group.professional_id)
    return prof.buffer_between_slots if prof else 0

@router.post("/", response_model=GroupOut, status_code=201)
async def create_group(
    payload: GroupCreate,
    request: Request,
    ctx: AuthContext = Depends(authorize("therapy-group", "create")),
    db: AsyncSession = Depends(get_db),
):
    professional_id = payload.professional_id or ctx.professional_id
    if not professional_id:
        raise HTTPException(status_code=400, detail="professional_id es obligatorio")
    ctx.ensure_access(professional_id)
    await get_professional(db, ctx.clinic.id, professional_id)

    group = TherapyGroup(clinic_id=ctx.clinic.id, **payload.model_dump(exclude={"professional_id"}),
                         professional_id=professional_id)
    db.add(group)
    await db.commit()
    await db.refresh(group)
    await record_audit(
        db, ctx.clinic.id, AuditAction.GROUP_CREATED, "TherapyGroup", group.id,
        user_id=ctx.user.id, new_values=payload.model_dump(), **client_meta(request),
    )
    return group

@router.get("/", response_model=list[GroupOut])
async def list_groups(
    ctx: AuthContext = Depends(authorize("therapy-group", "list")),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(TherapyGroup).where(TherapyGroup.clinic_id == ctx.clinic.id)
    if ctx.scope == "own":
        stmt = stmt.where(TherapyGroup.professional_id == ctx.professional_id)
    res = await db.execute(stmt.order_by(TherapyGroup.name))
    return res.scalars().all()

@router.get("/{id}", response_model=GroupOut)
async def get_group(
    id: str,
    ctx: AuthContext = Depends(authorize("therapy-group", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await _get_group_or_404(id, ctx, db)

# ---------- miembros ----------
@router.get("/{id}/members", response_model=list[MemberOut])
async def list_members(
    id: str,
    ctx: AuthContext = Depends(authorize("therapy-group", "read")),
    db: AsyncSession = Depends(get_db),
):
    group = await _get_group_or_404(id, ctx, db)
    return await gs.load_memberships(db, group.id)

@router.post("/{id}/members", response_model=MemberOut, status_code=201)
async def add_member(
    id: str,
    payload: MemberIn,
    ctx: AuthContext = Depends(authorize("therapy-group", "update")),
    db: AsyncSession = Depends(get_db),
):
    group = await _get_group_or_404(id, ctx, db)
    await get_active_patient(db, ctx.clinic.id, payload.patient_id)

    res = await db.execute(
        select(GroupMembership).where(GroupMembership.group_id == group.id,
                                      GroupMembership.patient_id == payload.patient_id)
    )
    membership = res.scalar_one_or_none()
    if membership and membership.leave_date is None:
        raise HTTPException(status_code=400, detail="El paciente ya es miembro del grupo")
    if membership:
        # vuelve al grupo
        membership.join_date = payload.join_date
        membership.leave_date = None
    else:
        membership = GroupMembership(group_id=group.id, patient_id=payload.patient_id, join_date=payload.join_date)
        db.add(membership)
    await db.commit()
    await db.refresh(membership)
    return membership

@router.post("/{id}/members/{patient_id}/leave", response_model=MemberOut)
async def leave_group(
    id: str,
    patient_id: str,
    payload: MemberLeaveIn,
    ctx: AuthContext = Depends(authorize("therapy-group", "update")),
    db: AsyncSession = Depends(get_db),
):
    group = await _get_group_or_404(id, ctx, db)
    res = await db.execute(
        select(GroupMembership).where(GroupMembership.group_id == group.id, GroupMembership.patient_id == patient_id)
    )
    membership = res.scalar_one_or_none()
    if not membership or membership.leave_date is not None:
        raise HTTPException(status_code=404, detail="El paciente no es miembro activo del grupo")
    if payload.leave_date < membership.join_date:
        raise HTTPException(status_code=400, detail="La fecha de salida no puede ser anterior al ingreso")
    membership.leave_date = payload.leave_date
    await db.commit()
    await db.refresh(membership)
    return membership

# ---------- sesiones ----------
@router.post("/{id}/sessions", response_model=GenerationOut)
async def generate_sessions(
    id: str,
    payload: GenerateIn,
    request: Request,
    ctx: AuthContext = Depends(authorize("therapy-group", "update")),
    db: AsyncSession = Depends(get_db),
):
    group = await _get_group_or_404(id, ctx, db)
    result = await gs.generate_sessions(
        db, group, payload.start_date, payload.end_date, await _buffer_for(group, db), ctx.now(),
    )
    await record_audit(
        db, ctx.clinic.id, AuditAction.GROUP_SESSIONS_GENERATED, "TherapyGroup", group.id,
        user_id=ctx.user.id,
        new_values={"start_date": payload.start_date, "end_date": payload.end_date,
                    "sessions_created": result.sessions_created,
                    "appointments_created": result.appointments_created},
        **client_meta(request),
    )
    return GenerationOut(**result.__dict__)

@router.post("/{id}/sessions/regenerate", response_model=GenerationOut)
async def regenerate_sessions(
    id: str,
    request: Request,
    ctx: AuthContext = Depends(authorize("therapy-group", "update")),
    db: AsyncSession = Depends(get_db),
):
    group = await _get_group_or_404(id, ctx, db)
    result = await gs.regenerate_sessions(db, group, ctx.now())
    await record_audit(
        db, ctx.clinic.id, AuditAction.GROUP_SESSIONS_REGENERATED, "TherapyGroup", group.id,
        user_id=ctx.user.id,
        new_values={"appointments_created": result.appointments_created,
                    "appointments_cancelled": result.appointments_cancelled},
        **client_meta(request),
    )
    return GenerationOut(**result.__dict__)
