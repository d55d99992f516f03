from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.api.deps import AuthContext, authorize
from app.models.professional import Professional
from app.models.user import User
from app.schemas.professional import ProfessionalCreate, ProfessionalUpdate, ProfessionalOut

router = APIRouter(prefix="/professionals", tags=["professionals"])

async def _get_prof_or_404(id: str, clinic_id: str, db: AsyncSession) -> Professional:
    res = await db.execute(select(Professional).where(Professional.id == id, Professional.clinic_id == clinic_id))
    prof = res.scalar_one_or_none()
    if not prof:
        raise HTTPException(status_code=404, detail="Profesional no encontrado")
    return prof

@router.post("/", response_model=ProfessionalOut, status_code=201)
async def create_professional(
    payload: ProfessionalCreate,
    ctx: AuthContext = Depends(authorize("professional", "create")),
    db: AsyncSession = Depends(get_db),
):
    if payload.user_id:
        res = await db.execute(select(User).where(User.id == payload.user_id, User.clinic_id == ctx.clinic.id))
        if not res.scalar_one_or_none():
            raise HTTPException(status_code=404, detail="Usuario no encontrado en la clínica")
        res = await db.execute(select(Professional.id).where(Professional.user_id == payload.user_id))
        if res.scalar_one_or_none():
            raise HTTPException(status_code=400, detail="El usuario ya tiene un perfil profesional")

    prof = Professional(clinic_id=ctx.clinic.id, **payload.model_dump())
    db.add(prof)
    await db.commit()
    await db.refresh(prof)
    return prof

@router.get("/", response_model=list[ProfessionalOut])
async def list_professionals(
    ctx: AuthContext = Depends(authorize("professional", "list")),
    db: AsyncSession = Depends(get_db),
):
    res = await db.execute(
        select(Professional)
        .where(Professional.clinic_id == ctx.clinic.id, Professional.is_active.is_(True))
        .order_by(Professional.name)
    )
    return res.scalars().all()

@router.get("/{id}", response_model=ProfessionalOut)
async def get_professional(
    id: str,
    ctx: AuthContext = Depends(authorize("professional", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await _get_prof_or_404(id, ctx.clinic.id, db)

@router.patch("/{id}", response_model=ProfessionalOut)
async def update_professional(
    id: str,
    patch: ProfessionalUpdate,
    ctx: AuthContext = Depends(authorize("professional", "update")),
    db: AsyncSession = Depends(get_db),
):
    prof = await _get_prof_or_404(id, ctx.clinic.id, db)
    ctx.ensure_access(prof.id)
    for k, v in patch.model_dump(exclude_unset=True).items():
        setattr(prof, k, v)
    await db.commit()
    await db.refresh(prof)
    return prof
