from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.api.deps import AuthContext, authorize
from app.models.patient import Patient
from app.schemas.patient import PatientCreate, PatientUpdate, PatientOut

router = APIRouter(prefix="/patients", tags=["patients"])

async def _get_patient_or_404(id: str, clinic_id: str, db: AsyncSession) -> Patient:
    res = await db.execute(select(Patient).where(Patient.id == id, Patient.clinic_id == clinic_id))
    p = res.scalar_one_or_none()
    if not p:
        raise HTTPException(status_code=404, detail="Paciente no encontrado")
    return p

@router.post("/", response_model=PatientOut, status_code=201)
async def create_patient(
    payload: PatientCreate,
    ctx: AuthContext = Depends(authorize("patient", "create")),
    db: AsyncSession = Depends(get_db),
):
    p = Patient(clinic_id=ctx.clinic.id, **payload.model_dump())
    db.add(p)
    await db.commit()
    await db.refresh(p)
    return p

@router.get("/", response_model=list[PatientOut])
async def list_patients(
    q: str | None = Query(None, description="buscar por nombre, email o teléfono"),
    include_inactive: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: AuthContext = Depends(authorize("patient", "list")),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Patient).where(Patient.clinic_id == ctx.clinic.id)
    if not include_inactive:
        stmt = stmt.where(Patient.is_active.is_(True))
    if q:
        like = f"%{q}%"
        stmt = stmt.where(or_(Patient.name.ilike(like), Patient.email.ilike(like), Patient.phone.ilike(like)))
    res = await db.execute(stmt.order_by(Patient.name).offset(offset).limit(limit))
    return res.scalars().all()

@router.get("/{id}", response_model=PatientOut)
async def get_patient(
    id: str,
    ctx: AuthContext = Depends(authorize("patient", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await _get_patient_or_404(id, ctx.clinic.id, db)

@router.patch("/{id}", response_model=PatientOut)
async def update_patient(
    id: str,
    patch: PatientUpdate,
    ctx: AuthContext = Depends(authorize("patient", "update")),
    db: AsyncSession = Depends(get_db),
):
    p = await _get_patient_or_404(id, ctx.clinic.id, db)
    for k, v in patch.model_dump(exclude_unset=True).items():
        setattr(p, k, v)
    await db.commit()
    await db.refresh(p)
    return p
