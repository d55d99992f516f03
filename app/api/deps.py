from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import clinic_now
from app.core.config import settings
from app.core.db import get_db
from app.core.security import decode_access_token
from app.models.clinic import Clinic
from app.models.professional import Professional
from app.models.user import User, RoleEnum
from app.services.permissions import resolve_scope, can_access_owned, Resource, Action, Scope


bearer = HTTPBearer(auto_error=True)

async def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    token = creds.credentials
    try:
        payload = decode_access_token(token)
        sub: str | None = payload.get("sub")
        if not sub:
            raise HTTPException(status_code=401, detail="Token inválido")
    except JWTError:
        raise HTTPException(status_code=401, detail="Token inválido")

    result = await db.execute(select(User).where(User.id == sub))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="Usuario no encontrado")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Usuario inactivo")

    return user

# --- Contexto de la request: usuario + clínica + perfil profesional ---
@dataclass
class AuthContext:
    user: User
    clinic: Clinic
    professional_id: str | None
    scope: Scope | None = None

    @property
    def is_admin(self) -> bool:
        return self.user.role == RoleEnum.admin

    def now(self):
        return clinic_now(self.clinic.timezone)

    def can_access(self, owner_professional_id: str | None) -> bool:
        return can_access_owned(self.scope, self.professional_id, owner_professional_id)

    def ensure_access(self, owner_professional_id: str | None) -> None:
        if not self.can_access(owner_professional_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permiso denegado")

async def get_linked_professional_id(user: User, db: AsyncSession) -> str | None:
    if user.role != RoleEnum.professional:
        return None
    res = await db.execute(select(Professional.id).where(Professional.user_id == user.id))
    return res.scalar_one_or_none()

async def get_auth_context(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    clinic = await db.get(Clinic, user.clinic_id)
    if not clinic or not clinic.is_active:
        raise HTTPException(status_code=403, detail="Clínica inactiva")
    return AuthContext(user=user, clinic=clinic, professional_id=await get_linked_professional_id(user, db))

def authorize(resource: Resource, action: Action):
    """Resuelve el alcance (own/clinic) del rol para resource+action, o 403."""
    async def _guard(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        scope = resolve_scope(ctx.user.role, resource, action)
        if scope is None or (scope == "own" and not ctx.professional_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permiso denegado")
        ctx.scope = scope
        return ctx
    return _guard

# --- jobs externos ---
async def verify_cron_secret(request: Request) -> None:
    if request.headers.get("authorization") != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="No autorizado")

def client_meta(request: Request) -> dict:
    ip = request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip")
    if not ip and request.client:
        ip = request.client.host
    return {"ip_address": ip, "user_agent": request.headers.get("user-agent")}
