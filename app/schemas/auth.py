from pydantic import BaseModel, EmailStr, Field, ConfigDict
from app.models.user import RoleEnum

class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    full_name: str
    email: EmailStr
    role: RoleEnum
    is_active: bool

class LoginOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut

class MeOut(UserOut):
    professional_id: str | None = None
