from pydantic import BaseModel, Field, ConfigDict
from typing import Optional

class ProfessionalCreate(BaseModel):
    name: str = Field(..., min_length=2)
    specialty: Optional[str] = None
    color: Optional[str] = None
    user_id: Optional[str] = None
    appointment_duration: int = Field(50, ge=5, le=480)
    buffer_between_slots: int = Field(0, ge=0, le=120)

class ProfessionalUpdate(BaseModel):
    name: Optional[str] = None
    specialty: Optional[str] = None
    color: Optional[str] = None
    appointment_duration: Optional[int] = Field(None, ge=5, le=480)
    buffer_between_slots: Optional[int] = Field(None, ge=0, le=120)
    is_active: Optional[bool] = None

class ProfessionalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    user_id: Optional[str] = None
    name: str
    specialty: Optional[str] = None
    color: Optional[str] = None
    appointment_duration: int
    buffer_between_slots: int
    is_active: bool
