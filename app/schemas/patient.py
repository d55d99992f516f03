from pydantic import BaseModel, EmailStr, ConfigDict
from typing import Optional
from datetime import datetime

class PatientCreate(BaseModel):
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    consent_whatsapp: bool = False
    consent_email: bool = False

class PatientUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    consent_whatsapp: Optional[bool] = None
    consent_email: Optional[bool] = None
    is_active: Optional[bool] = None

class PatientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    consent_whatsapp: bool
    consent_email: bool
    is_active: bool
    last_visit_at: Optional[datetime] = None
