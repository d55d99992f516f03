from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, Literal
from datetime import date, datetime
from decimal import Decimal

from app.core.clock import TIME_RE
from app.models.appointment import AppointmentType, AppointmentStatus, Modality
from app.models.recurrence import RecurrenceType, RecurrenceEndType

HHMM = Field(..., pattern=TIME_RE.pattern, description="HH:MM")

class RecurrenceIn(BaseModel):
    recurrence_type: RecurrenceType
    recurrence_end_type: RecurrenceEndType
    end_date: Optional[date] = None
    occurrences: Optional[int] = Field(None, ge=1, le=52)

    @model_validator(mode="after")
    def _check_end(self):
        if self.recurrence_end_type == RecurrenceEndType.BY_DATE and not self.end_date:
            raise ValueError("end_date es obligatorio para BY_DATE")
        if self.recurrence_end_type == RecurrenceEndType.BY_OCCURRENCES and not self.occurrences:
            raise ValueError("occurrences es obligatorio para BY_OCCURRENCES")
        return self

class AppointmentCreate(BaseModel):
    professional_id: Optional[str] = None   # si crea un profesional, puede omitirse
    patient_id: Optional[str] = None
    type: AppointmentType = AppointmentType.CONSULTA
    title: Optional[str] = Field(None, max_length=255)
    date: date
    start_time: str = HHMM
    duration: Optional[int] = Field(None, ge=5, le=480)  # default: duración del profesional
    modality: Modality = Modality.PRESENCIAL
    blocks_time: Optional[bool] = None
    notes: Optional[str] = Field(None, max_length=2000)
    price: Optional[Decimal] = Field(None, ge=0)
    additional_professional_ids: list[str] = []
    recurrence: Optional[RecurrenceIn] = None

    @model_validator(mode="after")
    def _check_kind(self):
        if self.type == AppointmentType.CONSULTA and not self.patient_id:
            raise ValueError("patient_id es obligatorio para una consulta")
        if self.type != AppointmentType.CONSULTA and not self.title:
            raise ValueError("title es obligatorio para entradas que no son consulta")
        return self

class AppointmentUpdate(BaseModel):
    professional_id: Optional[str] = None
    patient_id: Optional[str] = None
    title: Optional[str] = Field(None, max_length=255)
    scheduled_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    modality: Optional[Modality] = None
    blocks_time: Optional[bool] = None
    notes: Optional[str] = Field(None, max_length=2000)
    price: Optional[Decimal] = Field(None, ge=0)
    status: Optional[AppointmentStatus] = None
    cancellation_reason: Optional[str] = Field(None, max_length=500)
    additional_professional_ids: Optional[list[str]] = None

class StatusIn(BaseModel):
    status: AppointmentStatus
    reason: Optional[str] = Field(None, max_length=500)

class CancelIn(BaseModel):
    cancelled_by: Literal["patient", "professional"] = "professional"
    reason: Optional[str] = Field(None, max_length=500)

class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    professional_id: str
    patient_id: Optional[str] = None
    group_id: Optional[str] = None
    recurrence_id: Optional[str] = None
    type: AppointmentType
    title: Optional[str] = None
    scheduled_at: datetime
    end_at: datetime
    status: AppointmentStatus
    modality: Modality
    blocks_time: bool
    notes: Optional[str] = None
    price: Optional[Decimal] = None
    cancellation_reason: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

class AppointmentCreatedOut(BaseModel):
    appointments: list[AppointmentOut]
    recurrence_id: Optional[str] = None
    total: int
