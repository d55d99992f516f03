from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Literal
from datetime import date, datetime

from app.core.clock import TIME_RE
from app.models.appointment import Modality
from app.models.recurrence import RecurrenceType, RecurrenceEndType

class RecurrenceUpdate(BaseModel):
    """Update parcial explícito: solo cuentan los campos enviados (model_fields_set)."""
    recurrence_type: Optional[RecurrenceType] = None
    start_time: Optional[str] = Field(None, pattern=TIME_RE.pattern)
    end_time: Optional[str] = Field(None, pattern=TIME_RE.pattern)
    modality: Optional[Modality] = None
    recurrence_end_type: Optional[RecurrenceEndType] = None
    end_date: Optional[date] = None
    occurrences: Optional[int] = Field(None, ge=1, le=52)
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    apply_to: Optional[Literal["future"]] = None
    additional_professional_ids: Optional[list[str]] = None

class FinalizeIn(BaseModel):
    end_date: date

class ExceptionIn(BaseModel):
    date: date
    action: Literal["skip", "unskip"]

class RecurrenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    professional_id: str
    patient_id: Optional[str] = None
    modality: Modality
    day_of_week: int
    start_time: str
    end_time: str
    duration: int
    recurrence_type: RecurrenceType
    recurrence_end_type: RecurrenceEndType
    start_date: date
    end_date: Optional[date] = None
    occurrences: Optional[int] = None
    last_generated_date: Optional[date] = None
    exceptions: list[str] = []
    is_active: bool

class RecurrenceDetailOut(RecurrenceOut):
    summary: str
    additional_professional_ids: list[str] = []
    upcoming: list[datetime] = []

class MutationOut(BaseModel):
    recurrence: RecurrenceOut
    updated: int = 0
    deleted: int = 0
    cancelled: int = 0
    created: int = 0
