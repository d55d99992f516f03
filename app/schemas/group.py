from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import date

from app.core.clock import TIME_RE
from app.models.recurrence import RecurrenceType

class GroupCreate(BaseModel):
    professional_id: Optional[str] = None
    name: str = Field(..., min_length=2)
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: str = Field(..., pattern=TIME_RE.pattern)
    duration: int = Field(90, ge=15, le=480)
    recurrence_type: RecurrenceType = RecurrenceType.WEEKLY

class GroupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    professional_id: str
    name: str
    day_of_week: int
    start_time: str
    duration: int
    recurrence_type: RecurrenceType
    is_active: bool

class MemberIn(BaseModel):
    patient_id: str
    join_date: date

class MemberLeaveIn(BaseModel):
    leave_date: date

class MemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    group_id: str
    patient_id: str
    join_date: date
    leave_date: Optional[date] = None

class GenerateIn(BaseModel):
    start_date: date
    end_date: date

class GenerationOut(BaseModel):
    sessions_created: int
    appointments_created: int
    appointments_cancelled: int = 0
