from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional
from datetime import date

from app.core.clock import TIME_RE

class RuleIn(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: str = Field(..., pattern=TIME_RE.pattern)
    end_time: str = Field(..., pattern=TIME_RE.pattern)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_range(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time debe ser posterior a start_time")
        return self

class RulesIn(BaseModel):
    rules: list[RuleIn]

class RuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    professional_id: str
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool

class ExceptionCreate(BaseModel):
    professional_id: Optional[str] = None   # admin + None = toda la clínica
    clinic_wide: bool = False
    date: date
    is_available: bool = False
    start_time: Optional[str] = Field(None, pattern=TIME_RE.pattern)
    end_time: Optional[str] = Field(None, pattern=TIME_RE.pattern)
    reason: Optional[str] = Field(None, max_length=500)

class ExceptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    professional_id: Optional[str] = None
    date: date
    is_available: bool
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None

class SlotsOut(BaseModel):
    date: date
    professional_id: str
    duration: int
    slots: list[str]
