import uuid
import enum
from datetime import date, datetime
from sqlalchemy import String, Enum, ForeignKey, Integer, Boolean, Date, DateTime, JSON, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db import Base
from app.models.appointment import Modality

class RecurrenceType(str, enum.Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"

class RecurrenceEndType(str, enum.Enum):
    BY_DATE = "BY_DATE"
    BY_OCCURRENCES = "BY_OCCURRENCES"
    INDEFINITE = "INDEFINITE"

class AppointmentRecurrence(Base):
    __tablename__ = "appointment_recurrences"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    clinic_id: Mapped[str] = mapped_column(String(36), ForeignKey("clinics.id"), index=True)
    professional_id: Mapped[str] = mapped_column(String(36), ForeignKey("professionals.id"), index=True)
    patient_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("patients.id"), nullable=True, index=True)

    modality: Mapped[Modality] = mapped_column(Enum(Modality), default=Modality.PRESENCIAL)
    day_of_week: Mapped[int] = mapped_column(Integer)  # 0 = domingo
    start_time: Mapped[str] = mapped_column(String(5))
    end_time: Mapped[str] = mapped_column(String(5))
    duration: Mapped[int] = mapped_column(Integer)  # minutos

    recurrence_type: Mapped[RecurrenceType] = mapped_column(Enum(RecurrenceType))
    recurrence_end_type: Mapped[RecurrenceEndType] = mapped_column(Enum(RecurrenceEndType))
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    occurrences: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # solo INDEFINITE: hasta dónde se generaron turnos
    last_generated_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # fechas salteadas "YYYY-MM-DD" (ordenadas). Reasignar la lista, no mutarla
    exceptions: Mapped[list[str]] = mapped_column(JSON, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), server_default=func.now())

    professional = relationship("Professional")
    patient = relationship("Patient")
    clinic = relationship("Clinic")
