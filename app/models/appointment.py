import uuid
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Enum, ForeignKey, DateTime, Boolean, Numeric, Text, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db import Base

class AppointmentType(str, enum.Enum):
    CONSULTA = "CONSULTA"
    TAREFA = "TAREFA"
    LEMBRETE = "LEMBRETE"
    NOTA = "NOTA"
    REUNIAO = "REUNIAO"

class AppointmentStatus(str, enum.Enum):
    AGENDADO = "AGENDADO"
    CONFIRMADO = "CONFIRMADO"
    CANCELADO_PACIENTE = "CANCELADO_PACIENTE"
    CANCELADO_PROFISSIONAL = "CANCELADO_PROFISSIONAL"
    NAO_COMPARECEU = "NAO_COMPARECEU"
    FINALIZADO = "FINALIZADO"

class Modality(str, enum.Enum):
    PRESENCIAL = "PRESENCIAL"
    ONLINE = "ONLINE"

CANCELLED_STATUSES = (AppointmentStatus.CANCELADO_PACIENTE, AppointmentStatus.CANCELADO_PROFISSIONAL)
ACTIVE_STATUSES = (AppointmentStatus.AGENDADO, AppointmentStatus.CONFIRMADO)
# recordatorios / notas no ocupan agenda
NON_BLOCKING_TYPES = (AppointmentType.LEMBRETE, AppointmentType.NOTA)

class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    clinic_id: Mapped[str] = mapped_column(String(36), ForeignKey("clinics.id"), index=True)
    professional_id: Mapped[str] = mapped_column(String(36), ForeignKey("professionals.id"), index=True)
    patient_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("patients.id"), nullable=True, index=True)
    group_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("therapy_groups.id"), nullable=True, index=True)
    recurrence_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("appointment_recurrences.id", ondelete="SET NULL"), nullable=True, index=True)

    type: Mapped[AppointmentType] = mapped_column(Enum(AppointmentType), default=AppointmentType.CONSULTA)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), index=True)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), index=True)

    status: Mapped[AppointmentStatus] = mapped_column(Enum(AppointmentStatus), default=AppointmentStatus.AGENDADO)
    modality: Mapped[Modality] = mapped_column(Enum(Modality), default=Modality.PRESENCIAL)
    blocks_time: Mapped[bool] = mapped_column(Boolean, default=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), server_default=func.now())

    professional = relationship("Professional")
    patient = relationship("Patient")
    clinic = relationship("Clinic")

    __table_args__ = (
        Index("ix_appointment_professional_time", "professional_id", "scheduled_at", "end_at"),
        Index("ix_appointment_clinic_time", "clinic_id", "scheduled_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
