from sqlalchemy import String, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.core.db import Base

class AppointmentProfessional(Base):
    """Profesionales adicionales de un turno (además del dueño)."""
    __tablename__ = "appointment_professionals"
    appointment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("appointments.id", ondelete="CASCADE"), primary_key=True)
    professional_id: Mapped[str] = mapped_column(String(36), ForeignKey("professionals.id"), primary_key=True)

    __table_args__ = (
        UniqueConstraint("appointment_id", "professional_id", name="uq_appointment_professional"),
        Index("ix_appt_prof_appointment", "appointment_id"),
        Index("ix_appt_prof_professional", "professional_id"),
    )

class RecurrenceProfessional(Base):
    """Profesionales adicionales de una serie recurrente."""
    __tablename__ = "recurrence_professionals"
    recurrence_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("appointment_recurrences.id", ondelete="CASCADE"), primary_key=True)
    professional_id: Mapped[str] = mapped_column(String(36), ForeignKey("professionals.id"), primary_key=True)

    __table_args__ = (
        UniqueConstraint("recurrence_id", "professional_id", name="uq_recurrence_professional"),
        Index("ix_rec_prof_recurrence", "recurrence_id"),
    )
