import uuid
from datetime import date
from sqlalchemy import String, ForeignKey, Integer, Boolean, Date, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.db import Base

class AvailabilityRule(Base):
    """Franja semanal de atención (puede haber varias por día)."""
    __tablename__ = "availability_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    professional_id: Mapped[str] = mapped_column(String(36), ForeignKey("professionals.id"), index=True)
    day_of_week: Mapped[int] = mapped_column(Integer)  # 0 = domingo
    start_time: Mapped[str] = mapped_column(String(5))  # "HH:MM"
    end_time: Mapped[str] = mapped_column(String(5))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    professional = relationship("Professional", back_populates="availability_rules")

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_rule_day_of_week"),
        Index("ix_rule_professional_day", "professional_id", "day_of_week"),
    )

class AvailabilityException(Base):
    """Bloqueo (o apertura) puntual de un día. Sin horas = día completo.
    professional_id NULL = excepción de toda la clínica (feriado)."""
    __tablename__ = "availability_exceptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    clinic_id: Mapped[str] = mapped_column(String(36), ForeignKey("clinics.id"), index=True)
    professional_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("professionals.id"), nullable=True)
    date: Mapped[date] = mapped_column(Date)
    is_available: Mapped[bool] = mapped_column(Boolean, default=False)
    start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        Index("ix_exception_professional_date", "professional_id", "date"),
        Index("ix_exception_clinic_date", "clinic_id", "date"),
    )

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None and self.end_time is None
