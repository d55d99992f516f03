import uuid
from sqlalchemy import String, Boolean, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.config import settings
from app.core.db import Base

class Clinic(Base):
    __tablename__ = "clinics"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # zona horaria IANA: todas las fechas de la clínica se guardan en esta hora local
    timezone: Mapped[str] = mapped_column(String(64), default=lambda: settings.DEFAULT_TIMEZONE)
    # horas antes del turno en que sale cada recordatorio
    reminder_hours: Mapped[list[int]] = mapped_column(JSON, default=lambda: [48, 2])
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    professionals = relationship("Professional", back_populates="clinic")
    patients = relationship("Patient", back_populates="clinic")
