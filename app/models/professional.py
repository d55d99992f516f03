import uuid
from sqlalchemy import String, ForeignKey, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.db import Base

class Professional(Base):
    __tablename__ = "professionals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    clinic_id: Mapped[str] = mapped_column(String(36), ForeignKey("clinics.id"), index=True)
    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), unique=True, nullable=True)

    name: Mapped[str] = mapped_column(String(255))
    specialty: Mapped[str | None] = mapped_column(String(100), nullable=True)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # duración por defecto de la consulta y colchón entre turnos (minutos)
    appointment_duration: Mapped[int] = mapped_column(Integer, default=50)
    buffer_between_slots: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    clinic = relationship("Clinic", back_populates="professionals")
    user = relationship("User", back_populates="professional")
    availability_rules = relationship(
        "AvailabilityRule",
        back_populates="professional",
        cascade="all, delete-orphan",
    )
