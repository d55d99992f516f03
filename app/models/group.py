import uuid
from datetime import date
from sqlalchemy import String, Enum, ForeignKey, Integer, Boolean, Date, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db import Base
from app.models.recurrence import RecurrenceType

class TherapyGroup(Base):
    __tablename__ = "therapy_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    clinic_id: Mapped[str] = mapped_column(String(36), ForeignKey("clinics.id"), index=True)
    professional_id: Mapped[str] = mapped_column(String(36), ForeignKey("professionals.id"), index=True)

    name: Mapped[str] = mapped_column(String(255))
    day_of_week: Mapped[int] = mapped_column(Integer)
    start_time: Mapped[str] = mapped_column(String(5))
    duration: Mapped[int] = mapped_column(Integer, default=90)
    recurrence_type: Mapped[RecurrenceType] = mapped_column(Enum(RecurrenceType), default=RecurrenceType.WEEKLY)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    professional = relationship("Professional")
    memberships = relationship(
        "GroupMembership",
        back_populates="group",
        cascade="all, delete-orphan",
    )

class GroupMembership(Base):
    __tablename__ = "group_memberships"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    group_id: Mapped[str] = mapped_column(String(36), ForeignKey("therapy_groups.id", ondelete="CASCADE"), index=True)
    patient_id: Mapped[str] = mapped_column(String(36), ForeignKey("patients.id"), index=True)
    join_date: Mapped[date] = mapped_column(Date)
    leave_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    group = relationship("TherapyGroup", back_populates="memberships")
    patient = relationship("Patient")

    __table_args__ = (
        UniqueConstraint("group_id", "patient_id", name="uq_group_patient"),
    )

    def is_active_on(self, d: date) -> bool:
        # entra el día de join_date, el día de leave_date ya no participa
        return self.join_date <= d and (self.leave_date is None or self.leave_date > d)
