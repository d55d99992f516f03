from datetime import date, datetime, timedelta

from app.core.clock import day_of_week
from app.core.security import hash_password, create_access_token
from app.models.appointment import AppointmentType
from app.models.availability import AvailabilityRule
from app.models.clinic import Clinic
from app.models.patient import Patient
from app.models.professional import Professional
from app.models.user import User, RoleEnum
from app.services.appointments import new_appointment

PASSWORD = "secret123"


async def make_clinic(db, name="Clínica Central", **kw) -> Clinic:
    clinic = Clinic(name=name, timezone=kw.pop("timezone", "America/Sao_Paulo"),
                    reminder_hours=kw.pop("reminder_hours", [48, 2]), is_active=True, **kw)
    db.add(clinic)
    await db.commit()
    return clinic


async def make_user(db, clinic, email, role="professional", full_name=None) -> User:
    user = User(
        clinic_id=clinic.id,
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        role=RoleEnum(role),
        hashed_password=hash_password(PASSWORD),
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user


async def make_professional(db, clinic, user=None, name="Dr. Pedro", duration=50, buffer=0) -> Professional:
    prof = Professional(
        clinic_id=clinic.id,
        user_id=user.id if user else None,
        name=name,
        appointment_duration=duration,
        buffer_between_slots=buffer,
        is_active=True,
    )
    db.add(prof)
    await db.commit()
    return prof


async def make_patient(db, clinic, name="Paciente", **kw) -> Patient:
    kw.setdefault("consent_email", False)
    kw.setdefault("consent_whatsapp", False)
    p = Patient(clinic_id=clinic.id, name=name, is_active=True, **kw)
    db.add(p)
    await db.commit()
    return p


async def add_rules(db, professional, days=range(7), start="07:00", end="21:00") -> list[AvailabilityRule]:
    rules = [AvailabilityRule(professional_id=professional.id, day_of_week=d, start_time=start, end_time=end,
                              is_active=True) for d in days]
    db.add_all(rules)
    await db.commit()
    return rules


async def book(db, professional, start: datetime, minutes=60, **fields):
    fields.setdefault("type", AppointmentType.CONSULTA)
    ap = new_appointment(professional.clinic_id, professional.id, start, start + timedelta(minutes=minutes), **fields)
    db.add(ap)
    await db.commit()
    return ap


def auth_headers(user: User) -> dict:
    token = create_access_token(subject=user.id, extra={"role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def future_weekday(dow: int, weeks_ahead: int = 3) -> date:
    """Un día `dow` (0 = domingo) a unas semanas de hoy."""
    d = date.today() + timedelta(weeks=weeks_ahead)
    return d + timedelta(days=(dow - day_of_week(d)) % 7)
