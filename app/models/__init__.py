from app.models.clinic import Clinic
from app.models.user import User
from app.models.professional import Professional
from app.models.patient import Patient
from app.models.availability import AvailabilityRule, AvailabilityException
from app.models.appointment import Appointment
from app.models.recurrence import AppointmentRecurrence
from app.models.links import AppointmentProfessional, RecurrenceProfessional
from app.models.group import TherapyGroup, GroupMembership
from app.models.audit import AuditLog
from app.models.notification import Notification
