"""Job de extensión de series INDEFINITE (lo llama un cron externo).

Para cada serie activa de una clínica activa cuya última fecha generada esté a
menos de 2 meses, genera la ventana siguiente de 3 meses salteando excepciones,
fechas pasadas y horarios ocupados. last_generated_date avanza hasta la última
fecha de la ventana aunque no se haya creado nada, así la misma ventana no se
reprocesa. Re-ejecutar el job no duplica turnos.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import clinic_now
from app.models.appointment import AppointmentType
from app.models.clinic import Clinic
from app.models.links import AppointmentProfessional
from app.models.professional import Professional
from app.models.recurrence import AppointmentRecurrence, RecurrenceEndType
from app.services.appointments import new_appointment
from app.services.audit import AuditAction, audit_entry, record_audit_entries
from app.services.conflicts import check_conflicts_bulk
from app.services.recurrence import add_months, calculate_next_window_dates, is_date_exception, EXTENSION_WINDOW_MONTHS
from app.services.recurrence_mutation import load_recurrence_roster

logger = logging.getLogger(__name__)

EXTEND_WHEN_WITHIN_MONTHS = 2


@dataclass
class ExtensionReport:
    recurrences_processed: int = 0
    recurrences_skipped: int = 0
    appointments_created: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "recurrences_processed": self.recurrences_processed,
            "recurrences_skipped": self.recurrences_skipped,
            "appointments_created": self.appointments_created,
            "errors": self.errors,
        }


async def extend_recurrence(
    db: AsyncSession,
    recurrence: AppointmentRecurrence,
    buffer_minutes: int,
    now: datetime,
) -> int | None:
    """Extiende una serie. None = no le tocaba; si no, cantidad de turnos creados."""
    last = recurrence.last_generated_date or recurrence.start_date
    if last > add_months(now.date(), EXTEND_WHEN_WITHIN_MONTHS):
        return None

    window = calculate_next_window_dates(
        last, recurrence.start_time, recurrence.duration, recurrence.recurrence_type, EXTENSION_WINDOW_MONTHS,
        anchor=recurrence.start_date,
    )
    if not window:
        return None

    candidates = [d for d in window
                  if not is_date_exception(d.date, recurrence.exceptions) and d.scheduled_at >= now]
    roster = await load_recurrence_roster(db, recurrence.id)
    if candidates:
        taken = {c.index for c in await check_conflicts_bulk(
            db,
            recurrence.professional_id,
            [(d.scheduled_at, d.end_at) for d in candidates],
            buffer_minutes,
            additional_professional_ids=roster,
        )}
        candidates = [d for i, d in enumerate(candidates) if i not in taken]

    created = [
        new_appointment(
            recurrence.clinic_id, recurrence.professional_id, d.scheduled_at, d.end_at,
            patient_id=recurrence.patient_id,
            recurrence_id=recurrence.id,
            type=AppointmentType.CONSULTA,
            modality=recurrence.modality,
        )
        for d in candidates
    ]
    db.add_all(created)
    db.add_all([AppointmentProfessional(appointment_id=ap.id, professional_id=p) for ap in created for p in roster])
    recurrence.last_generated_date = window[-1].date
    await db.commit()
    return len(created)


async def extend_indefinite_recurrences(db: AsyncSession) -> ExtensionReport:
    started = time.monotonic()
    report = ExtensionReport()

    res = await db.execute(
        select(AppointmentRecurrence.id, Clinic.id, Clinic.timezone, Clinic.is_active,
               Professional.buffer_between_slots)
        .join(Clinic, AppointmentRecurrence.clinic_id == Clinic.id)
        .join(Professional, AppointmentRecurrence.professional_id == Professional.id)
        .where(
            AppointmentRecurrence.recurrence_end_type == RecurrenceEndType.INDEFINITE,
            AppointmentRecurrence.is_active.is_(True),
        )
    )
    rows = res.all()
    clinic_ids: list[str] = []

    for recurrence_id, clinic_id, tz, clinic_active, buffer in rows:
        if clinic_id not in clinic_ids:
            clinic_ids.append(clinic_id)
        if not clinic_active:
            report.recurrences_skipped += 1
            continue
        try:
            recurrence = await db.get(AppointmentRecurrence, recurrence_id)
            created = await extend_recurrence(db, recurrence, buffer or 0, clinic_now(tz))
        except SQLAlchemyError as e:
            await db.rollback()
            logger.exception("Error extendiendo la serie %s", recurrence_id)
            report.errors.append(f"Serie {recurrence_id}: {e.__class__.__name__}")
            continue
        if created is None:
            report.recurrences_skipped += 1
        else:
            report.recurrences_processed += 1
            report.appointments_created += created

    elapsed_ms = int((time.monotonic() - started) * 1000)
    await record_audit_entries(db, [
        audit_entry(
            cid, AuditAction.EXTEND_RECURRENCES_JOB_EXECUTED, "CronJob", "extend-recurrences",
            new_values={"execution_time_ms": elapsed_ms, "results": {
                "recurrences_processed": report.recurrences_processed,
                "appointments_created": report.appointments_created,
                "recurrences_skipped": report.recurrences_skipped,
                "errors_count": len(report.errors),
            }},
        )
        for cid in clinic_ids
    ])
    logger.info("extend-recurrences: %d procesadas, %d salteadas, %d turnos, %d errores",
                report.recurrences_processed, report.recurrences_skipped,
                report.appointments_created, len(report.errors))
    return report
