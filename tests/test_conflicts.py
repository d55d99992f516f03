from datetime import datetime

from sqlalchemy import delete

from app.models.appointment import Appointment, AppointmentStatus, AppointmentType
from app.models.links import AppointmentProfessional
from app.services.conflicts import check_conflict, check_conflicts_bulk

from .helpers import book, make_professional

T = lambda h, m=0: datetime(2026, 3, 2, h, m)  # noqa: E731


async def test_overlap_is_a_conflict(db, professional, patient):
    existing = await book(db, professional, T(10), patient_id=patient.id)
    found = await check_conflict(db, professional.id, T(10, 30), T(11, 30))
    assert found.has_conflict
    assert found.conflicting_appointment.id == existing.id
    assert found.conflicting_appointment.patient_name == "Juan Pérez"


async def test_back_to_back_is_fine_without_buffer(db, professional):
    await book(db, professional, T(10))
    assert not (await check_conflict(db, professional.id, T(11), T(12))).has_conflict
    assert not (await check_conflict(db, professional.id, T(9), T(10))).has_conflict


async def test_buffer_applies_on_both_sides(db, professional):
    await book(db, professional, T(10))
    assert (await check_conflict(db, professional.id, T(11), T(12), buffer_minutes=15)).has_conflict
    assert (await check_conflict(db, professional.id, T(8, 50), T(9, 50), buffer_minutes=15)).has_conflict
    assert not (await check_conflict(db, professional.id, T(11, 15), T(12), buffer_minutes=15)).has_conflict


async def test_cancelled_and_non_blocking_entries_are_ignored(db, professional):
    await book(db, professional, T(10), status=AppointmentStatus.CANCELADO_PACIENTE)
    await book(db, professional, T(10), type=AppointmentType.NOTA, title="Llamar", blocks_time=False)
    assert not (await check_conflict(db, professional.id, T(10), T(11))).has_conflict


async def test_finished_appointment_still_blocks(db, professional):
    await book(db, professional, T(10), status=AppointmentStatus.FINALIZADO)
    assert (await check_conflict(db, professional.id, T(10), T(11))).has_conflict


async def test_exclude_self(db, professional):
    ap = await book(db, professional, T(10))
    assert not (await check_conflict(db, professional.id, T(10, 30), T(11, 30),
                                     exclude_appointment_id=ap.id)).has_conflict


async def test_co_attended_appointment_blocks_additional_professional(db, clinic, professional):
    colleague = await make_professional(db, clinic, name="Dr. Luis")
    shared = await book(db, professional, T(14))
    db.add(AppointmentProfessional(appointment_id=shared.id, professional_id=colleague.id))
    await db.commit()

    # la agenda del colega incluye el turno compartido
    assert (await check_conflict(db, colleague.id, T(14), T(15))).has_conflict
    # y un turno de otro profesional choca si el colega participa
    other = await make_professional(db, clinic, name="Dra. Marta")
    found = await check_conflict(db, other.id, T(14, 30), T(15, 30), additional_professional_ids=[colleague.id])
    assert found.conflicting_appointment.id == shared.id


async def test_bulk_returns_every_conflicting_index(db, professional):
    await book(db, professional, datetime(2026, 3, 9, 10))
    await book(db, professional, datetime(2026, 3, 23, 10, 30))
    dates = [(datetime(2026, 3, d, 10), datetime(2026, 3, d, 11)) for d in (2, 9, 16, 23)]
    conflicts = await check_conflicts_bulk(db, professional.id, dates)
    assert [c.index for c in conflicts] == [1, 3]
    assert await check_conflicts_bulk(db, professional.id, []) == []


async def test_conflict_check_is_symmetric(db, professional):
    cases = [
        ((T(10), 60), (T(10, 30), 60), 0, True),
        ((T(10), 60), (T(11), 60), 0, False),
        ((T(10), 60), (T(11, 10), 30), 15, True),
        ((T(10), 60), (T(11, 20), 30), 15, False),
        ((T(10), 90), (T(10, 15), 15), 0, True),
    ]
    for (a_start, a_minutes), (b_start, b_minutes), buffer, expected in cases:
        a = await book(db, professional, a_start, minutes=a_minutes)
        b = await book(db, professional, b_start, minutes=b_minutes)

        a_vs_b = await check_conflict(db, professional.id, a.scheduled_at, a.end_at, buffer, exclude_appointment_id=a.id)
        b_vs_a = await check_conflict(db, professional.id, b.scheduled_at, b.end_at, buffer, exclude_appointment_id=b.id)
        assert a_vs_b.has_conflict == b_vs_a.has_conflict == expected

        await db.execute(delete(Appointment).where(Appointment.id.in_([a.id, b.id])))
        await db.commit()


async def test_larger_buffer_never_removes_conflicts(db, professional):
    await book(db, professional, T(10))
    await book(db, professional, T(14))
    candidates = [(T(11, 5), T(12)), (T(12), T(13, 50)), (T(8, 30), T(9, 40)), (T(15, 30), T(16))]

    previous: set[int] = set()
    for buffer in (0, 5, 10, 15, 30, 60, 120):
        found = {c.index for c in await check_conflicts_bulk(db, professional.id, candidates, buffer)}
        assert previous <= found
        previous = found
    assert previous == {0, 1, 2, 3}
