from datetime import datetime, timedelta
from urllib.parse import urlparse, parse_qs

import httpx
from sqlalchemy import select

from app.core.links import build_action_url
from app.models.audit import AuditLog
from app.models.notification import Notification, NotificationStatus, NotificationType
from app.services import notifications

from .helpers import PASSWORD, auth_headers, future_weekday, make_professional, make_user, add_rules


def single(patient, day, start="10:00", **kw):
    return {"patient_id": patient.id, "date": day.isoformat(), "start_time": start, **kw}


async def test_login_and_me(client, professional, professional_user):
    res = await client.post("/auth/login", json={"email": professional_user.email, "password": PASSWORD})
    assert res.status_code == 200
    token = res.json()["access_token"]

    me = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["professional_id"] == professional.id

    bad = await client.post("/auth/login", json={"email": professional_user.email, "password": "wrong-pass"})
    assert bad.status_code == 401


async def test_create_single_appointment(client, db, professional, patient, professional_headers):
    day = future_weekday(1)
    res = await client.post("/appointments/", json=single(patient, day), headers=professional_headers)
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["total"] == 1
    assert body["recurrence_id"] is None
    ap = body["appointments"][0]
    assert ap["professional_id"] == professional.id
    assert ap["end_at"].endswith("10:50:00")  # duración por defecto del profesional

    sent = (await db.execute(select(Notification.type).where(Notification.appointment_id == ap["id"]))).scalars().all()
    assert sent == [NotificationType.APPOINTMENT_CONFIRMATION]
    actions = (await db.execute(select(AuditLog.action).where(AuditLog.entity_id == ap["id"]))).scalars().all()
    assert actions == ["APPOINTMENT_CREATED"]


async def test_provider_error_does_not_fail_committed_appointment(client, db, patient, professional_headers,
                                                                   monkeypatch):
    async def broken_email(to, subject, content):
        raise httpx.InvalidURL("URL de proveedor inválida")

    monkeypatch.setattr(notifications, "send_email", broken_email)
    res = await client.post("/appointments/", json=single(patient, future_weekday(4)), headers=professional_headers)
    assert res.status_code == 201, res.text

    ap_id = res.json()["appointments"][0]["id"]
    rows = (await db.execute(select(Notification.status, Notification.failure_reason)
                             .where(Notification.appointment_id == ap_id))).all()
    assert [tuple(r) for r in rows] == [(NotificationStatus.FAILED, "URL de proveedor inválida")]


async def test_conflict_returns_409_with_details(client, professional, patient, professional_headers):
    day = future_weekday(2)
    first = await client.post("/appointments/", json=single(patient, day), headers=professional_headers)
    assert first.status_code == 201

    res = await client.post("/appointments/", json=single(patient, day, "10:30"), headers=professional_headers)
    assert res.status_code == 409
    body = res.json()
    assert body["code"] == "APPOINTMENT_CONFLICT"
    assert body["conflicting_appointment"]["id"] == first.json()["appointments"][0]["id"]


async def test_outside_working_hours(client, professional, patient, professional_headers):
    res = await client.post("/appointments/", json=single(patient, future_weekday(3), "21:30"),
                            headers=professional_headers)
    assert res.status_code == 400
    assert res.json()["code"] == "AVAILABILITY_VIOLATION"
    assert res.json()["reason"] == "OUTSIDE_RULES"


async def test_series_and_recurrence_detail(client, professional, patient, admin_headers):
    payload = single(patient, future_weekday(4), "09:00", professional_id=professional.id, duration=60,
                     recurrence={"recurrence_type": "WEEKLY", "recurrence_end_type": "BY_OCCURRENCES",
                                 "occurrences": 4})
    res = await client.post("/appointments/", json=payload, headers=admin_headers)
    assert res.status_code == 201, res.text
    assert res.json()["total"] == 4
    rec_id = res.json()["recurrence_id"]

    detail = await client.get(f"/appointments/recurrences/{rec_id}", headers=admin_headers)
    assert detail.status_code == 200
    assert detail.json()["summary"] == "Semanal - 4 sesiones"
    assert len(detail.json()["upcoming"]) == 4


async def test_recurrence_day_change_conflict_via_api(client, professional, patient, admin_headers):
    monday = future_weekday(1)
    payload = single(patient, monday, "09:00", professional_id=professional.id, duration=60,
                     recurrence={"recurrence_type": "WEEKLY", "recurrence_end_type": "BY_OCCURRENCES",
                                 "occurrences": 3})
    rec_id = (await client.post("/appointments/", json=payload, headers=admin_headers)).json()["recurrence_id"]
    blocker = single(patient, monday + timedelta(days=2), "09:00", professional_id=professional.id)
    assert (await client.post("/appointments/", json=blocker, headers=admin_headers)).status_code == 201

    res = await client.patch(f"/appointments/recurrences/{rec_id}", json={"day_of_week": 3}, headers=admin_headers)
    assert res.status_code == 409
    assert res.json()["code"] == "DAY_CHANGE_CONFLICTS"
    assert len(res.json()["conflicts"]) == 1


async def test_professional_only_sees_own_agenda(client, db, clinic, professional, patient, professional_headers):
    other_user = await make_user(db, clinic, email="luis@clinicacentral.com.br")
    other = await make_professional(db, clinic, user=other_user, name="Dr. Luis")
    await add_rules(db, other)
    other_headers = auth_headers(other_user)

    res = await client.post("/appointments/", json=single(patient, future_weekday(1)), headers=other_headers)
    ap_id = res.json()["appointments"][0]["id"]

    assert (await client.get(f"/appointments/{ap_id}", headers=professional_headers)).status_code == 403
    listed = await client.get("/appointments/", headers=professional_headers)
    assert listed.status_code == 200
    assert listed.json() == []
    forbidden = single(patient, future_weekday(2), professional_id=other.id)
    assert (await client.post("/appointments/", json=forbidden, headers=professional_headers)).status_code == 403


async def test_status_flow_and_cancel(client, db, professional, patient, professional_headers):
    res = await client.post("/appointments/", json=single(patient, future_weekday(5)), headers=professional_headers)
    ap_id = res.json()["appointments"][0]["id"]

    ok = await client.post(f"/appointments/{ap_id}/status", json={"status": "CONFIRMADO"}, headers=professional_headers)
    assert ok.status_code == 200
    assert ok.json()["confirmed_at"] is not None

    back = await client.post(f"/appointments/{ap_id}/status", json={"status": "AGENDADO"}, headers=professional_headers)
    assert back.status_code == 400
    assert back.json()["code"] == "INVALID_STATUS_TRANSITION"

    cancel = await client.post(f"/appointments/{ap_id}/cancel", json={"cancelled_by": "patient", "reason": "Viaje"},
                               headers=professional_headers)
    assert cancel.status_code == 200
    assert cancel.json()["status"] == "CANCELADO_PACIENTE"
    assert cancel.json()["cancellation_reason"] == "Viaje"
    types = (await db.execute(select(Notification.type).where(Notification.appointment_id == ap_id))).scalars().all()
    assert NotificationType.APPOINTMENT_CANCELLATION in types


async def test_public_confirm_link(client, professional, patient, professional_headers):
    res = await client.post("/appointments/", json=single(patient, future_weekday(2)), headers=professional_headers)
    ap = res.json()["appointments"][0]
    url = build_action_url(ap["id"], "confirm", datetime.fromisoformat(ap["scheduled_at"]), "America/Sao_Paulo")
    qs = parse_qs(urlparse(url).query)
    params = {"id": ap["id"], "expires": qs["expires"][0], "sig": qs["sig"][0]}

    tampered = await client.get("/public/appointments/confirm", params={**params, "sig": "0" * 64})
    assert tampered.status_code == 400

    ok = await client.get("/public/appointments/confirm", params=params)
    assert ok.status_code == 200
    assert ok.json()["status"] == "CONFIRMADO"
    again = await client.get("/public/appointments/confirm", params=params)
    assert again.json()["message"] == "Tu turno ya estaba confirmado"


async def test_availability_endpoints(client, professional, professional_headers, admin_headers):
    rules = {"rules": [{"day_of_week": 1, "start_time": "08:00", "end_time": "12:00"},
                       {"day_of_week": 1, "start_time": "14:00", "end_time": "18:00"}]}
    res = await client.put(f"/availability/professionals/{professional.id}/rules", json=rules,
                           headers=professional_headers)
    assert res.status_code == 200
    assert len(res.json()) == 2

    overlapping = {"rules": [{"day_of_week": 2, "start_time": "08:00", "end_time": "12:00"},
                             {"day_of_week": 2, "start_time": "11:00", "end_time": "13:00"}]}
    res = await client.put(f"/availability/professionals/{professional.id}/rules", json=overlapping,
                           headers=professional_headers)
    assert res.status_code == 400

    monday = future_weekday(1)
    block = {"date": monday.isoformat(), "start_time": "08:00", "end_time": "10:00", "reason": "Médico"}
    assert (await client.post("/availability/exceptions", json=block, headers=professional_headers)).status_code == 201
    dup = {**block, "start_time": "09:00", "end_time": "11:00"}
    assert (await client.post("/availability/exceptions", json=dup, headers=professional_headers)).status_code == 400

    slots = await client.get(f"/availability/professionals/{professional.id}/slots",
                             params={"date": monday.isoformat(), "duration": 60}, headers=professional_headers)
    assert slots.status_code == 200
    assert slots.json()["slots"] == ["10:00", "11:00", "14:00", "15:00", "16:00", "17:00"]

    holiday = {"date": monday.isoformat(), "clinic_wide": True, "reason": "Feriado"}
    assert (await client.post("/availability/exceptions", json=holiday, headers=professional_headers)).status_code == 403
    assert (await client.post("/availability/exceptions", json=holiday, headers=admin_headers)).status_code == 201


async def test_groups_endpoints(client, professional, patient, professional_headers):
    res = await client.post("/groups/", json={"name": "Grupo Duelo", "day_of_week": 1, "start_time": "18:00"},
                            headers=professional_headers)
    assert res.status_code == 201
    group_id = res.json()["id"]

    monday = future_weekday(1)
    member = {"patient_id": patient.id, "join_date": monday.isoformat()}
    assert (await client.post(f"/groups/{group_id}/members", json=member, headers=professional_headers)).status_code == 201
    assert (await client.post(f"/groups/{group_id}/members", json=member, headers=professional_headers)).status_code == 400

    window = {"start_date": monday.isoformat(), "end_date": future_weekday(1, weeks_ahead=6).isoformat()}
    gen = await client.post(f"/groups/{group_id}/sessions", json=window, headers=professional_headers)
    assert gen.status_code == 200
    assert gen.json()["appointments_created"] == gen.json()["sessions_created"] >= 3


async def test_audit_logs_are_admin_only(client, professional_headers, admin_headers):
    assert (await client.get("/audit-logs/", headers=professional_headers)).status_code == 403
    res = await client.get("/audit-logs/", headers=admin_headers)
    assert res.status_code == 200
