import pytest
from datetime import datetime, timedelta
from uuid import uuid4

from clinicflow.core.security import Actor

NINE_AM = datetime(2026, 3, 2, 9, 0)


def patient_actor():
    return Actor(id=uuid4(), role="patient")


async def book(client, auth_headers, actor, when=NINE_AM, **fields):
    response = await client.post(
        "/api/v1/appointments/",
        json={"appointment_date": when.isoformat(), **fields},
        headers=auth_headers(actor),
    )
    assert response.status_code == 201, response.text
    return response.json()["appointment"]["id"]


@pytest.mark.asyncio
async def test_requests_need_a_token(client):
    response = await client.get("/api/v1/queue/board/General")
    assert response.status_code == 401

    response = await client.get("/api/v1/queue/board/General", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_check_in_and_call_over_http(client, auth_headers, patient, doctor, notifier):
    appointment_id = await book(client, auth_headers, patient, chief_complaint="Fever")

    eligibility = await client.get(f"/api/v1/appointments/{appointment_id}/eligibility", headers=auth_headers(patient))
    assert eligibility.status_code == 200
    assert eligibility.json()["check_in_eligible"] is True
    assert "check_in" in eligibility.json()["available_actions"]

    checked = await client.post(f"/api/v1/appointments/{appointment_id}/check-in", headers=auth_headers(patient))
    assert checked.status_code == 200, checked.text
    body = checked.json()
    assert body["appointment"]["status"] == "CONFIRMED"
    assert body["appointment"]["checked_in"] is True
    assert body["queue_entry"]["status"] == "WAITING"
    assert body["queue_entry"]["position"] == 1

    mine = await client.get("/api/v1/queue/me", headers=auth_headers(patient))
    assert mine.json()["id"] == body["queue_entry"]["id"]

    called = await client.post(
        "/api/v1/queue/call-next", json={"department": "General", "room_number": "7"}, headers=auth_headers(doctor)
    )
    assert called.status_code == 200, called.text
    assert called.json()["status"] == "CALLED"
    assert notifier.events() == ["QUEUE_CALLED"]

    board = await client.get("/api/v1/queue/board/General", headers=auth_headers(doctor))
    assert board.json()["queue"][0]["position"] == 1
    assert board.json()["total_waiting"] == 0


@pytest.mark.asyncio
async def test_guard_violation_maps_to_422(client, auth_headers, patient, clock):
    appointment_id = await book(client, auth_headers, patient)
    clock.now = NINE_AM + timedelta(minutes=35)

    response = await client.post(f"/api/v1/appointments/{appointment_id}/check-in", headers=auth_headers(patient))
    assert response.status_code == 422
    assert response.json()["code"] == "guard_violation"
    assert response.json()["guard"] == "check_in_window"


@pytest.mark.asyncio
async def test_cancel_after_check_in_maps_to_422(client, auth_headers, patient):
    appointment_id = await book(client, auth_headers, patient)
    await client.post(f"/api/v1/appointments/{appointment_id}/check-in", headers=auth_headers(patient))

    response = await client.post(
        f"/api/v1/appointments/{appointment_id}/cancel", json={"reason": "late"}, headers=auth_headers(patient)
    )
    assert response.status_code == 422
    assert response.json()["guard"] == "checked_in"


@pytest.mark.asyncio
async def test_forbidden_and_not_found(client, auth_headers, patient, doctor):
    appointment_id = await book(client, auth_headers, patient)

    response = await client.post(f"/api/v1/appointments/{appointment_id}/confirm", headers=auth_headers(doctor))
    assert response.status_code == 403

    response = await client.get(f"/api/v1/appointments/{appointment_id}", headers=auth_headers(patient_actor()))
    assert response.status_code == 403

    response = await client.get(f"/api/v1/appointments/{uuid4()}", headers=auth_headers(patient))
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_consultation_over_http(client, auth_headers, patient, doctor):
    appointment_id = await book(client, auth_headers, patient)
    await client.post(f"/api/v1/appointments/{appointment_id}/check-in", headers=auth_headers(patient))
    await client.post("/api/v1/queue/call-next", json={"department": "General"}, headers=auth_headers(doctor))

    started = await client.post(f"/api/v1/appointments/{appointment_id}/start", headers=auth_headers(doctor))
    assert started.status_code == 200, started.text
    assert started.json()["appointment"]["status"] == "IN_PROGRESS"

    missing = await client.post(f"/api/v1/appointments/{appointment_id}/complete", json={}, headers=auth_headers(doctor))
    assert missing.status_code == 422
    assert missing.json()["guard"] == "diagnosis_required"

    done = await client.post(
        f"/api/v1/appointments/{appointment_id}/complete",
        json={"diagnosis": "Influenza", "prescription": "Fluids"},
        headers=auth_headers(doctor),
    )
    assert done.status_code == 200
    assert done.json()["appointment"]["status"] == "COMPLETED"
    assert done.json()["queue_entry"]["status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_out_of_order_call_over_http(client, auth_headers, doctor, clock):
    first, second = patient_actor(), patient_actor()
    for actor in (first, second):
        appointment_id = await book(client, auth_headers, actor)
        await client.post(f"/api/v1/appointments/{appointment_id}/check-in", headers=auth_headers(actor))
        clock.advance(minutes=1)

    second_entry = (await client.get("/api/v1/queue/me", headers=auth_headers(second))).json()

    refused = await client.post(f"/api/v1/queue/{second_entry['id']}/call", json={}, headers=auth_headers(doctor))
    assert refused.status_code == 422
    assert refused.json()["guard"] == "call_order"

    forced = await client.post(
        f"/api/v1/queue/{second_entry['id']}/call",
        json={"override": True, "reason": "Mobility assistance"},
        headers=auth_headers(doctor),
    )
    assert forced.status_code == 200
    assert forced.json()["status"] == "CALLED"


@pytest.mark.asyncio
async def test_batch_endpoints(client, auth_headers, patient, nurse):
    await book(client, auth_headers, patient, when=NINE_AM + timedelta(hours=4))

    reminders = await client.post("/api/v1/appointments/reminders", headers=auth_headers(nurse))
    assert reminders.status_code == 200
    assert reminders.json()["count"] == 1

    sweep = await client.post("/api/v1/appointments/no-show-sweep", headers=auth_headers(nurse))
    assert sweep.json() == {"appointment_ids": [], "count": 0}

    refused = await client.post("/api/v1/appointments/no-show-sweep", headers=auth_headers(patient))
    assert refused.status_code == 403


@pytest.mark.asyncio
async def test_walk_in_and_triage_over_http(client, auth_headers, nurse):
    created = await client.post(
        "/api/v1/queue/walk-ins", json={"patient_id": str(uuid4()), "department": "Pediatrics"}, headers=auth_headers(nurse)
    )
    assert created.status_code == 201
    entry = created.json()
    assert entry["appointment_id"] is None
    assert entry["position"] == 1

    triaged = await client.patch(
        f"/api/v1/queue/{entry['id']}/priority",
        json={"priority_level": "HIGH", "is_emergency": True},
        headers=auth_headers(nurse),
    )
    assert triaged.status_code == 200
    assert triaged.json()["priority_score"] == 175.0


@pytest.mark.asyncio
async def test_board_hides_other_patients_from_patients(client, auth_headers, patient, nurse):
    for patient_id, name in ((patient.id, "Asha Menon"), (uuid4(), "Ravi Kumar")):
        created = await client.post(
            "/api/v1/queue/walk-ins",
            json={"patient_id": str(patient_id), "patient_name": name},
            headers=auth_headers(nurse),
        )
        assert created.status_code == 201

    seen_by_patient = (await client.get("/api/v1/queue/board/General", headers=auth_headers(patient))).json()
    names = [entry["patient_name"] for entry in seen_by_patient["queue"]]
    assert names == ["Asha Menon", None]
    assert seen_by_patient["queue"][1]["patient_id"] is None
    assert seen_by_patient["queue"][1]["queue_number"] == 2

    seen_by_staff = (await client.get("/api/v1/queue/board/General", headers=auth_headers(nurse))).json()
    assert [entry["patient_name"] for entry in seen_by_staff["queue"]] == ["Asha Menon", "Ravi Kumar"]
