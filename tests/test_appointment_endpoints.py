"""Tests for the appointment HTTP endpoints."""

from datetime import date, timedelta

import pytest
from httpx import AsyncClient

from clinic_backend.schemas.appointments import AppointmentStatus
from clinic_backend.schemas.users import Role

API = "/api/v1/appointments"


def booking_payload(**overrides) -> dict:
    payload = {
        "full_name": "John Walk-in",
        "phone": "0912345678",
        "email": "john@example.com",
        "department": "CARDIOLOGY",
        "appointment_date": (date.today() + timedelta(days=3)).isoformat(),
        "appointment_time": "09:30:00",
        "reason": "Follow-up",
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_public_booking(client: AsyncClient, notifier) -> None:
    response = await client.post(f"{API}/public", json=booking_payload())

    assert response.status_code == 201
    data = response.json()
    assert data["appointment"]["status"] == "PENDING"
    assert data["appointment"]["email_sent"] is True
    assert data["warnings"] == []
    assert len(notifier.to("john@example.com")) == 1


@pytest.mark.asyncio
async def test_public_booking_rejects_unknown_department(client: AsyncClient) -> None:
    response = await client.post(f"{API}/public", json=booking_payload(department="ASTROLOGY"))

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_public_booking_full_slot(client: AsyncClient) -> None:
    for _ in range(3):
        assert (await client.post(f"{API}/public", json=booking_payload())).status_code == 201

    response = await client.post(f"{API}/public", json=booking_payload())

    assert response.status_code == 409
    assert response.json()["error"] == "ConflictException"


@pytest.mark.asyncio
async def test_availability_and_departments(client: AsyncClient) -> None:
    day = (date.today() + timedelta(days=3)).isoformat()
    await client.post(f"{API}/public", json=booking_payload())

    response = await client.get(
        f"{API}/public/availability",
        params={"date": day, "time": "09:30:00", "department": "CARDIOLOGY"},
    )
    assert response.status_code == 200
    assert response.json()["available"] is True
    assert response.json()["booked"] == 1

    departments = (await client.get(f"{API}/public/departments")).json()
    assert {"code": "CARDIOLOGY", "name": "Cardiology"} in departments


@pytest.mark.asyncio
async def test_dashboard_requires_auth(client: AsyncClient) -> None:
    response = await client.get(API)

    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_unknown_user_token_rejected(client: AsyncClient, clinic_users, headers_for) -> None:
    response = await client.get(API, headers=headers_for(404))

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_list_is_staff_only(
    client: AsyncClient, make_appointment, staff_headers, doctor5_headers
) -> None:
    await make_appointment(AppointmentStatus.PENDING)
    await make_appointment(AppointmentStatus.CONFIRMED)

    response = await client.get(API, headers=staff_headers, params={"status": "PENDING"})
    assert response.status_code == 200
    assert response.json()["total"] == 1

    response = await client.get(API, headers=doctor5_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_assign_and_accept(
    client: AsyncClient, make_appointment, staff_headers, doctor5_headers
) -> None:
    appointment = await make_appointment(AppointmentStatus.PENDING)

    response = await client.put(
        f"{API}/{appointment.id}/assign-doctor", headers=staff_headers, json={"doctor_id": 5}
    )
    assert response.status_code == 200
    assert response.json()["appointment"]["status"] == "AWAITING_DOCTOR_APPROVAL"

    pending = await client.get(f"{API}/pending-my-approval", headers=doctor5_headers)
    assert [item["id"] for item in pending.json()] == [appointment.id]

    response = await client.put(
        f"{API}/{appointment.id}/doctor-accept",
        headers=doctor5_headers,
        json={"response": "See you then"},
    )
    assert response.status_code == 200
    assert response.json()["appointment"]["status"] == "CONFIRMED"
    assert response.json()["appointment"]["doctor_response"] == "ACCEPTED: See you then"


@pytest.mark.asyncio
async def test_invalid_transition_is_409(client: AsyncClient, make_appointment, staff_headers) -> None:
    appointment = await make_appointment(AppointmentStatus.PENDING)

    response = await client.put(f"{API}/{appointment.id}/mark-paid", headers=staff_headers)

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "InvalidTransitionException"
    assert body["current_status"] == "PENDING"
    assert body["target_status"] == "PAID"


@pytest.mark.asyncio
async def test_request_payment_zero_amount(
    client: AsyncClient, make_appointment, staff_headers
) -> None:
    appointment = await make_appointment(AppointmentStatus.CONFIRMED)

    response = await client.put(
        f"{API}/{appointment.id}/request-payment", headers=staff_headers, json={"amount": 0}
    )

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationException"


@pytest.mark.asyncio
async def test_cancel_via_api(client: AsyncClient, make_appointment, staff_headers) -> None:
    appointment = await make_appointment(AppointmentStatus.CONFIRMED)

    missing_reason = await client.put(
        f"{API}/{appointment.id}/cancel", headers=staff_headers, json={"reason": ""}
    )
    assert missing_reason.status_code == 422

    response = await client.put(
        f"{API}/{appointment.id}/cancel", headers=staff_headers, json={"reason": "Patient request"}
    )
    assert response.status_code == 200
    assert response.json()["appointment"]["status"] == "CANCELLED"


@pytest.mark.asyncio
async def test_missing_appointment_is_404(client: AsyncClient, staff_headers) -> None:
    response = await client.get(f"{API}/999", headers=staff_headers)

    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundException"


@pytest.mark.asyncio
async def test_delete(
    client: AsyncClient, make_appointment, admin_headers, doctor5_headers
) -> None:
    appointment = await make_appointment(AppointmentStatus.CANCELLED)

    forbidden = await client.delete(f"{API}/{appointment.id}", headers=doctor5_headers)
    assert forbidden.status_code == 403

    response = await client.delete(f"{API}/{appointment.id}", headers=admin_headers)
    assert response.status_code == 204

    response = await client.get(f"{API}/{appointment.id}", headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_details(client: AsyncClient, make_appointment, staff_headers) -> None:
    appointment = await make_appointment(AppointmentStatus.PENDING)

    response = await client.put(
        f"{API}/{appointment.id}", headers=staff_headers, json={"notes": "Bring old results"}
    )

    assert response.status_code == 200
    assert response.json()["appointment"]["notes"] == "Bring old results"
    assert response.json()["appointment"]["version"] == appointment.version + 1


@pytest.mark.asyncio
async def test_bulk_endpoint(client: AsyncClient, make_appointment, staff_headers) -> None:
    first = await make_appointment(AppointmentStatus.PAYMENT_REQUESTED)
    second = await make_appointment(AppointmentStatus.PENDING)

    response = await client.post(
        f"{API}/bulk",
        headers=staff_headers,
        json={"ids": [first.id, second.id], "operation": "mark_paid"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["succeeded_ids"] == [first.id]
    assert body["failed_ids"] == [second.id]
    assert body["errors"][0]["error"] == "InvalidTransitionException"


@pytest.mark.asyncio
async def test_transitions_and_eligible_doctors(
    client: AsyncClient, make_appointment, staff_headers
) -> None:
    appointment = await make_appointment(AppointmentStatus.PENDING)

    transitions = await client.get(f"{API}/{appointment.id}/transitions", headers=staff_headers)
    assert transitions.status_code == 200
    assert set(transitions.json()["allowed"]) == {"AWAITING_DOCTOR_APPROVAL", "CANCELLED"}

    eligible = await client.get(f"{API}/{appointment.id}/eligible-doctors", headers=staff_headers)
    assert eligible.status_code == 200
    assert [doctor["id"] for doctor in eligible.json()] == [5, 7]


@pytest.mark.asyncio
async def test_doctor_roster(client: AsyncClient, staff_headers) -> None:
    response = await client.get("/api/v1/doctors", headers=staff_headers)
    assert response.status_code == 200
    assert {doctor["id"] for doctor in response.json()} == {5, 7, 9}

    response = await client.get(
        "/api/v1/doctors/eligible", headers=staff_headers, params={"department": "NEUROLOGY"}
    )
    assert [doctor["id"] for doctor in response.json()] == [7, 9]


@pytest.mark.asyncio
async def test_metrics_exposed(client: AsyncClient) -> None:
    response = await client.get("/metrics")

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_search_and_stats(
    client: AsyncClient, make_appointment, staff_headers
) -> None:
    await make_appointment(AppointmentStatus.PENDING, email="someone@example.com")
    await make_appointment(AppointmentStatus.PAID, full_name="Tran Minh")

    found = await client.get(f"{API}/search", headers=staff_headers, params={"q": "tran"})
    assert [item["full_name"] for item in found.json()] == ["Tran Minh"]

    stats = (await client.get(f"{API}/stats", headers=staff_headers)).json()
    assert stats["total"] == 2
    assert stats["by_status"]["PENDING"] == 1
    assert stats["by_status"]["PAID"] == 1
    assert stats["by_status"]["CANCELLED"] == 0


@pytest.mark.asyncio
async def test_my_patients(
    client: AsyncClient, make_appointment, staff_headers, doctor5_headers
) -> None:
    mine = await make_appointment(AppointmentStatus.CONFIRMED, doctor_id=5)
    await make_appointment(AppointmentStatus.CONFIRMED, doctor_id=7)

    response = await client.get(f"{API}/my-patients", headers=doctor5_headers)
    assert [item["id"] for item in response.json()] == [mine.id]

    own = await client.get(f"{API}/{mine.id}", headers=doctor5_headers)
    assert own.status_code == 200

    response = await client.get(f"{API}/my-patients", headers=staff_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["appointment_date", "full_name", "appointment_time"])
async def test_update_rejects_clearing_required_field(
    client: AsyncClient, make_appointment, staff_headers, field
) -> None:
    appointment = await make_appointment(AppointmentStatus.PENDING)

    response = await client.put(
        f"{API}/{appointment.id}", headers=staff_headers, json={field: None}
    )

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_reschedule_via_api_emails_patient(
    client: AsyncClient, make_appointment, staff_headers, notifier
) -> None:
    appointment = await make_appointment(AppointmentStatus.CONFIRMED, doctor_id=5)
    new_day = (date.today() + timedelta(days=10)).isoformat()

    response = await client.put(
        f"{API}/{appointment.id}", headers=staff_headers, json={"appointment_date": new_day}
    )

    assert response.status_code == 200
    assert response.json()["appointment"]["appointment_date"] == new_day
    assert response.json()["warnings"] == []
    updates = notifier.to("patient@example.com")
    assert [email.subject for email in updates] == ["Appointment updated - Test Clinic"]


@pytest.mark.asyncio
async def test_other_doctor_cannot_reaccept(
    client: AsyncClient, make_appointment, clinic_users, headers_for
) -> None:
    appointment = await make_appointment(AppointmentStatus.CONFIRMED, doctor_id=5)

    response = await client.put(
        f"{API}/{appointment.id}/doctor-accept", headers=headers_for(7), json={}
    )

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "InvalidTransitionException"
    assert "appointment" not in body
    assert "full_name" not in response.text


@pytest.mark.asyncio
async def test_patient_views(
    client: AsyncClient, make_appointment, store, clinic_users, headers_for, staff_headers
) -> None:
    patient = await store.create_user(
        {
            "email": "jane@example.com",
            "full_name": "Jane Patient",
            "role": Role.PATIENT,
            "is_active": True,
        }
    )
    upcoming = await make_appointment(AppointmentStatus.CONFIRMED, email="Jane@Example.com")
    visited = await make_appointment(AppointmentStatus.COMPLETED, email="jane@example.com")
    await make_appointment(AppointmentStatus.COMPLETED, email="someone.else@example.com")

    mine = await client.get(f"{API}/my-appointments", headers=headers_for(patient.id))
    assert mine.status_code == 200
    assert {item["id"] for item in mine.json()} == {upcoming.id, visited.id}

    history = await client.get(f"{API}/my-medical-history", headers=headers_for(patient.id))
    assert [item["id"] for item in history.json()] == [visited.id]

    forbidden = await client.get(f"{API}/my-appointments", headers=staff_headers)
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_scheduled_email_endpoints(
    client: AsyncClient, make_appointment, staff_headers, doctor5_headers, notifier
) -> None:
    tomorrow = date.today() + timedelta(days=1)
    due = await make_appointment(AppointmentStatus.CONFIRMED, appointment_date=tomorrow)

    forbidden = await client.post(f"{API}/reminders/send", headers=doctor5_headers)
    assert forbidden.status_code == 403

    response = await client.post(f"{API}/reminders/send", headers=staff_headers)
    assert response.status_code == 200
    assert response.json()["sent_ids"] == [due.id]
    assert response.json()["failed_ids"] == []

    response = await client.post(f"{API}/confirmations/resend", headers=staff_headers)
    assert response.status_code == 200
    assert due.id in response.json()["sent_ids"]
    assert len(notifier.to("patient@example.com")) == 2
