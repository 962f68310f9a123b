"""HTTP tests for /api/v1/appointments."""

from datetime import timedelta

from salonbook.core.enums import RoleName
from tests.helpers.auth import auth_headers_for
from tests.helpers.salon_data import (
    BARBER_ID,
    OTHER_CUSTOMER_ID,
    RECEPTIONIST_ID,
    insert_appointment,
)

BASE = "/api/v1/appointments"


def _booking_payload(seeded, start, **overrides):
    payload = {
        "salon_id": seeded.salon.id,
        "service_ids": [seeded.haircut.id, seeded.beard.id],
        "scheduled_at": start.isoformat(),
        "barber_id": BARBER_ID,
        "location_type": "salon",
    }
    payload.update(overrides)
    return payload


def test_create_appointment(client, seeded, slot_start, customer_headers):
    response = client.post(BASE, json=_booking_payload(seeded, slot_start), headers=customer_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["duration_minutes"] == 45
    assert data["service_ids"] == [seeded.haircut.id, seeded.beard.id]
    assert data["hold_started_at"] is not None


def test_location_type_is_required(client, seeded, slot_start, customer_headers):
    payload = _booking_payload(seeded, slot_start)
    del payload["location_type"]

    response = client.post(BASE, json=payload, headers=customer_headers)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "location_type" in {item["field"] for item in error["details"]["errors"]}


def test_only_customers_can_book(client, seeded, slot_start, owner_headers):
    response = client.post(BASE, json=_booking_payload(seeded, slot_start), headers=owner_headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


def test_taken_slot_is_a_conflict(client, db, seeded, slot_start, customer_headers):
    insert_appointment(db, seeded.salon.id, slot_start, 30)

    response = client.post(BASE, json=_booking_payload(seeded, slot_start), headers=customer_headers)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "APPOINTMENT_UNAVAILABLE"


def test_unknown_salon_is_not_found(client, seeded, slot_start, customer_headers):
    response = client.post(
        BASE, json=_booking_payload(seeded, slot_start, salon_id="missing"), headers=customer_headers
    )
    assert response.status_code == 404


def test_check_availability(client, db, seeded, slot_start, customer_headers):
    insert_appointment(db, seeded.salon.id, slot_start, 30)
    url = f"{BASE}/check-availability"

    busy = client.post(
        url,
        json={
            "salon_id": seeded.salon.id,
            "barber_id": BARBER_ID,
            "scheduled_at": slot_start.isoformat(),
            "duration": 30,
        },
        headers=customer_headers,
    )
    free = client.post(
        url,
        json={
            "salon_id": seeded.salon.id,
            "barber_id": BARBER_ID,
            "scheduled_at": (slot_start + timedelta(minutes=30)).isoformat(),
            "duration": 30,
        },
        headers=customer_headers,
    )

    assert busy.json() == {"available": False}
    assert free.json() == {"available": True}


def test_check_availability_rejects_zero_duration(client, seeded, slot_start, customer_headers):
    response = client.post(
        f"{BASE}/check-availability",
        json={"salon_id": seeded.salon.id, "scheduled_at": slot_start.isoformat(), "duration": 0},
        headers=customer_headers,
    )
    assert response.status_code == 400


def test_list_and_get_my_appointments(client, book, customer_headers):
    appointment = book()

    listing = client.get(BASE, headers=customer_headers)
    assert listing.status_code == 200
    data = listing.json()
    assert data["total"] == 1
    assert data["items"][0]["id"] == appointment.id

    detail = client.get(f"{BASE}/{appointment.id}", headers=customer_headers)
    assert detail.status_code == 200
    assert detail.json()["id"] == appointment.id

    upcoming = client.get(f"{BASE}/upcoming", headers=customer_headers)
    assert [item["id"] for item in upcoming.json()] == [appointment.id]


def test_other_customer_cannot_see_appointment(client, book):
    appointment = book()
    headers = auth_headers_for(OTHER_CUSTOMER_ID, RoleName.CUSTOMER)

    response = client.get(f"{BASE}/{appointment.id}", headers=headers)
    assert response.status_code == 403


def test_salon_listing_and_statistics(client, book, pay, seeded, owner_headers, customer_headers):
    pay(book())

    listing = client.get(
        f"{BASE}/salon/{seeded.salon.id}", params={"status": "confirmed"}, headers=owner_headers
    )
    assert listing.status_code == 200
    assert listing.json()["total"] == 1

    stats = client.get(f"{BASE}/salon/{seeded.salon.id}/statistics", headers=owner_headers)
    assert stats.status_code == 200
    assert stats.json()["by_status"]["confirmed"] == 1

    forbidden = client.get(f"{BASE}/salon/{seeded.salon.id}", headers=customer_headers)
    assert forbidden.status_code == 403


def test_status_update_flow(client, book, pay):
    appointment = book()
    pay(appointment)
    barber_headers = auth_headers_for(BARBER_ID, RoleName.BARBER)
    url = f"{BASE}/{appointment.id}/status"

    started = client.patch(url, json={"status": "in_progress"}, headers=barber_headers)
    assert started.status_code == 200
    assert started.json()["status"] == "in_progress"
    assert started.json()["started_at"] is not None

    completed = client.patch(url, json={"status": "completed"}, headers=barber_headers)
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    reopened = client.patch(url, json={"status": "confirmed"}, headers=barber_headers)
    assert reopened.status_code == 400
    assert reopened.json()["error"]["code"] == "INVALID_TRANSITION"


def test_confirmation_is_reserved_for_payment(client, book):
    appointment = book()
    headers = auth_headers_for(RECEPTIONIST_ID, RoleName.RECEPTIONIST)

    response = client.patch(
        f"{BASE}/{appointment.id}/status", json={"status": "confirmed"}, headers=headers
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "CONFIRMATION_RESERVED"


def test_cancel_refunds_paid_appointment(client, book, pay, customer_headers):
    appointment = book()
    payment = pay(appointment)

    response = client.post(
        f"{BASE}/{appointment.id}/cancel", json={"reason": "Running late"}, headers=customer_headers
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "cancelled"
    assert data["cancellation_reason"] == "Running late"

    refunded = client.get(f"/api/v1/payments/{payment.id}", headers=customer_headers)
    assert refunded.json()["status"] == "refunded"


def test_cancel_requires_reason(client, book, customer_headers):
    appointment = book()
    response = client.post(f"{BASE}/{appointment.id}/cancel", json={}, headers=customer_headers)
    assert response.status_code == 400
