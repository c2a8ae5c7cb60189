"""HTTP boundary exercised through FastAPI's TestClient."""

from __future__ import annotations

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from fastapi.testclient import TestClient

from conftest import ManualClock, OutboxNotifier, make_settings, wrong_code
from vipreshana.main import create_app
from vipreshana.repositories.rate_limits import RedisRateLimitRepository

PHONE = "9990001111"
DRIVER = "8880002222"
OTHER_DRIVER = "8880003333"


@pytest.fixture
def outbox() -> OutboxNotifier:
    return OutboxNotifier()


@pytest.fixture
def client(outbox) -> TestClient:
    app = create_app(make_settings(), notifier=outbox, clock=ManualClock())
    return TestClient(app)


def _register(client: TestClient, phone: str, role: str = "customer") -> None:
    response = client.post(
        "/api/register",
        json={"phone": phone, "password": "s3cret-pass", "name": "Test User", "role": role},
    )
    assert response.status_code == 201, response.text


def _booking_payload(customer: str = PHONE) -> dict:
    return {
        "customer_ref": customer,
        "pickup": {"address": "Andheri East, Mumbai"},
        "dropoff": {"address": "Powai, Mumbai", "latitude": 19.12, "longitude": 72.9},
        "vehicle_type": "three_wheeler",
    }


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "api", "storage": "memory"}


def test_send_and_verify_otp(client, outbox):
    response = client.post("/api/send-otp", json={"phone": PHONE})
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["expires_in_seconds"] == 300
    assert "code" not in body

    code = outbox.last_code(PHONE)
    response = client.post("/api/verify-otp", json={"phone": PHONE, "code": code})
    assert response.status_code == 200
    assert response.json()["ok"] is True

    response = client.post("/api/verify-otp", json={"phone": PHONE, "code": code})
    assert response.status_code == 404
    assert response.json()["code"] == "no_active_challenge"


def test_wrong_codes_then_correct_is_exhausted(client, outbox):
    client.post("/api/send-otp", json={"phone": PHONE})
    code = outbox.last_code(PHONE)

    statuses = [
        client.post("/api/verify-otp", json={"phone": PHONE, "code": wrong_code(code)})
        for _ in range(5)
    ]
    assert [response.status_code for response in statuses] == [401, 401, 401, 401, 403]
    assert statuses[0].json()["attempts_remaining"] == 4

    response = client.post("/api/verify-otp", json={"phone": PHONE, "code": code})
    assert response.status_code == 403
    assert response.json()["code"] == "attempts_exhausted"


def test_send_otp_rate_limited(client):
    for _ in range(5):
        assert client.post("/api/send-otp", json={"phone": PHONE}).status_code == 200
    response = client.post("/api/send-otp", json={"phone": PHONE})
    assert response.status_code == 429
    body = response.json()
    assert body["code"] == "rate_limited"
    assert body["retry_after"] > 0
    assert response.headers["Retry-After"] == str(body["retry_after"])


def test_send_otp_rate_limited_on_redis(outbox):
    app = create_app(make_settings(), notifier=outbox, clock=ManualClock())
    app.state.backends.redis_rate_limits = RedisRateLimitRepository(
        FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    )
    with TestClient(app) as client:
        for _ in range(5):
            assert client.post("/api/send-otp", json={"phone": PHONE}).status_code == 200
        response = client.post("/api/send-otp", json={"phone": PHONE})

    assert response.status_code == 429
    assert response.json()["code"] == "rate_limited"
    assert response.json()["retry_after"] == 900
    assert response.headers["Retry-After"] == "900"


@pytest.mark.parametrize("phone", ["12345abcdef", "12345", "123", ""])
def test_send_otp_invalid_phone(client, phone):
    response = client.post("/api/send-otp", json={"phone": phone})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_phone"


@pytest.mark.parametrize("code", ["12", "12345", "abcdef"])
def test_verify_otp_malformed_code(client, code):
    response = client.post("/api/verify-otp", json={"phone": PHONE, "code": code})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_code"


def test_verify_otp_short_phone(client):
    response = client.post("/api/verify-otp", json={"phone": "12345", "code": "123456"})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_phone"


def test_register_login_and_reset(client, outbox):
    _register(client, PHONE)
    duplicate = client.post(
        "/api/register",
        json={"phone": PHONE, "password": "s3cret-pass", "name": "Test User"},
    )
    assert duplicate.status_code == 409

    login = client.post("/api/login", json={"phone": PHONE, "password": "s3cret-pass"})
    assert login.status_code == 200
    assert login.json()["user"]["phone"] == PHONE
    assert "password_hash" not in login.json()["user"]

    assert client.post("/api/login", json={"phone": PHONE, "password": "nope"}).status_code == 401
    assert (
        client.post("/api/login", json={"phone": DRIVER, "password": "nope"}).status_code == 404
    )

    assert client.post("/api/forgot-password", json={"phone": PHONE}).status_code == 200
    code = outbox.last_code(PHONE)
    reset = client.post(
        "/api/reset-password",
        json={"phone": PHONE, "code": code, "new_password": "brand-new-1"},
    )
    assert reset.status_code == 200
    assert (
        client.post("/api/login", json={"phone": PHONE, "password": "brand-new-1"}).status_code
        == 200
    )


def test_register_admin_is_rejected(client):
    response = client.post(
        "/api/register",
        json={"phone": PHONE, "password": "s3cret-pass", "name": "Eve", "role": "admin"},
    )
    assert response.status_code == 422


def test_booking_flow_with_racing_drivers(client, outbox):
    _register(client, PHONE)
    _register(client, DRIVER, role="driver")
    _register(client, OTHER_DRIVER, role="driver")

    created = client.post("/api/bookings", json=_booking_payload())
    assert created.status_code == 201
    booking_id = created.json()["data"]["id"]
    assert created.json()["data"]["status"] == "pending"

    pending = client.get("/api/bookings", params={"status": "pending"})
    assert pending.json()["count"] == 1

    first = client.put(f"/api/bookings/{booking_id}/accept", json={"driver_ref": DRIVER})
    second = client.put(f"/api/bookings/{booking_id}/accept", json={"driver_ref": OTHER_DRIVER})
    assert first.status_code == 200
    assert first.json()["data"]["driver_ref"] == DRIVER
    assert second.status_code == 409
    assert second.json()["code"] == "already_accepted"

    wrong_actor = client.put(
        f"/api/bookings/{booking_id}/complete", json={"actor_ref": OTHER_DRIVER}
    )
    assert wrong_actor.status_code == 403

    completed = client.put(f"/api/bookings/{booking_id}/complete", json={"actor_ref": DRIVER})
    assert completed.status_code == 200
    assert completed.json()["data"]["status"] == "completed"

    cancel = client.put(f"/api/bookings/{booking_id}/cancel", json={"actor_ref": PHONE})
    assert cancel.status_code == 409
    assert cancel.json()["code"] == "invalid_transition"

    mine = client.get(f"/api/bookings/{PHONE}")
    assert mine.status_code == 200
    assert mine.json()["count"] == 1
    assert mine.json()["pagination"]["has_more"] is False

    texts = [message for recipient, message in outbox.sent if recipient == PHONE]
    assert any("accepted" in text for text in texts)
    assert any("delivered" in text for text in texts)


def test_customer_cannot_accept(client):
    _register(client, PHONE)
    booking_id = client.post("/api/bookings", json=_booking_payload()).json()["data"]["id"]
    response = client.put(f"/api/bookings/{booking_id}/accept", json={"driver_ref": PHONE})
    assert response.status_code == 403


def test_accept_unknown_booking(client):
    _register(client, DRIVER, role="driver")
    response = client.put(
        "/api/bookings/00000000-0000-0000-0000-000000000000/accept",
        json={"driver_ref": DRIVER},
    )
    assert response.status_code == 404


def test_update_and_delete_booking(client):
    _register(client, PHONE)
    booking_id = client.post("/api/bookings", json=_booking_payload()).json()["data"]["id"]

    patched = client.patch(
        f"/api/bookings/{booking_id}",
        json={"actor_ref": PHONE, "goods_description": "Fridge", "vehicle_type": "pickup"},
    )
    assert patched.status_code == 200
    assert patched.json()["data"]["goods_description"] == "Fridge"
    assert patched.json()["data"]["vehicle_type"] == "pickup"
    assert patched.json()["data"]["pickup"]["address"] == "Andheri East, Mumbai"

    forbidden = client.delete(f"/api/bookings/{booking_id}", params={"actor_ref": PHONE})
    assert forbidden.status_code == 403


def test_list_bookings_paginates(client):
    for _ in range(3):
        client.post("/api/bookings", json=_booking_payload())
    response = client.get("/api/bookings", params={"limit": 2})
    body = response.json()
    assert len(body["data"]) == 2
    assert body["count"] == 3
    assert body["pagination"]["next_offset"] == 2


def test_bookings_for_invalid_phone(client):
    response = client.get("/api/bookings/not-a-phone")
    assert response.status_code == 400
