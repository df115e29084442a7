import os
import uuid
from unittest.mock import AsyncMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from services.messaging import routes
from services.messaging.main import app
from shared import push_service, sms_service
from shared.push_service import b64url_encode


def browser_keys() -> dict:
    ua_public = (
        ec.generate_private_key(ec.SECP256R1())
        .public_key()
        .public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint)
    )
    return {"p256dh": b64url_encode(ua_public), "auth": b64url_encode(os.urandom(16))}


@pytest.mark.api
@pytest.mark.asyncio
async def test_welcome_sms_requires_matching_email(client_for, monkeypatch):
    send = AsyncMock(return_value="SM123")
    monkeypatch.setattr(routes, "send_sms", send)

    async with client_for(app) as client:
        response = await client.post(
            "/sms/welcome",
            json={"phone_number": "+14155550123", "email": "someone-else@example.com"},
        )

    assert response.status_code == 403
    send.assert_not_awaited()


@pytest.mark.api
@pytest.mark.asyncio
async def test_welcome_sms_never_contains_a_password(client_for, db, test_user, monkeypatch):
    send = AsyncMock(return_value="SM123")
    monkeypatch.setattr(routes, "send_sms", send)
    db.fetch_one.return_value = {"total": 0}

    async with client_for(app) as client:
        response = await client.post(
            "/sms/welcome",
            json={"phone_number": "+14155550123", "email": test_user.email.upper()},
        )

    assert response.status_code == 200
    assert response.json()["sid"] == "SM123"
    text = send.call_args.args[1]
    assert "password" not in text.lower()
    assert "/auth" in text


@pytest.mark.api
@pytest.mark.asyncio
async def test_welcome_sms_rejects_bad_numbers(client_for):
    async with client_for(app) as client:
        response = await client.post(
            "/sms/welcome", json={"phone_number": "555-0123", "email": "a@example.com"}
        )

    assert response.status_code == 422


@pytest.mark.api
@pytest.mark.asyncio
async def test_direct_sms_is_admin_only(client_for, db):
    db.fetch_one.return_value = None

    async with client_for(app) as client:
        response = await client.post(
            "/sms/direct", json={"phone_number": "+14155550123", "message": "hello"}
        )

    assert response.status_code == 403
    assert response.json()["error"] == "Admin privileges required"


@pytest.mark.api
@pytest.mark.asyncio
async def test_twilio_stop_opts_user_out(client_for, db):
    user_id = uuid.uuid4()
    db.fetch_one.return_value = {"user_id": user_id}

    async with client_for(app, user=None) as client:
        response = await client.post(
            "/webhooks/twilio/inbound", data={"From": "+14155550123", "Body": " STOP "}
        )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/xml")
    assert "<Message>" in response.text
    assert "unsubscribed" in response.text

    update = db.execute.call_args_list[0]
    assert "sms_notifications_enabled" in update.args[0]
    assert update.args[1:] == (False, user_id)
    log = db.execute.call_args_list[1]
    assert log.args[5] == "delivered"
    assert log.args[4] == "opt_out"


@pytest.mark.api
@pytest.mark.asyncio
async def test_twilio_ignores_other_replies(client_for, db):
    async with client_for(app, user=None) as client:
        response = await client.post(
            "/webhooks/twilio/inbound", data={"From": "14155550123", "Body": "hello luna"}
        )

    assert response.status_code == 200
    assert response.json()["received"] == "hello luna"
    db.execute.assert_not_awaited()


@pytest.mark.api
@pytest.mark.asyncio
async def test_vapid_key_unconfigured(client_for, monkeypatch):
    monkeypatch.setattr(push_service, "VAPID_PUBLIC_KEY", None)

    async with client_for(app, user=None) as client:
        response = await client.get("/push/vapid-key")

    assert response.status_code == 503


@pytest.mark.api
@pytest.mark.asyncio
async def test_anonymous_push_subscription_needs_session(client_for):
    async with client_for(app, user=None) as client:
        response = await client.post(
            "/push/subscribe",
            json={
                "endpoint": "https://push.example.com/abc",
                "keys": browser_keys(),
            },
        )

    assert response.status_code == 400


@pytest.mark.api
@pytest.mark.asyncio
async def test_push_subscription_rejects_unusable_keys(client_for, db):
    async with client_for(app) as client:
        response = await client.post(
            "/push/subscribe",
            json={
                "endpoint": "https://push.example.com/abc",
                "keys": {"p256dh": "not-a-point", "auth": "secret"},
                "session_id": "sess-1",
            },
        )

    assert response.status_code == 422
    assert response.json()["error"] == "Validation error"
    db.fetch_one.assert_not_awaited()
    db.execute.assert_not_awaited()


@pytest.mark.api
@pytest.mark.asyncio
async def test_relationship_jobs_require_admin(client_for, db):
    async with client_for(app) as client:
        for job in ("milestone-reminders", "daily-affirmations", "time-capsules"):
            response = await client.post(f"/jobs/{job}")
            assert response.status_code == 403


@pytest.mark.api
@pytest.mark.asyncio
async def test_milestone_reminders_need_twilio(client_for, admin_user, monkeypatch):
    monkeypatch.setattr(sms_service, "is_configured", lambda: False)

    async with client_for(app, user=admin_user, admin=True) as client:
        response = await client.post("/jobs/milestone-reminders")

    assert response.status_code == 400
    assert response.json()["error"] == "Twilio credentials not configured"


@pytest.mark.api
@pytest.mark.asyncio
async def test_time_capsule_job_reports_deliveries(client_for, db, admin_user, monkeypatch):
    monkeypatch.setattr(push_service, "VAPID_PRIVATE_KEY", None)
    capsule_id = uuid.uuid4()
    db.fetch_all.side_effect = [
        [
            {
                "id": capsule_id,
                "sender_id": uuid.uuid4(),
                "recipient_id": uuid.uuid4(),
                "sender_name": "Robin",
                "phone_number": None,
                "phone_verified": False,
                "sms_notifications_enabled": True,
            }
        ],
    ]
    db.execute.return_value = "UPDATE 1"

    async with client_for(app, user=admin_user, admin=True) as client:
        response = await client.post("/jobs/time-capsules")

    assert response.status_code == 200
    body = response.json()
    assert body["processed"] == 1
    assert body["results"] == [{"id": str(capsule_id), "status": "delivered", "error": None}]
