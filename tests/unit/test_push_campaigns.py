import functools
import os
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from services.messaging.campaigns import AutomatedPushProcessor, visited_on_multiple_days
from shared import push_service
from shared.push_service import PushError, b64url_encode, send_web_push

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def campaign(trigger_type: str) -> dict:
    return {
        "id": uuid.uuid4(),
        "name": f"{trigger_type} campaign",
        "trigger_type": trigger_type,
        "title": "Luna is here for you",
        "body": "Take a breath and check in 💜",
        "delay_minutes": 60,
    }


def subscription(session_id: str = "sess-1") -> dict:
    return {
        "id": uuid.uuid4(),
        "endpoint": "https://push.example.com/abc",
        "p256dh": "key",
        "auth": "auth",
        "session_id": session_id,
    }


def test_multiple_days():
    assert visited_on_multiple_days([NOW, NOW - timedelta(days=1)])
    assert not visited_on_multiple_days([NOW, NOW - timedelta(hours=2)])
    assert not visited_on_multiple_days([])


@pytest.mark.asyncio
async def test_unknown_trigger_has_no_audience(db):
    processor = AutomatedPushProcessor(db, send=AsyncMock())

    assert await processor.eligible_subscriptions(campaign("birthday"), now=NOW) == []
    db.fetch_all.assert_not_awaited()


@pytest.mark.asyncio
async def test_inactive_visitor_uses_campaign_delay(db):
    processor = AutomatedPushProcessor(db, send=AsyncMock())

    await processor.eligible_subscriptions(campaign("inactive_visitor"), now=NOW)

    _, _, dedupe_since, cutoff = db.fetch_all.call_args.args
    assert dedupe_since == NOW - timedelta(hours=24)
    assert cutoff == NOW - timedelta(minutes=60)


@pytest.mark.asyncio
async def test_welcome_back_requires_visits_on_two_days(db):
    returning = subscription("returning")
    one_day = subscription("one-day")
    db.fetch_all.side_effect = [
        [returning, one_day],
        [{"created_at": NOW}, {"created_at": NOW - timedelta(days=2)}],
        [{"created_at": NOW}, {"created_at": NOW - timedelta(minutes=5)}],
    ]
    processor = AutomatedPushProcessor(db, send=AsyncMock())

    eligible = await processor.eligible_subscriptions(campaign("welcome_back"), now=NOW)

    assert eligible == [returning]


@pytest.mark.asyncio
async def test_gone_subscription_is_deactivated(db):
    send = AsyncMock(side_effect=PushError("Gone", status_code=410))
    sub = subscription()

    delivered = await AutomatedPushProcessor(db, send=send).deliver(campaign("engagement"), sub)

    assert not delivered
    deactivate, log = db.execute.call_args_list
    assert "UPDATE push_subscriptions" in deactivate.args[0]
    assert deactivate.args[1] == sub["id"]
    assert log.args[4] == "failed"


@pytest.mark.asyncio
async def test_successful_delivery_is_logged(db):
    send = AsyncMock(return_value=201)
    c = campaign("engagement")
    sub = subscription()

    assert await AutomatedPushProcessor(db, send=send).deliver(c, sub)

    endpoint, _, _, payload = send.call_args.args
    assert endpoint == sub["endpoint"]
    assert payload["tag"] == f"campaign-{c['id']}"
    assert db.execute.call_args.args[4] == "sent"


@pytest.mark.asyncio
async def test_engagement_requires_repeated_clicks(db):
    processor = AutomatedPushProcessor(db, send=AsyncMock())

    await processor.eligible_subscriptions(campaign("engagement"), now=NOW)

    sql, _, dedupe_since, min_clicks = db.fetch_all.call_args.args
    assert "button_click" in sql
    assert dedupe_since == NOW - timedelta(hours=24)
    assert min_clicks == 3


def browser_subscription(session_id: str = "sess-2") -> dict:
    ua_key = ec.generate_private_key(ec.SECP256R1()).public_key()
    raw = ua_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    return {
        **subscription(session_id),
        "p256dh": b64url_encode(raw),
        "auth": b64url_encode(os.urandom(16)),
    }


@pytest.mark.asyncio
async def test_malformed_keys_do_not_stop_the_run(db, monkeypatch):
    pem = (
        ec.generate_private_key(ec.SECP256R1())
        .private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        .decode()
    )
    monkeypatch.setattr(push_service, "VAPID_PRIVATE_KEY", pem)
    monkeypatch.setattr(push_service, "VAPID_PUBLIC_KEY", "public-key")

    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        posted.append(request)
        return httpx.Response(201)

    db.fetch_all.side_effect = [
        [campaign("engagement")],
        [subscription("broken"), browser_subscription()],
    ]

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        processor = AutomatedPushProcessor(db, send=functools.partial(send_web_push, client=client))
        result = await processor.run()

    assert (result.sent, result.failed) == (1, 1)
    assert len(posted) == 1
    statuses = [call.args[4] for call in db.execute.call_args_list]
    assert statuses == ["failed", "sent"]


@pytest.mark.asyncio
async def test_failing_campaign_does_not_block_the_next(db):
    send = AsyncMock(return_value=201)
    db.fetch_all.side_effect = [
        [campaign("inactive_visitor"), campaign("engagement")],
        RuntimeError("connection reset"),
        [subscription()],
    ]

    result = await AutomatedPushProcessor(db, send=send).run()

    assert result.campaigns_processed == 2
    assert result.sent == 1
    send.assert_awaited_once()
