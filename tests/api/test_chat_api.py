import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from services.chat import gateway
from services.chat.main import app
from services.chat.routes import DAILY_LIMIT_MESSAGE

SSE_BODY = (
    b'data: {"choices":[{"delta":{"content":"Hello"}}]}\n\n'
    b'data: {"choices":[{"delta":{"content":" there"}}]}\n\n'
    b"data: [DONE]\n\n"
)


def conversation_row(user_id: str) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "id": uuid.uuid4(),
        "user_id": uuid.UUID(user_id),
        "title": "hi",
        "created_at": now,
        "updated_at": now,
    }


@pytest.mark.api
@pytest.mark.asyncio
async def test_last_message_must_come_from_user(client_for):
    async with client_for(app) as client:
        response = await client.post(
            "/chat/completions",
            json={"messages": [{"role": "assistant", "content": "How are you?"}]},
        )

    assert response.status_code == 400
    assert response.json()["error"] == "Last message must be from the user"


@pytest.mark.api
@pytest.mark.asyncio
async def test_daily_limit_reached(client_for, db):
    db.fetch_one.side_effect = [
        None,
        {"slug": "free", "limits": '{"messages_per_day": 5}', "features": "[]"},
        {"total": 5},
    ]

    async with client_for(app) as client:
        response = await client.post(
            "/chat/completions", json={"messages": [{"role": "user", "content": "hi"}]}
        )

    assert response.status_code == 429
    assert response.json()["error"] == DAILY_LIMIT_MESSAGE


@pytest.mark.api
@pytest.mark.asyncio
async def test_burst_limit(client_for, redis_client):
    redis_client.pipeline.return_value.execute.return_value = [0, 20]

    async with client_for(app) as client:
        response = await client.post(
            "/chat/completions", json={"messages": [{"role": "user", "content": "hi"}]}
        )

    assert response.status_code == 429
    redis_client.zadd.assert_not_awaited()


@pytest.mark.api
@pytest.mark.asyncio
async def test_unconfigured_gateway_returns_generic_error(client_for, db, test_user, monkeypatch):
    monkeypatch.setattr(gateway, "AI_GATEWAY_API_KEY", None)
    db.fetch_one.side_effect = [None, None, {"total": 0}, conversation_row(test_user.user_id)]

    async with client_for(app) as client:
        response = await client.post(
            "/chat/completions", json={"messages": [{"role": "user", "content": "hi"}]}
        )

    assert response.status_code == 500
    assert response.json()["error"] == gateway.GENERIC_ERROR


@pytest.mark.api
@pytest.mark.asyncio
async def test_streams_reply_and_stores_both_sides(client_for, db, test_user, monkeypatch):
    conversation = conversation_row(test_user.user_id)
    db.fetch_one.side_effect = [None, None, {"total": 1}, conversation]
    db.conn.fetchrow.return_value = {"id": uuid.uuid4()}
    monkeypatch.setattr(
        gateway,
        "open_completion_stream",
        AsyncMock(return_value=httpx.Response(200, content=SSE_BODY)),
    )

    async with client_for(app) as client:
        response = await client.post(
            "/chat/completions", json={"messages": [{"role": "user", "content": "hi"}]}
        )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["x-conversation-id"] == str(conversation["id"])
    assert response.content == SSE_BODY

    stored = [call.args[2:] for call in db.conn.fetchrow.call_args_list]
    assert stored == [("user", "hi"), ("assistant", "Hello there")]


@pytest.mark.api
@pytest.mark.asyncio
async def test_usage_for_unlimited_tier(client_for, db):
    db.fetch_one.side_effect = [
        {"tier_slug": "pro", "tier_limits": '{"messages_per_day": -1}'},
        {"total": 42},
    ]

    async with client_for(app) as client:
        response = await client.get("/chat/usage")

    assert response.json() == {
        "messages_used": 42,
        "daily_limit": None,
        "remaining": None,
        "unlimited": True,
    }


@pytest.mark.api
@pytest.mark.asyncio
async def test_foreign_conversation_is_not_found(client_for, db):
    db.fetch_one.return_value = None

    async with client_for(app) as client:
        response = await client.get(f"/conversations/{uuid.uuid4()}/messages")

    assert response.status_code == 404
