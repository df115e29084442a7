import json
from unittest.mock import AsyncMock

import httpx
import pytest

from services.chat import gateway
from services.chat.conversations import title_from_message
from services.chat.gateway import (
    GatewayError,
    build_payload,
    extract_delta_text,
    open_completion_stream,
    relay_stream,
)


def sse_line(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]})


def test_delta_extraction():
    assert extract_delta_text(sse_line("Hello")) == "Hello"
    assert extract_delta_text("data: [DONE]") == ""
    assert extract_delta_text(": keepalive") == ""
    assert extract_delta_text("data: {not json") == ""
    assert extract_delta_text('data: {"choices": []}') == ""


def test_system_prompt_leads_the_conversation():
    payload = build_payload([{"role": "user", "content": "I feel distant from my partner"}])

    assert payload["stream"] is True
    assert payload["messages"][0] == {"role": "system", "content": gateway.LUNA_SYSTEM_PROMPT}
    assert payload["messages"][1]["role"] == "user"


def test_gateway_errors_map_to_friendly_copy():
    assert GatewayError("x", status_code=429).public_status == 429
    assert "overwhelmed" in GatewayError("x", status_code=429).public_message
    assert GatewayError("x", status_code=402).public_status == 402
    assert GatewayError("x", status_code=503).public_status == 500
    assert GatewayError("x").public_message == "Something went wrong. Please try again."


def test_conversation_titles():
    assert title_from_message("  hello\n  there ") == "hello there"
    title = title_from_message("word " * 30)
    assert len(title) <= 50
    assert title.endswith("...")


@pytest.mark.asyncio
async def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(gateway, "AI_GATEWAY_API_KEY", None)

    async with httpx.AsyncClient() as client:
        with pytest.raises(GatewayError) as exc_info:
            await open_completion_stream(client, [{"role": "user", "content": "hi"}])

    assert exc_info.value.public_status == 500


@pytest.mark.asyncio
async def test_rate_limited_upstream(monkeypatch):
    monkeypatch.setattr(gateway, "AI_GATEWAY_API_KEY", "test-key")

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer test-key"
        return httpx.Response(429, json={"error": "rate limited"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(GatewayError) as exc_info:
            await open_completion_stream(client, [{"role": "user", "content": "hi"}])

    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_relay_passes_bytes_through_and_collects_reply(monkeypatch):
    monkeypatch.setattr(gateway, "AI_GATEWAY_API_KEY", "test-key")
    body = (
        f"{sse_line('Take a ')}\n\n{sse_line('deep breath')}\n\n"
        f"{sse_line(' 💜')}\n\ndata: [DONE]\n\n"
    ).encode()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    on_complete = AsyncMock()

    response = await open_completion_stream(client, [{"role": "user", "content": "help"}])
    relayed = b"".join([chunk async for chunk in relay_stream(response, client, on_complete)])

    assert relayed == body
    on_complete.assert_awaited_once_with("Take a deep breath 💜")
    assert client.is_closed


@pytest.mark.asyncio
async def test_reply_storage_failure_does_not_break_stream(monkeypatch):
    monkeypatch.setattr(gateway, "AI_GATEWAY_API_KEY", "test-key")
    body = f"{sse_line('ok')}\n\n".encode()
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body))
    )
    on_complete = AsyncMock(side_effect=RuntimeError("db down"))

    response = await open_completion_stream(client, [{"role": "user", "content": "help"}])
    relayed = [chunk async for chunk in relay_stream(response, client, on_complete)]

    assert b"".join(relayed) == body
    on_complete.assert_awaited_once_with("ok")
