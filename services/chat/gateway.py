# services/chat/gateway.py
import codecs
import json
import logging
import os
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

AI_GATEWAY_URL = os.getenv("AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
AI_GATEWAY_API_KEY = os.getenv("AI_GATEWAY_API_KEY")
AI_GATEWAY_MODEL = os.getenv("AI_GATEWAY_MODEL", "google/gemini-2.5-flash")
AI_GATEWAY_TIMEOUT = float(os.getenv("AI_GATEWAY_TIMEOUT_SECONDS", "60"))

LUNA_SYSTEM_PROMPT = """You are LUNA, an AI Relationship Therapist and Emotional Companion.

Your personality:
- Warm, empathetic, and deeply understanding
- Non-judgmental and supportive
- Emotionally intelligent and solution-oriented

Help users understand their emotions, their partner's perspective, communication
patterns, attachment styles and conflict triggers, and find healthier ways to
express their needs.

Start by validating how the user feels. Ask gentle questions to understand what
happened. Offer practical guidance such as communication scripts, boundary-setting
ideas, self-soothing suggestions or reflective exercises.

Never blame the user, tell them to break up or stay, diagnose conditions, give
legal or medical advice, or encourage manipulation or revenge.

If a user mentions self-harm, abuse, or danger, respond with compassion and say:
"I'm here to support you emotionally, but you deserve safe, real-world help. Please
reach out to a crisis helpline in your area, or call 988 (US Suicide & Crisis Lifeline)."

End with one reflective question. Keep responses warm and focused, 2-4 short
paragraphs. You can use 💜 sparingly."""

# User-facing copy for gateway failures
ERROR_MESSAGES = {
    429: "Luna is a bit overwhelmed right now. Please try again in a moment.",
    402: "Service temporarily unavailable. Please try again later.",
}
GENERIC_ERROR = "Something went wrong. Please try again."


class GatewayError(Exception):
    """Raised when the AI gateway rejects or fails a request"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def public_status(self) -> int:
        return self.status_code if self.status_code in ERROR_MESSAGES else 500

    @property
    def public_message(self) -> str:
        return ERROR_MESSAGES.get(self.status_code, GENERIC_ERROR)


def build_payload(messages: list[dict], model: str = AI_GATEWAY_MODEL) -> dict:
    return {
        "model": model,
        "messages": [{"role": "system", "content": LUNA_SYSTEM_PROMPT}, *messages],
        "stream": True,
    }


def extract_delta_text(line: str) -> str:
    """Content delta from one SSE line of an OpenAI-style stream, or ''"""
    if not line.startswith("data:"):
        return ""
    data = line[5:].strip()
    if not data or data == "[DONE]":
        return ""
    try:
        chunk = json.loads(data)
        return chunk["choices"][0]["delta"].get("content") or ""
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
        return ""


async def open_completion_stream(client: httpx.AsyncClient, messages: list[dict]) -> httpx.Response:
    """Start a streaming completion. The caller owns the returned response."""
    if not AI_GATEWAY_API_KEY:
        logger.error("AI_GATEWAY_API_KEY is not configured")
        raise GatewayError("AI gateway is not configured")

    request = client.build_request(
        "POST",
        AI_GATEWAY_URL,
        json=build_payload(messages),
        headers={
            "Authorization": f"Bearer {AI_GATEWAY_API_KEY}",
            "Content-Type": "application/json",
        },
    )

    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        logger.error(f"AI gateway request failed: {e}")
        raise GatewayError(str(e)) from e

    if response.status_code != 200:
        body = await response.aread()
        await response.aclose()
        logger.error(f"AI gateway error: {response.status_code} {body[:500]!r}")
        raise GatewayError("AI gateway error", status_code=response.status_code)

    return response


async def relay_stream(
    response: httpx.Response,
    client: httpx.AsyncClient,
    on_complete: Optional[Callable[[str], Awaitable[None]]] = None,
) -> AsyncIterator[bytes]:
    """Pass gateway bytes through untouched while collecting the reply text.

    ``on_complete`` receives the assembled reply once the stream finishes.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    parts: list[str] = []

    try:
        async for chunk in response.aiter_bytes():
            yield chunk
            buffer += decoder.decode(chunk)
            *lines, buffer = buffer.split("\n")
            parts.extend(extract_delta_text(line.rstrip("\r")) for line in lines)
    finally:
        await response.aclose()
        await client.aclose()

    parts.append(extract_delta_text(buffer.rstrip("\r")))
    reply = "".join(parts)
    if reply and on_complete:
        try:
            await on_complete(reply)
        except Exception as e:
            logger.error(f"Failed to store assistant reply: {e}", exc_info=True)
