# services/chat/routes.py
import logging
import os
from uuid import UUID

import httpx
import redis.asyncio as redis
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from services.chat import gateway
from services.chat.conversations import ConversationStore, title_from_message
from services.chat.gateway import GatewayError
from services.chat.models import (
    ChatCompletionRequest,
    ChatUsage,
    Conversation,
    ConversationCreate,
    Message,
    MessageCreate,
)
from shared.auth_middleware import TokenData, get_current_user
from shared.database import Database, get_db
from shared.rate_limiting import RateLimiter
from shared.redis_client import get_redis
from shared.subscription_utils import count_messages_today, get_daily_message_limit

logger = logging.getLogger(__name__)

chat_router = APIRouter()
conversation_router = APIRouter()

CHAT_BURST_LIMIT = int(os.getenv("CHAT_BURST_LIMIT_PER_MINUTE", "20"))
DAILY_LIMIT_MESSAGE = "You've reached your daily message limit. Upgrade for unlimited chats with Luna."


async def get_usage(db: Database, user_id: str) -> ChatUsage:
    limit = await get_daily_message_limit(db, user_id)
    used = await count_messages_today(db, user_id)
    if limit is None:
        return ChatUsage(messages_used=used, unlimited=True)
    return ChatUsage(messages_used=used, daily_limit=limit, remaining=max(limit - used, 0))


@chat_router.post("/completions")
async def chat_completions(
    request: ChatCompletionRequest,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
):
    """Stream a Luna reply. The gateway's SSE body is passed through as-is."""
    if request.messages[-1].role != "user":
        raise HTTPException(status_code=400, detail="Last message must be from the user")

    await RateLimiter(redis_client).enforce(
        f"chat:{current_user.user_id}",
        CHAT_BURST_LIMIT,
        60,
        "You're sending messages too quickly. Please slow down.",
    )

    usage = await get_usage(db, current_user.user_id)
    if not usage.unlimited and usage.remaining <= 0:
        raise HTTPException(status_code=429, detail=DAILY_LIMIT_MESSAGE)

    store = ConversationStore(db)
    latest = request.messages[-1].content
    if request.conversation_id:
        conversation = await store.get_owned(str(request.conversation_id), current_user.user_id)
    else:
        conversation = await store.create(current_user.user_id, title_from_message(latest))
    conversation_id = str(conversation["id"])

    client = httpx.AsyncClient(timeout=httpx.Timeout(gateway.AI_GATEWAY_TIMEOUT, connect=10.0))
    try:
        response = await gateway.open_completion_stream(
            client, [message.model_dump() for message in request.messages]
        )
    except GatewayError as e:
        await client.aclose()
        raise HTTPException(status_code=e.public_status, detail=e.public_message)

    await store.add_message(conversation_id, "user", latest)

    async def save_reply(reply: str) -> None:
        await store.add_message(conversation_id, "assistant", reply)

    return StreamingResponse(
        gateway.relay_stream(response, client, on_complete=save_reply),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Conversation-Id": conversation_id,
        },
    )


@chat_router.get("/usage", response_model=ChatUsage)
async def chat_usage(
    current_user: TokenData = Depends(get_current_user), db: Database = Depends(get_db)
):
    return await get_usage(db, current_user.user_id)


@conversation_router.post("", response_model=Conversation)
async def create_conversation(
    request: ConversationCreate,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return await ConversationStore(db).create(current_user.user_id, request.title)


@conversation_router.get("", response_model=list[Conversation])
async def list_conversations(
    limit: int = Query(50, ge=1, le=200),
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return await ConversationStore(db).list_for_user(current_user.user_id, limit)


@conversation_router.get("/{conversation_id}/messages", response_model=list[Message])
async def get_conversation_messages(
    conversation_id: UUID,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    store = ConversationStore(db)
    await store.get_owned(str(conversation_id), current_user.user_id)
    return await store.messages(str(conversation_id))


@conversation_router.post("/{conversation_id}/messages", response_model=Message)
async def add_conversation_message(
    conversation_id: UUID,
    message: MessageCreate,
    current_user: TokenData = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    store = ConversationStore(db)
    await store.get_owned(str(conversation_id), current_user.user_id)
    return await store.add_message(str(conversation_id), message.role, message.content)
