from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=8000)


class ChatCompletionRequest(BaseModel):
    messages: list[ChatMessage] = Field(..., min_length=1, max_length=100)
    conversation_id: Optional[UUID] = None


class ConversationCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)


class Conversation(BaseModel):
    id: UUID
    user_id: UUID
    title: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class MessageCreate(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=20000)


class Message(BaseModel):
    id: UUID
    conversation_id: UUID
    role: str
    content: str
    created_at: datetime


class ChatUsage(BaseModel):
    messages_used: int
    daily_limit: Optional[int] = None
    remaining: Optional[int] = None
    unlimited: bool = False
