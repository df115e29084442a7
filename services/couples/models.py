from datetime import date, datetime, timezone
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

GAME_TYPE_PATTERN = r"^[a-z][a-z_]{0,49}$"


# Partner link models
class InviteRequest(BaseModel):
    email: Optional[EmailStr] = None


class AcceptInviteRequest(BaseModel):
    invite_code: str = Field(..., min_length=8, max_length=8)

    @field_validator("invite_code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class PartnerLink(BaseModel):
    id: UUID
    user_id: UUID
    partner_id: Optional[UUID] = None
    invite_code: str
    invite_email: Optional[str] = None
    status: str
    accepted_at: Optional[datetime] = None
    created_at: datetime


class PartnerLinkStatus(BaseModel):
    link: Optional[PartnerLink] = None
    pending_invite: Optional[PartnerLink] = None
    partner_name: Optional[str] = None
    is_linked: bool = False


# Game models
class StartGameRequest(BaseModel):
    initial_state: dict[str, Any] = Field(default_factory=dict)


class GameStatePatch(BaseModel):
    state: dict[str, Any]


class CardIndexUpdate(BaseModel):
    index: int = Field(..., ge=0)


class GameSession(BaseModel):
    id: UUID
    partner_link_id: UUID
    game_type: str
    current_card_index: int
    game_state: dict[str, Any]
    started_by: UUID
    created_at: datetime
    updated_at: datetime


class GameResultRequest(BaseModel):
    score: int = 0
    matches: int = 0
    total_questions: int = 0
    partner_played: bool = False
    details: dict[str, Any] = Field(default_factory=dict)


class GameStats(BaseModel):
    total_games_played: int
    total_matches: int
    average_score: int
    last_played: Optional[datetime] = None


# Mood models
class MoodEntryCreate(BaseModel):
    mood_level: int = Field(..., ge=1, le=10)
    mood_label: str = Field(..., min_length=1, max_length=50)
    notes: Optional[str] = Field(None, max_length=2000)


class SharedMoodEntryCreate(MoodEntryCreate):
    is_visible_to_partner: bool = True


class MoodEntry(BaseModel):
    id: UUID
    user_id: UUID
    mood_level: int
    mood_label: str
    notes: Optional[str] = None
    created_at: datetime


class SharedMoodEntry(MoodEntry):
    partner_link_id: UUID
    is_visible_to_partner: bool = True


# Milestone models
class MilestoneCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    category: str = Field("anniversary", max_length=50)
    icon: Optional[str] = Field(None, max_length=20)
    milestone_date: date
    is_recurring: bool = False


class Milestone(BaseModel):
    id: UUID
    partner_link_id: UUID
    created_by: UUID
    title: str
    description: Optional[str] = None
    category: str
    icon: Optional[str] = None
    milestone_date: date
    is_recurring: bool
    created_at: datetime


class TimeCapsuleCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)
    deliver_at: datetime

    @field_validator("deliver_at")
    @classmethod
    def validate_deliver_at(cls, v):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("deliver_at must be in the future")
        return v


class TimeCapsule(BaseModel):
    id: UUID
    partner_link_id: UUID
    sender_id: UUID
    recipient_id: UUID
    title: Optional[str] = None
    message: str
    deliver_at: datetime
    is_delivered: bool
    delivered_at: Optional[datetime] = None
    created_at: datetime
