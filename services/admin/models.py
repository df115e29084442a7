from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from shared.sms_service import is_valid_e164

RecipientType = Literal["single", "all", "couples", "personal"]
TriggerType = Literal["inactive_visitor", "welcome_back", "engagement"]


# Content models
class DailyQuestionCreate(BaseModel):
    question_text: str = Field(..., min_length=1, max_length=1000)
    category: str = Field(..., min_length=1, max_length=50)
    difficulty: Optional[str] = Field(None, max_length=20)
    is_active: bool = True
    sort_order: int = 0


class DailyQuestionUpdate(BaseModel):
    question_text: Optional[str] = Field(None, min_length=1, max_length=1000)
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    difficulty: Optional[str] = Field(None, max_length=20)
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class DailyAffirmationCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=480)
    account_type: Literal["personal", "couples"] = "personal"
    is_active: bool = True
    sort_order: int = 0


class DailyAffirmationUpdate(BaseModel):
    message: Optional[str] = Field(None, min_length=1, max_length=480)
    account_type: Optional[Literal["personal", "couples"]] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class RelationshipTipCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=50)
    author: Optional[str] = Field(None, max_length=100)
    is_active: bool = True
    sort_order: int = 0


class RelationshipTipUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    author: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class BreathingExerciseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=50)
    difficulty: Optional[str] = Field(None, max_length=20)
    inhale_seconds: int = Field(..., ge=1, le=60)
    hold_seconds: int = Field(0, ge=0, le=60)
    exhale_seconds: int = Field(..., ge=1, le=60)
    cycles: int = Field(4, ge=1, le=100)
    duration_seconds: Optional[int] = Field(None, ge=1)
    is_premium: bool = False
    is_active: bool = True
    sort_order: int = 0

    @model_validator(mode="after")
    def fill_duration(self):
        if self.duration_seconds is None:
            cycle = self.inhale_seconds + self.hold_seconds + self.exhale_seconds
            self.duration_seconds = cycle * self.cycles
        return self


class BreathingExerciseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=50)
    difficulty: Optional[str] = Field(None, max_length=20)
    inhale_seconds: Optional[int] = Field(None, ge=1, le=60)
    hold_seconds: Optional[int] = Field(None, ge=0, le=60)
    exhale_seconds: Optional[int] = Field(None, ge=1, le=60)
    cycles: Optional[int] = Field(None, ge=1, le=100)
    duration_seconds: Optional[int] = Field(None, ge=1)
    is_premium: Optional[bool] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class JournalTemplateCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=50)
    prompts: list[str] = Field(default_factory=list)
    is_premium: bool = False
    is_active: bool = True
    sort_order: int = 0


class JournalTemplateUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=50)
    prompts: Optional[list[str]] = None
    is_premium: Optional[bool] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class MoodPromptCreate(BaseModel):
    prompt_text: str = Field(..., min_length=1, max_length=1000)
    mood_category: Optional[str] = Field(None, max_length=50)
    is_premium: bool = False
    is_active: bool = True
    sort_order: int = 0


class MoodPromptUpdate(BaseModel):
    prompt_text: Optional[str] = Field(None, min_length=1, max_length=1000)
    mood_category: Optional[str] = Field(None, max_length=50)
    is_premium: Optional[bool] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class SmsTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=1600)
    category: Optional[str] = Field(None, max_length=50)


class SmsTemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    message: Optional[str] = Field(None, min_length=1, max_length=1600)
    category: Optional[str] = Field(None, max_length=50)


# Scheduled SMS
class ScheduledSmsCreate(BaseModel):
    recipient_type: RecipientType = "single"
    user_id: Optional[UUID] = None
    phone_number: Optional[str] = None
    message: str = Field(..., min_length=1, max_length=1600)
    scheduled_at: datetime

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_e164(v):
            raise ValueError("Phone number must be in E.164 format")
        return v

    @model_validator(mode="after")
    def single_needs_target(self):
        if self.recipient_type == "single" and not (self.user_id or self.phone_number):
            raise ValueError("Single recipient messages need a user_id or phone_number")
        return self


# Users
class CoinAdjustment(BaseModel):
    amount: int = Field(..., ge=-1_000_000, le=1_000_000)
    reason: str = Field(..., min_length=1, max_length=255)

    @field_validator("amount")
    @classmethod
    def non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("Adjustment cannot be zero")
        return v


class MinuteAdjustment(BaseModel):
    minutes: int = Field(..., ge=-10_000, le=10_000)
    reason: str = Field(..., min_length=1, max_length=255)

    @field_validator("minutes")
    @classmethod
    def non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("Adjustment cannot be zero")
        return v


class TierAssignment(BaseModel):
    tier_slug: str = Field(..., min_length=1, max_length=30)
    expires_at: Optional[datetime] = None


class SuspendRequest(BaseModel):
    suspended: bool
    reason: Optional[str] = Field(None, max_length=500)


class RoleUpdate(BaseModel):
    role: Literal["admin"] = "admin"
    granted: bool


# Tiers
class TierUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    price_monthly: Optional[Decimal] = Field(None, ge=0)
    limits: Optional[dict[str, Any]] = None
    features: Optional[list[str]] = None
    is_active: Optional[bool] = None


# Campaigns
class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    trigger_type: TriggerType
    title: str = Field(..., min_length=1, max_length=200)
    body: Optional[str] = Field(None, max_length=1000)
    delay_minutes: int = Field(60, ge=1, le=60 * 24 * 30)
    is_active: bool = True


class CampaignToggle(BaseModel):
    is_active: bool
