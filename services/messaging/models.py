from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from shared.push_service import validate_subscription_keys
from shared.sms_service import is_valid_e164


def _validate_e164(v: str) -> str:
    v = v.strip()
    if not is_valid_e164(v):
        raise ValueError(
            "Invalid phone number. Use format: +1234567890 (country code + number, digits only)"
        )
    return v


# SMS models
class NotifyRequest(BaseModel):
    user_id: UUID
    message: str = Field(..., min_length=1, max_length=1600)


class DirectSmsRequest(BaseModel):
    phone_number: str
    message: str = Field(..., min_length=1, max_length=1600)

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v):
        return _validate_e164(v)


class WelcomeSmsRequest(BaseModel):
    phone_number: str
    email: EmailStr

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v):
        return _validate_e164(v)


class PartnerNotifyRequest(BaseModel):
    event: Literal["game_started", "love_message"]
    game_type: Optional[str] = None
    message: Optional[str] = Field(None, max_length=480)

    @field_validator("message")
    @classmethod
    def strip_message(cls, v):
        return v.strip() if v else v


class SmsSendResponse(BaseModel):
    success: bool = True
    message: str
    sid: Optional[str] = None


# Job models
class DispatchResult(BaseModel):
    success: bool = True
    processed: int = 0
    sent: int = 0
    failed: int = 0


class PushRunResult(BaseModel):
    success: bool = True
    sent: int = 0
    failed: int = 0
    campaigns_processed: int = 0


class MilestoneReminderResult(BaseModel):
    milestone: str
    users_notified: int = 0
    days_until: int


class MilestoneReminderResponse(BaseModel):
    success: bool = True
    total_notifications_sent: int = 0
    results: list[MilestoneReminderResult] = []


class AffirmationRunResult(BaseModel):
    success: bool = True
    sent: int = 0
    failed: int = 0
    message: Optional[str] = None


class CapsuleDelivery(BaseModel):
    id: UUID
    status: Literal["delivered", "failed"]
    error: Optional[str] = None


class CapsuleRunResult(BaseModel):
    success: bool = True
    processed: int = 0
    results: list[CapsuleDelivery] = []


class SubscriptionNotificationRequest(BaseModel):
    type: Literal["low_messages", "subscription_expiring"]
    check_all: bool = False


class NotificationResult(BaseModel):
    phone: str
    success: bool
    error: Optional[str] = None


class SubscriptionNotificationResponse(BaseModel):
    success: bool = True
    notifications_sent: int
    results: list[NotificationResult]


# Push models
class PushKeys(BaseModel):
    p256dh: str
    auth: str

    @model_validator(mode="after")
    def validate_keys(self):
        validate_subscription_keys(self.p256dh, self.auth)
        return self


class PushSubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=10)
    keys: PushKeys
    session_id: Optional[str] = Field(None, max_length=100)

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v):
        if not v.startswith("https://"):
            raise ValueError("Push endpoint must be an https URL")
        return v


class PushUnsubscribeRequest(BaseModel):
    endpoint: str


class PushSendRequest(BaseModel):
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field("", max_length=1000)
    url: Optional[str] = "/"


class PushSubscription(BaseModel):
    id: UUID
    user_id: Optional[UUID] = None
    session_id: Optional[str] = None
    endpoint: str
    is_active: bool
    subscribed_at: datetime
