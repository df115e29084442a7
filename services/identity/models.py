import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from shared.sms_service import E164_PATTERN


# Profile models
class Profile(BaseModel):
    id: UUID
    user_id: UUID
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    gender: Optional[str] = None
    phone_number: Optional[str] = None
    phone_verified: bool = False
    sms_notifications_enabled: bool = True
    sms_notification_preferences: dict[str, bool] = {}
    reminder_enabled: bool = False
    reminder_time: Optional[str] = None
    weekly_insights_enabled: bool = True
    referral_code: Optional[str] = None
    suspended: bool = False
    created_at: datetime
    updated_at: datetime


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    avatar_url: Optional[str] = None
    gender: Optional[str] = Field(None, max_length=50)
    reminder_enabled: Optional[bool] = None
    reminder_time: Optional[str] = Field(None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    weekly_insights_enabled: Optional[bool] = None
    sms_notifications_enabled: Optional[bool] = None
    sms_notification_preferences: Optional[dict[str, bool]] = None


# Phone verification models
class SendVerificationRequest(BaseModel):
    phone_number: str

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v):
        v = v.strip()
        if not E164_PATTERN.match(v):
            raise ValueError("Phone must be in E.164 format (e.g., +14155551234)")
        return v


class VerifyPhoneRequest(BaseModel):
    phone_number: str
    code: str = Field(..., min_length=6, max_length=6)

    @field_validator("phone_number")
    @classmethod
    def clean_phone(cls, v):
        cleaned = re.sub(r"[^\d+]", "", v)
        if not cleaned.startswith("+"):
            raise ValueError("Phone number must include country code (e.g., +1)")
        return cleaned

    @field_validator("code")
    @classmethod
    def validate_code(cls, v):
        if not v.isdigit():
            raise ValueError("Verification code must contain only digits")
        return v


class RolesResponse(BaseModel):
    user_id: UUID
    roles: list[str]
    is_admin: bool
