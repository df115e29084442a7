from datetime import datetime
from enum import Enum
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CoinTransactionType(str, Enum):
    PURCHASE = "purchase"
    EARN = "earn"
    SPEND = "spend"
    REFERRAL_BONUS = "referral_bonus"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class MinuteTransactionType(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    SUBSCRIPTION_BONUS = "subscription_bonus"
    ADMIN_ADJUSTMENT = "admin_adjustment"


# Coin models
class CoinBalance(BaseModel):
    user_id: UUID
    balance: int
    lifetime_earned: int = 0


class CoinTransaction(BaseModel):
    id: UUID
    user_id: UUID
    amount: int
    transaction_type: str
    description: Optional[str] = None
    reference_id: Optional[str] = None
    created_at: datetime


class CoinTransactionList(BaseModel):
    transactions: list[CoinTransaction]
    total: int
    page: int
    limit: int
    has_more: bool


class EarnCoinsRequest(BaseModel):
    amount: int = Field(..., gt=0, le=10000)
    description: str = Field(..., min_length=1, max_length=255)
    reference_id: Optional[str] = Field(None, max_length=255)


class SpendCoinsRequest(BaseModel):
    amount: int = Field(..., gt=0, le=100000)
    description: str = Field(..., min_length=1, max_length=255)
    reference_id: Optional[str] = Field(None, max_length=255)


class CoinTransactionResponse(BaseModel):
    transaction: CoinTransaction
    new_balance: int
    previous_balance: int


# Minute models
class MinuteBalance(BaseModel):
    user_id: UUID
    minutes_balance: int
    lifetime_purchased: int = 0
    lifetime_used: int = 0
    last_subscription_grant: Optional[datetime] = None


class ConsumeMinutesRequest(BaseModel):
    minutes: int = Field(..., gt=0, le=600)
    description: Optional[str] = Field(None, max_length=255)


# Checkout models
class CoinCheckoutRequest(BaseModel):
    bundle_id: Literal["small", "medium", "large"]
    return_url: Optional[str] = Field(None, pattern=r"^/")


class MinuteCheckoutRequest(BaseModel):
    package_id: UUID
    return_url: Optional[str] = Field(None, pattern=r"^/")


class CheckoutResponse(BaseModel):
    url: str
    session_id: str


class VerifyCheckoutRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    type: Optional[Literal["coins", "minutes", "subscription"]] = None


class VerifyCheckoutResponse(BaseModel):
    success: bool
    type: Optional[str] = None
    amount: Optional[int] = None
    already_credited: bool = False
    error: Optional[str] = None


# Subscription models
class SubscriptionStatus(BaseModel):
    subscribed: bool
    plan: str
    subscription_end: Optional[datetime] = None
    source: Optional[str] = None


# Referral models
class ReferralSignupRequest(BaseModel):
    referral_code: str = Field(..., min_length=4, max_length=16)


class ReferralConvertRequest(BaseModel):
    user_id: UUID
    plan_type: Literal["pro", "couples"]


class RedeemRequest(BaseModel):
    reward_type: Literal["free_month_pro", "free_month_couples", "bonus_coins"]
    points_cost: int = Field(..., gt=0)


class RedeemResponse(BaseModel):
    success: bool = True
    reward_type: str
    points_spent: int
    new_points_balance: int
    coins_awarded: Optional[int] = None
    months_granted: Optional[int] = None
    subscription_extended_to: Optional[datetime] = None


class ReferralSummary(BaseModel):
    referral_code: Optional[str] = None
    balance: int = 0
    lifetime_earned: int = 0
    total_referrals: int = 0
    successful_conversions: int = 0
    level: str = "starter"
    recent_transactions: list[dict] = []
