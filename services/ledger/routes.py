# services/ledger/routes.py
from typing import Optional

import redis.asyncio as redis
from fastapi import APIRouter, Depends, Query

from services.ledger.checkout_service import CheckoutService
from services.ledger.ledger_service import LedgerService
from services.ledger.models import (
    CheckoutResponse,
    CoinBalance,
    CoinCheckoutRequest,
    CoinTransactionList,
    CoinTransactionResponse,
    ConsumeMinutesRequest,
    EarnCoinsRequest,
    MinuteBalance,
    MinuteCheckoutRequest,
    RedeemRequest,
    RedeemResponse,
    ReferralConvertRequest,
    ReferralSignupRequest,
    ReferralSummary,
    SpendCoinsRequest,
    SubscriptionStatus,
    VerifyCheckoutRequest,
    VerifyCheckoutResponse,
)
from services.ledger.referral_service import ReferralService
from shared.auth_middleware import TokenData, get_current_user, require_admin
from shared.database import Database, get_db
from shared.redis_client import get_redis

# Create routers
coins_router = APIRouter()
minutes_router = APIRouter()
checkout_router = APIRouter()
subscription_router = APIRouter()
referral_router = APIRouter()


# Dependencies
async def get_ledger_service(
    db: Database = Depends(get_db), redis_client: redis.Redis = Depends(get_redis)
) -> LedgerService:
    return LedgerService(db, redis_client)


async def get_checkout_service(
    db: Database = Depends(get_db), ledger: LedgerService = Depends(get_ledger_service)
) -> CheckoutService:
    return CheckoutService(db, ledger)


async def get_referral_service(
    db: Database = Depends(get_db), ledger: LedgerService = Depends(get_ledger_service)
) -> ReferralService:
    return ReferralService(db, ledger)


# Coin Routes
@coins_router.get("/balance", response_model=CoinBalance)
async def get_coin_balance(
    current_user: TokenData = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return await ledger.get_coin_balance(current_user.user_id)


@coins_router.get("/transactions", response_model=CoinTransactionList)
async def get_coin_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[str] = Query(None),
    current_user: TokenData = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return await ledger.get_coin_transactions(
        current_user.user_id, page=page, limit=limit, transaction_type=type
    )


@coins_router.post("/earn", response_model=CoinTransactionResponse)
async def earn_coins(
    request: EarnCoinsRequest,
    current_user: TokenData = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return await ledger.earn_coins(
        current_user.user_id, request.amount, request.description, request.reference_id
    )


@coins_router.post("/spend", response_model=CoinTransactionResponse)
async def spend_coins(
    request: SpendCoinsRequest,
    current_user: TokenData = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Spend coins. Fails with 400 when the balance is too low."""
    return await ledger.spend_coins(
        current_user.user_id, request.amount, request.description, request.reference_id
    )


# Minute Routes
@minutes_router.get("/balance", response_model=MinuteBalance)
async def get_minute_balance(
    current_user: TokenData = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return await ledger.get_minute_balance(current_user.user_id)


@minutes_router.get("/packages")
async def list_minute_packages(db: Database = Depends(get_db)):
    packages = await db.fetch_all(
        """
        SELECT id, name, minutes, price_cents FROM minute_packages
        WHERE is_active = true ORDER BY sort_order, minutes
        """
    )
    return {"packages": packages}


@minutes_router.post("/consume", response_model=MinuteBalance)
async def consume_minutes(
    request: ConsumeMinutesRequest,
    current_user: TokenData = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return await ledger.consume_minutes(current_user.user_id, request.minutes, request.description)


# Checkout Routes
@checkout_router.post("/coins", response_model=CheckoutResponse)
async def create_coin_checkout(
    request: CoinCheckoutRequest,
    current_user: TokenData = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    return await checkout.create_coin_checkout(current_user, request.bundle_id, request.return_url)


@checkout_router.post("/minutes", response_model=CheckoutResponse)
async def create_minute_checkout(
    request: MinuteCheckoutRequest,
    current_user: TokenData = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    return await checkout.create_minute_checkout(
        current_user, str(request.package_id), request.return_url
    )


@checkout_router.post("/verify", response_model=VerifyCheckoutResponse)
async def verify_checkout(
    request: VerifyCheckoutRequest,
    current_user: TokenData = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    return await checkout.verify_checkout(current_user, request.session_id, request.type)


# Subscription Routes
@subscription_router.get("/status", response_model=SubscriptionStatus)
async def get_subscription_status(
    current_user: TokenData = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    return await checkout.sync_subscription(current_user)


# Referral Routes
@referral_router.post("/signup")
async def referral_signup(
    request: ReferralSignupRequest,
    current_user: TokenData = Depends(get_current_user),
    referrals: ReferralService = Depends(get_referral_service),
):
    return await referrals.record_signup(current_user.user_id, request.referral_code)


@referral_router.post("/convert")
async def referral_convert(
    request: ReferralConvertRequest,
    admin_user: TokenData = Depends(require_admin),
    referrals: ReferralService = Depends(get_referral_service),
):
    result = await referrals.record_conversion(str(request.user_id), request.plan_type)
    if result is None:
        return {"success": False, "error": "No pending referral found"}
    return result


@referral_router.post("/redeem", response_model=RedeemResponse)
async def redeem_reward(
    request: RedeemRequest,
    current_user: TokenData = Depends(get_current_user),
    referrals: ReferralService = Depends(get_referral_service),
):
    return await referrals.redeem(current_user.user_id, request.reward_type, request.points_cost)


@referral_router.get("/summary", response_model=ReferralSummary)
async def referral_summary(
    current_user: TokenData = Depends(get_current_user),
    referrals: ReferralService = Depends(get_referral_service),
):
    return await referrals.get_summary(current_user.user_id)
