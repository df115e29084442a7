# services/ledger/checkout_service.py
import logging
from typing import Optional

from fastapi import HTTPException

from services.ledger import billing_service
from services.ledger.billing_service import COIN_BUNDLES, BillingError
from services.ledger.ledger_service import LedgerService, credit_coins, credit_minutes
from services.ledger.models import (
    CheckoutResponse,
    CoinTransactionType,
    MinuteTransactionType,
    SubscriptionStatus,
    VerifyCheckoutResponse,
)
from services.ledger.referral_service import ReferralService
from shared.auth_middleware import TokenData
from shared.database import Database
from shared.subscription_utils import get_active_subscription, get_tier_by_slug

logger = logging.getLogger(__name__)


class CheckoutService:
    """Stripe checkout for coins and minutes, plus subscription sync"""

    def __init__(self, db: Database, ledger: LedgerService):
        self.db = db
        self.ledger = ledger

    async def create_coin_checkout(
        self, user: TokenData, bundle_id: str, return_url: Optional[str] = None
    ) -> CheckoutResponse:
        bundle = COIN_BUNDLES[bundle_id]
        success_url, cancel_url = billing_service.checkout_urls(return_url, "/coins", "coins")

        try:
            url, session_id = await billing_service.create_checkout_session(
                line_item=billing_service.coin_line_item(bundle_id),
                metadata={
                    "user_id": user.user_id,
                    "type": "coins",
                    "bundle_id": bundle_id,
                    "coins": str(bundle["coins"]),
                },
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=user.email,
            )
        except BillingError:
            raise HTTPException(status_code=502, detail="Unable to start checkout")

        return CheckoutResponse(url=url, session_id=session_id)

    async def create_minute_checkout(
        self, user: TokenData, package_id: str, return_url: Optional[str] = None
    ) -> CheckoutResponse:
        package = await self.db.fetch_one(
            "SELECT * FROM minute_packages WHERE id = $1 AND is_active = true", package_id
        )
        if not package:
            raise HTTPException(status_code=404, detail="Minute package not found")

        success_url, cancel_url = billing_service.checkout_urls(return_url, "/voice", "minutes")

        try:
            url, session_id = await billing_service.create_checkout_session(
                line_item=billing_service.minute_line_item(package),
                metadata={
                    "user_id": user.user_id,
                    "type": "minutes",
                    "package_id": str(package["id"]),
                    "minutes": str(package["minutes"]),
                },
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=user.email,
            )
        except BillingError:
            raise HTTPException(status_code=502, detail="Unable to start checkout")

        return CheckoutResponse(url=url, session_id=session_id)

    async def verify_checkout(
        self, user: TokenData, session_id: str, checkout_type: Optional[str] = None
    ) -> VerifyCheckoutResponse:
        """Credit a paid checkout session exactly once"""
        try:
            session = await billing_service.retrieve_checkout_session(session_id)
        except BillingError:
            raise HTTPException(status_code=502, detail="Unable to verify checkout")

        metadata = session["metadata"]
        if metadata.get("user_id") and metadata["user_id"] != user.user_id:
            raise HTTPException(status_code=403, detail="Checkout session belongs to another user")

        checkout_type = metadata.get("type") or checkout_type
        if session["payment_status"] != "paid":
            return VerifyCheckoutResponse(
                success=False, type=checkout_type, error="Payment not completed"
            )

        if checkout_type == "coins":
            amount = int(metadata.get("coins", 0))
            credited = await self._credit_coins_once(user.user_id, amount, session_id)
        elif checkout_type == "minutes":
            amount = int(metadata.get("minutes", 0))
            payment_ref = session["payment_intent"] or session_id
            credited = await self._credit_minutes_once(
                user.user_id, amount, payment_ref, metadata.get("package_id")
            )
        elif checkout_type == "subscription":
            status = await self.sync_subscription(user)
            return VerifyCheckoutResponse(success=status.subscribed, type=checkout_type)
        else:
            raise HTTPException(status_code=400, detail="Unknown checkout type")

        return VerifyCheckoutResponse(
            success=True, type=checkout_type, amount=amount, already_credited=not credited
        )

    async def _credit_coins_once(self, user_id: str, coins: int, session_id: str) -> bool:
        async with self.db.transaction() as conn:
            await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", session_id)
            existing = await conn.fetchrow(
                "SELECT id FROM coin_transactions WHERE reference_id = $1", session_id
            )
            if existing:
                return False

            await credit_coins(
                conn,
                user_id,
                coins,
                CoinTransactionType.PURCHASE.value,
                f"Purchased {coins} Luna Coins",
                session_id,
            )

        await self.ledger.balance_cache.delete(f"coins:{user_id}")
        logger.info(f"Credited {coins} coins to {user_id} for session {session_id}")
        return True

    async def _credit_minutes_once(
        self, user_id: str, minutes: int, payment_ref: str, package_id: Optional[str]
    ) -> bool:
        async with self.db.transaction() as conn:
            await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", payment_ref)
            existing = await conn.fetchrow(
                "SELECT id FROM minute_transactions WHERE stripe_payment_intent_id = $1",
                payment_ref,
            )
            if existing:
                return False

            await credit_minutes(
                conn,
                user_id,
                minutes,
                MinuteTransactionType.PURCHASE.value,
                f"Purchased {minutes} minutes",
                package_id=package_id,
                payment_intent_id=payment_ref,
            )

        logger.info(f"Credited {minutes} minutes to {user_id} for {payment_ref}")
        return True

    async def sync_subscription(self, user: TokenData) -> SubscriptionStatus:
        """Reconcile user_subscriptions with the caller's Stripe subscription"""
        stripe_subscription = None
        if user.email:
            try:
                stripe_subscription = await billing_service.find_active_subscription(user.email)
            except BillingError:
                raise HTTPException(status_code=502, detail="Unable to check subscription")

        current = await get_active_subscription(self.db, user.user_id)

        if stripe_subscription:
            plan = billing_service.plan_for_price(stripe_subscription["price_id"])
            expires_at = stripe_subscription["current_period_end"]
            await self._upsert_stripe_subscription(user.user_id, plan, expires_at, current)
            await self.ledger.grant_subscription_minutes(user.user_id, plan)
            await ReferralService(self.db).record_conversion(user.user_id, plan)
            return SubscriptionStatus(
                subscribed=True, plan=plan, subscription_end=expires_at, source="stripe"
            )

        # Admin or referral grants stand on their own
        if current and current["source"] != "stripe" and current["tier_slug"] != "free":
            return SubscriptionStatus(
                subscribed=True,
                plan=current["tier_slug"],
                subscription_end=current.get("expires_at"),
                source=current["source"],
            )

        if current and current["source"] == "stripe":
            await self.db.execute(
                """
                UPDATE user_subscriptions SET status = 'expired', updated_at = CURRENT_TIMESTAMP
                WHERE id = $1
                """,
                current["id"],
            )
            logger.info(f"Stripe subscription for {user.user_id} no longer active")

        return SubscriptionStatus(subscribed=False, plan="free")

    async def _upsert_stripe_subscription(self, user_id: str, plan: str, expires_at, current) -> None:
        tier = await get_tier_by_slug(self.db, plan)
        if not tier:
            logger.error(f"No subscription tier for plan {plan}")
            raise HTTPException(status_code=500, detail="Subscription tier not found")

        if current and current["source"] == "stripe" and current["tier_id"] == tier["id"]:
            await self.db.execute(
                """
                UPDATE user_subscriptions SET expires_at = $1, updated_at = CURRENT_TIMESTAMP
                WHERE id = $2
                """,
                expires_at,
                current["id"],
            )
            return

        async with self.db.transaction() as conn:
            await conn.execute(
                """
                UPDATE user_subscriptions SET status = 'replaced', updated_at = CURRENT_TIMESTAMP
                WHERE user_id = $1 AND status = 'active'
                """,
                user_id,
            )
            await conn.execute(
                """
                INSERT INTO user_subscriptions (user_id, tier_id, status, source, expires_at)
                VALUES ($1, $2, 'active', 'stripe', $3)
                """,
                user_id,
                tier["id"],
                expires_at,
            )
        logger.info(f"Synced {plan} subscription for {user_id}")
