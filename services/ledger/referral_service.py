# services/ledger/referral_service.py
import calendar
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException

from services.ledger.ledger_service import LedgerService, credit_coins
from services.ledger.models import CoinTransactionType, RedeemResponse, ReferralSummary
from shared import sms_service
from shared.database import Database
from shared.sms_service import SmsError

logger = logging.getLogger(__name__)

SIGNUP_POINTS = 25
FIRST_REFERRAL_BONUS = 50
MILESTONE_BONUSES = {
    5: (100, "5 referrals milestone bonus! 🌟"),
    10: (250, "10 referrals milestone bonus! 🏆"),
    25: (500, "25 referrals milestone bonus! 👑"),
    50: (1000, "50 referrals milestone bonus! 🔥"),
}
CONVERSION_POINTS = {"couples": 150, "pro": 100}

REWARDS = {
    "free_month_pro": {"points_cost": 300, "tier_slug": "pro", "months": 1},
    "free_month_couples": {"points_cost": 450, "tier_slug": "couples", "months": 1},
    "bonus_coins": {"points_cost": 100, "coins": 500},
}


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's end"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def signup_bonus(previous_referrals: Optional[int]) -> tuple[int, Optional[str]]:
    """Bonus points on top of the signup award. None means this is the first referral."""
    if previous_referrals is None:
        return FIRST_REFERRAL_BONUS, "First referral bonus! 🎉"
    return MILESTONE_BONUSES.get(previous_referrals + 1, (0, None))


def conversion_points(plan_type: str) -> int:
    return CONVERSION_POINTS["couples"] if plan_type == "couples" else CONVERSION_POINTS["pro"]


class ReferralService:
    def __init__(self, db: Database, ledger: Optional[LedgerService] = None):
        self.db = db
        self.ledger = ledger

    async def _notify_referrer(self, referrer: dict, message: str) -> None:
        if not (
            referrer.get("phone_number")
            and referrer.get("phone_verified")
            and referrer.get("sms_notifications_enabled") is not False
        ):
            return

        try:
            sid = await sms_service.send_sms(referrer["phone_number"], message)
        except SmsError as e:
            logger.warning(f"Referral SMS to {referrer['user_id']} failed: {e}")
            return

        if sid:
            await sms_service.log_delivery(
                self.db,
                referrer["phone_number"],
                message,
                "delivered",
                template_name="referral",
                user_id=str(referrer["user_id"]),
                twilio_sid=sid,
            )

    async def record_signup(self, referred_user_id: str, referral_code: str) -> dict:
        referrer = await self.db.fetch_one(
            """
            SELECT user_id, display_name, phone_number, phone_verified, sms_notifications_enabled
            FROM profiles WHERE referral_code = $1
            """,
            referral_code.strip().upper(),
        )
        if not referrer:
            raise HTTPException(status_code=400, detail="Invalid referral code")

        referrer_id = str(referrer["user_id"])
        if referrer_id == str(referred_user_id):
            raise HTTPException(status_code=400, detail="Cannot refer yourself")

        async with self.db.transaction() as conn:
            existing = await conn.fetchrow(
                "SELECT id FROM referrals WHERE referred_user_id = $1", referred_user_id
            )
            if existing:
                raise HTTPException(status_code=400, detail="User already referred")

            referral = await conn.fetchrow(
                """
                INSERT INTO referrals (referrer_id, referred_user_id, status, points_awarded)
                VALUES ($1, $2, 'pending', $3)
                RETURNING id
                """,
                referrer_id,
                referred_user_id,
                SIGNUP_POINTS,
            )

            points = await conn.fetchrow(
                "SELECT total_referrals FROM referral_points WHERE user_id = $1 FOR UPDATE",
                referrer_id,
            )
            bonus, bonus_description = signup_bonus(points["total_referrals"] if points else None)
            awarded = SIGNUP_POINTS + bonus

            await conn.execute(
                """
                INSERT INTO referral_points (user_id, balance, lifetime_earned, total_referrals)
                VALUES ($1, $2, $2, 1)
                ON CONFLICT (user_id) DO UPDATE
                SET balance = referral_points.balance + EXCLUDED.balance,
                    lifetime_earned = referral_points.lifetime_earned + EXCLUDED.balance,
                    total_referrals = referral_points.total_referrals + 1
                """,
                referrer_id,
                awarded,
            )
            await conn.execute(
                """
                INSERT INTO referral_point_transactions
                    (user_id, amount, transaction_type, description, reference_id)
                VALUES ($1, $2, 'referral_signup', 'Friend signed up with your code', $3)
                """,
                referrer_id,
                SIGNUP_POINTS,
                referral["id"],
            )
            if bonus:
                await conn.execute(
                    """
                    INSERT INTO referral_point_transactions
                        (user_id, amount, transaction_type, description, reference_id)
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    referrer_id,
                    bonus,
                    "bonus" if points is None else "milestone",
                    bonus_description,
                    referral["id"],
                )

        referred = await self.db.fetch_one(
            "SELECT display_name FROM profiles WHERE user_id = $1", referred_user_id
        )
        referred_name = (referred or {}).get("display_name") or "Someone"
        await self._notify_referrer(
            referrer,
            f"🎉 Great news! {referred_name} just joined Luna using your referral code! "
            f"You earned {SIGNUP_POINTS} points. Keep sharing to unlock more rewards!",
        )

        logger.info(f"Referral signup: referrer={referrer_id} referred={referred_user_id}")
        return {
            "success": True,
            "referrer_id": referrer_id,
            "is_first_referral": points is None,
            "points_awarded": awarded,
        }

    async def record_conversion(self, user_id: str, plan_type: str) -> Optional[dict]:
        """Convert a pending referral. Returns None when the user has none."""
        bonus = conversion_points(plan_type)

        async with self.db.transaction() as conn:
            referral = await conn.fetchrow(
                """
                UPDATE referrals
                SET status = 'converted', converted_at = CURRENT_TIMESTAMP,
                    points_awarded = points_awarded + $2
                WHERE referred_user_id = $1 AND status = 'pending'
                RETURNING id, referrer_id
                """,
                user_id,
                bonus,
            )
            if not referral:
                return None

            await conn.execute(
                """
                UPDATE referral_points
                SET balance = balance + $2,
                    lifetime_earned = lifetime_earned + $2,
                    successful_conversions = successful_conversions + 1
                WHERE user_id = $1
                """,
                referral["referrer_id"],
                bonus,
            )
            await conn.execute(
                """
                INSERT INTO referral_point_transactions
                    (user_id, amount, transaction_type, description, reference_id)
                VALUES ($1, $2, 'referral_conversion', $3, $4)
                """,
                referral["referrer_id"],
                bonus,
                f"Friend subscribed to {'Couples' if plan_type == 'couples' else 'Pro'}! 🎉",
                referral["id"],
            )

        referrer = await self.db.fetch_one(
            """
            SELECT user_id, phone_number, phone_verified, sms_notifications_enabled
            FROM profiles WHERE user_id = $1
            """,
            referral["referrer_id"],
        )
        if referrer:
            referred = await self.db.fetch_one(
                "SELECT display_name FROM profiles WHERE user_id = $1", user_id
            )
            referred_name = (referred or {}).get("display_name") or "Your friend"
            plan_name = "Couples" if plan_type == "couples" else "Pro"
            await self._notify_referrer(
                referrer,
                f"🎊 Amazing! {referred_name} just subscribed to Luna {plan_name}! "
                f"You earned {bonus} bonus points.",
            )

        logger.info(f"Referral converted: referrer={referral['referrer_id']} bonus={bonus}")
        return {"success": True, "referrer_id": str(referral["referrer_id"]), "bonus_points": bonus}

    async def redeem(self, user_id: str, reward_type: str, points_cost: int) -> RedeemResponse:
        reward = REWARDS.get(reward_type)
        if not reward or reward["points_cost"] != points_cost:
            raise HTTPException(status_code=400, detail="Invalid reward configuration")

        coins_awarded = None
        months_granted = None
        extended_to = None

        async with self.db.transaction() as conn:
            points = await conn.fetchrow(
                "SELECT balance FROM referral_points WHERE user_id = $1 FOR UPDATE", user_id
            )
            if not points:
                raise HTTPException(status_code=400, detail="No points balance found")
            if points["balance"] < points_cost:
                raise HTTPException(status_code=400, detail="Insufficient points")

            new_points_balance = points["balance"] - points_cost
            await conn.execute(
                "UPDATE referral_points SET balance = $1 WHERE user_id = $2",
                new_points_balance,
                user_id,
            )
            await conn.execute(
                """
                INSERT INTO referral_point_transactions (user_id, amount, transaction_type, description)
                VALUES ($1, $2, 'redemption', $3)
                """,
                user_id,
                -points_cost,
                f"Redeemed: {reward_type.replace('_', ' ')}",
            )

            if "coins" in reward:
                coins_awarded = reward["coins"]
                await credit_coins(
                    conn,
                    user_id,
                    coins_awarded,
                    CoinTransactionType.REFERRAL_BONUS.value,
                    f"Referral reward: {coins_awarded} Luna Coins",
                )
            else:
                months_granted = reward["months"]
                extended_to = await self._extend_subscription(
                    conn, user_id, reward["tier_slug"], months_granted
                )

            await conn.execute(
                """
                INSERT INTO referral_redemptions
                    (user_id, points_spent, reward_type, months_granted, subscription_extended_to)
                VALUES ($1, $2, $3, $4, $5)
                """,
                user_id,
                points_cost,
                reward_type,
                months_granted,
                extended_to,
            )

        if coins_awarded and self.ledger:
            await self.ledger.balance_cache.delete(f"coins:{user_id}")

        logger.info(f"User {user_id} redeemed {reward_type} for {points_cost} points")
        return RedeemResponse(
            reward_type=reward_type,
            points_spent=points_cost,
            new_points_balance=new_points_balance,
            coins_awarded=coins_awarded,
            months_granted=months_granted,
            subscription_extended_to=extended_to,
        )

    async def _extend_subscription(self, conn, user_id: str, tier_slug: str, months: int) -> datetime:
        tier = await conn.fetchrow("SELECT id FROM subscription_tiers WHERE slug = $1", tier_slug)
        if not tier:
            logger.error(f"Tier not found: {tier_slug}")
            raise HTTPException(status_code=500, detail="Subscription tier not found")

        now = datetime.now(timezone.utc)
        existing = await conn.fetchrow(
            """
            SELECT id, expires_at FROM user_subscriptions
            WHERE user_id = $1 AND status = 'active'
            ORDER BY created_at DESC LIMIT 1
            FOR UPDATE
            """,
            user_id,
        )

        if existing:
            current_expiry = existing["expires_at"] or now
            expires_at = add_months(max(current_expiry, now), months)
            await conn.execute(
                """
                UPDATE user_subscriptions
                SET tier_id = $1, expires_at = $2, updated_at = CURRENT_TIMESTAMP
                WHERE id = $3
                """,
                tier["id"],
                expires_at,
                existing["id"],
            )
        else:
            expires_at = add_months(now, months)
            await conn.execute(
                """
                INSERT INTO user_subscriptions (user_id, tier_id, status, source, expires_at)
                VALUES ($1, $2, 'active', 'referral', $3)
                """,
                user_id,
                tier["id"],
                expires_at,
            )

        return expires_at

    async def get_summary(self, user_id: str) -> ReferralSummary:
        profile = await self.db.fetch_one(
            "SELECT referral_code FROM profiles WHERE user_id = $1", user_id
        )
        points = await self.db.fetch_one(
            """
            SELECT balance, lifetime_earned, total_referrals, successful_conversions, level
            FROM referral_points WHERE user_id = $1
            """,
            user_id,
        )
        transactions = await self.db.fetch_all(
            """
            SELECT amount, transaction_type, description, created_at
            FROM referral_point_transactions
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT 20
            """,
            user_id,
        )

        return ReferralSummary(
            referral_code=(profile or {}).get("referral_code"),
            **(points or {}),
            recent_transactions=transactions,
        )
