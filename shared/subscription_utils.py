# shared/subscription_utils.py
"""Tier and subscription lookups used across services."""

import logging
from datetime import datetime, timezone
from typing import Optional

from shared.database import Database
from shared.json_utils import parse_jsonb_field

logger = logging.getLogger(__name__)

DEFAULT_FREE_MESSAGES_PER_DAY = 5


async def get_tier_by_slug(db: Database, slug: str) -> Optional[dict]:
    tier = await db.fetch_one("SELECT * FROM subscription_tiers WHERE slug = $1", slug)
    if tier:
        tier["limits"] = parse_jsonb_field(tier.get("limits"), {}, "limits")
        tier["features"] = parse_jsonb_field(tier.get("features"), [], "features")
    return tier


async def get_active_subscription(db: Database, user_id: str) -> Optional[dict]:
    """Newest active subscription joined with its tier, or None"""
    subscription = await db.fetch_one(
        """
        SELECT us.*, st.slug AS tier_slug, st.name AS tier_name, st.limits AS tier_limits
        FROM user_subscriptions us
        JOIN subscription_tiers st ON st.id = us.tier_id
        WHERE us.user_id = $1 AND us.status = 'active'
        ORDER BY us.created_at DESC
        LIMIT 1
        """,
        user_id,
    )
    if subscription:
        subscription["tier_limits"] = parse_jsonb_field(
            subscription.get("tier_limits"), {}, "tier_limits"
        )
    return subscription


def messages_per_day(limits: Optional[dict], default: Optional[int] = None) -> Optional[int]:
    """Daily message cap from a tier's limits. None means unlimited."""
    value = (limits or {}).get("messages_per_day", default)
    if value is None:
        return None
    value = int(value)
    return None if value < 0 else value


async def get_daily_message_limit(db: Database, user_id: str) -> Optional[int]:
    subscription = await get_active_subscription(db, user_id)
    if subscription and subscription["tier_slug"] != "free":
        return messages_per_day(subscription["tier_limits"])

    free_tier = await get_tier_by_slug(db, "free")
    limits = free_tier["limits"] if free_tier else {}
    return messages_per_day(limits, DEFAULT_FREE_MESSAGES_PER_DAY)


async def count_messages_today(db: Database, user_id: str) -> int:
    """User-authored chat messages since midnight UTC"""
    midnight = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    row = await db.fetch_one(
        """
        SELECT COUNT(*) AS total
        FROM messages m
        JOIN conversations c ON c.id = m.conversation_id
        WHERE c.user_id = $1 AND m.role = 'user' AND m.created_at >= $2
        """,
        user_id,
        midnight,
    )
    return int(row["total"]) if row else 0


def low_message_threshold(limit: int) -> int:
    return int(limit * 0.4)


def should_warn_low_messages(limit: int, used: int) -> bool:
    """True when 0 < remaining <= floor(limit * 0.4)"""
    remaining = limit - used
    return 0 < remaining <= low_message_threshold(limit)
