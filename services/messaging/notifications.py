# services/messaging/notifications.py
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from services.messaging.models import NotificationResult, SubscriptionNotificationResponse
from shared.database import Database
from shared.sms_service import SmsError, log_delivery, send_sms
from shared.subscription_utils import (
    DEFAULT_FREE_MESSAGES_PER_DAY,
    get_tier_by_slug,
    messages_per_day,
    should_warn_low_messages,
)

logger = logging.getLogger(__name__)

EXPIRY_WARNING_DAYS = 3


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def low_messages_text(display_name: Optional[str], remaining: int) -> str:
    return (
        f"💜 Luna: Hi {display_name or 'there'}! You have {_plural(remaining, 'message')} "
        "left today. Upgrade to Pro for unlimited conversations! 🌟"
    )


def expiring_text(display_name: Optional[str], tier_name: Optional[str], days_left: int) -> str:
    return (
        f"💜 Luna: Hi {display_name or 'there'}! Your {tier_name or 'Pro'} subscription expires "
        f"in {_plural(days_left, 'day')}. Renew to keep unlimited access! 🌟"
    )


def days_until(expires_at: datetime, now: datetime) -> int:
    return max(0, math.ceil((expires_at - now).total_seconds() / 86400))


async def collect_low_messages(db: Database, now: Optional[datetime] = None) -> list[dict]:
    now = now or datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    free_tier = await get_tier_by_slug(db, "free")
    if not free_tier:
        return []
    limit = messages_per_day(free_tier["limits"], DEFAULT_FREE_MESSAGES_PER_DAY)
    if limit is None:
        return []

    users = await db.fetch_all(
        """
        SELECT p.user_id, p.display_name, p.phone_number, COUNT(m.id) AS used
        FROM profiles p
        LEFT JOIN conversations c ON c.user_id = p.user_id
        LEFT JOIN messages m
               ON m.conversation_id = c.id AND m.role = 'user' AND m.created_at >= $1
        WHERE p.phone_verified = TRUE
          AND p.sms_notifications_enabled = TRUE
          AND p.phone_number IS NOT NULL
          AND NOT EXISTS (
              SELECT 1 FROM user_subscriptions us
              JOIN subscription_tiers st ON st.id = us.tier_id
              WHERE us.user_id = p.user_id AND us.status = 'active' AND st.slug <> 'free'
          )
        GROUP BY p.user_id, p.display_name, p.phone_number
        """,
        midnight,
    )

    notifications = []
    for user in users:
        used = int(user["used"])
        if should_warn_low_messages(limit, used):
            notifications.append(
                {
                    "user_id": user["user_id"],
                    "phone": user["phone_number"],
                    "template": "low_messages",
                    "message": low_messages_text(user["display_name"], limit - used),
                }
            )
    return notifications


async def collect_expiring(db: Database, now: Optional[datetime] = None) -> list[dict]:
    now = now or datetime.now(timezone.utc)

    rows = await db.fetch_all(
        """
        SELECT us.user_id, us.expires_at, st.name AS tier_name,
               p.display_name, p.phone_number
        FROM user_subscriptions us
        JOIN subscription_tiers st ON st.id = us.tier_id
        JOIN profiles p ON p.user_id = us.user_id
        WHERE us.status = 'active'
          AND us.expires_at IS NOT NULL
          AND us.expires_at BETWEEN $1 AND $2
          AND p.phone_verified = TRUE
          AND p.sms_notifications_enabled = TRUE
          AND p.phone_number IS NOT NULL
        """,
        now,
        now + timedelta(days=EXPIRY_WARNING_DAYS),
    )

    return [
        {
            "user_id": row["user_id"],
            "phone": row["phone_number"],
            "template": "subscription_expiring",
            "message": expiring_text(
                row["display_name"], row["tier_name"], days_until(row["expires_at"], now)
            ),
        }
        for row in rows
    ]


async def send_subscription_notifications(
    db: Database,
    notification_type: str,
    check_all: bool = False,
    send: Callable[[str, str], Awaitable[Optional[str]]] = send_sms,
) -> SubscriptionNotificationResponse:
    notifications = []
    if notification_type == "low_messages" or check_all:
        notifications.extend(await collect_low_messages(db))
    if notification_type == "subscription_expiring" or check_all:
        notifications.extend(await collect_expiring(db))

    results = []
    for notification in notifications:
        try:
            sid = await send(notification["phone"], notification["message"])
        except SmsError as e:
            logger.error(f"Failed to send {notification['template']} SMS to {notification['phone']}: {e}")
            results.append(NotificationResult(phone=notification["phone"], success=False, error=str(e)))
            await log_delivery(
                db,
                notification["phone"],
                notification["message"],
                "failed",
                template_name=notification["template"],
                user_id=notification["user_id"],
                error_message=str(e),
            )
            continue

        results.append(NotificationResult(phone=notification["phone"], success=True))
        await log_delivery(
            db,
            notification["phone"],
            notification["message"],
            "delivered",
            template_name=notification["template"],
            user_id=notification["user_id"],
            twilio_sid=sid,
        )

    return SubscriptionNotificationResponse(
        notifications_sent=sum(1 for r in results if r.success), results=results
    )
