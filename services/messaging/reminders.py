# services/messaging/reminders.py
"""
Daily and periodic relationship jobs: milestone reminders, daily
affirmations and time capsule delivery.
"""

import logging
import os
import random
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Sequence

from services.messaging.campaigns import SendPushFn, push_to_subscriptions
from services.messaging.models import (
    AffirmationRunResult,
    CapsuleDelivery,
    CapsuleRunResult,
    MilestoneReminderResponse,
    MilestoneReminderResult,
)
from shared import push_service
from shared.database import Database
from shared.json_utils import parse_jsonb_field
from shared.push_service import send_web_push
from shared.sms_service import SmsError, log_delivery, send_sms

logger = logging.getLogger(__name__)

SendFn = Callable[[str, str], Awaitable[Optional[str]]]

REMINDER_DAYS = (0, 1, 3, 7)
AFFIRMATION_OPT_OUT_FOOTER = "Reply STOP to unsubscribe"

DAILY_AFFIRMATIONS_ENABLED = os.getenv("DAILY_AFFIRMATIONS_ENABLED", "true").lower() == "true"


def days_text(days: int) -> str:
    if days == 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def milestone_reminder_text(title: str, days: int) -> str:
    return f'💜 Luna: Reminder - "{title}" is {days_text(days)}! 💕 Open Luna to celebrate together.'


def affirmation_text(template: str, display_name: Optional[str]) -> str:
    body = f"Hi {display_name}! {template}" if display_name else template
    return f"💜 Luna: {body}\n\n{AFFIRMATION_OPT_OUT_FOOTER}"


def capsule_sms_text(sender_name: str) -> str:
    return (
        f"💌 {sender_name} sent you a Time Capsule message! Open the Luna app to read "
        "their love letter from the past. 💝"
    )


async def _text_and_log(
    db: Database,
    send: SendFn,
    phone: str,
    message: str,
    template_name: str,
    user_id=None,
) -> bool:
    try:
        sid = await send(phone, message)
    except SmsError as e:
        logger.error(f"{template_name} SMS to {phone} failed: {e}")
        await log_delivery(
            db,
            phone,
            message,
            "failed",
            template_name=template_name,
            user_id=user_id,
            error_message=str(e),
        )
        return False

    await log_delivery(
        db,
        phone,
        message,
        "delivered",
        template_name=template_name,
        user_id=user_id,
        twilio_sid=sid,
    )
    return True


class MilestoneReminderJob:
    """Text both partners ahead of a milestone.

    Reminders go out on the day itself and 1, 3 and 7 days before it.
    Recurring milestones match on month and day in every year.
    """

    def __init__(self, db: Database, send: SendFn = send_sms):
        self.db = db
        self.send = send

    async def recipients_for(self, target: date) -> list[dict]:
        return await self.db.fetch_all(
            """
            SELECT m.id AS milestone_id, m.title, p.user_id, p.phone_number,
                   p.sms_notification_preferences
            FROM relationship_milestones m
            JOIN partner_links pl ON pl.id = m.partner_link_id AND pl.status = 'accepted'
            JOIN profiles p ON p.user_id IN (pl.user_id, pl.partner_id)
            WHERE (
                    m.milestone_date = $1
                    OR (m.is_recurring
                        AND EXTRACT(MONTH FROM m.milestone_date) = $2
                        AND EXTRACT(DAY FROM m.milestone_date) = $3)
                  )
              AND p.phone_verified = TRUE
              AND p.sms_notifications_enabled = TRUE
              AND p.phone_number IS NOT NULL
            ORDER BY m.id
            """,
            target,
            target.month,
            target.day,
        )

    async def run(self, today: Optional[date] = None) -> MilestoneReminderResponse:
        today = today or datetime.now(timezone.utc).date()
        response = MilestoneReminderResponse()

        for days in REMINDER_DAYS:
            target = today + timedelta(days=days)
            rows = await self.recipients_for(target)
            if not rows:
                continue
            logger.info(f"Found {len(rows)} milestone recipients for {target} ({days} days away)")

            by_milestone: dict = {}
            for row in rows:
                entry = by_milestone.setdefault(
                    row["milestone_id"],
                    MilestoneReminderResult(milestone=row["title"], days_until=days),
                )
                preferences = parse_jsonb_field(
                    row.get("sms_notification_preferences"), {}, "sms_notification_preferences"
                )
                if preferences.get("milestone_reminder") is False:
                    continue

                sent = await _text_and_log(
                    self.db,
                    self.send,
                    row["phone_number"],
                    milestone_reminder_text(row["title"], days),
                    "milestone_reminder",
                    user_id=row["user_id"],
                )
                if sent:
                    entry.users_notified += 1
                    response.total_notifications_sent += 1

            response.results.extend(by_milestone.values())

        logger.info(
            f"Milestone reminders complete. Total notifications sent: "
            f"{response.total_notifications_sent}"
        )
        return response


class DailyAffirmationJob:
    def __init__(
        self,
        db: Database,
        send: SendFn = send_sms,
        choose: Callable[[Sequence[str]], str] = random.choice,
    ):
        self.db = db
        self.send = send
        self.choose = choose

    async def templates(self) -> dict[str, list[str]]:
        rows = await self.db.fetch_all(
            """
            SELECT message, account_type FROM daily_affirmation_templates
            WHERE is_active = TRUE
            ORDER BY sort_order, created_at
            """
        )
        grouped: dict[str, list[str]] = {"personal": [], "couples": []}
        for row in rows:
            grouped.setdefault(row["account_type"], []).append(row["message"])
        return grouped

    async def run(self) -> AffirmationRunResult:
        if not DAILY_AFFIRMATIONS_ENABLED:
            return AffirmationRunResult(message="Daily affirmations are disabled")

        templates = await self.templates()
        if not any(templates.values()):
            logger.info("No active affirmation templates found")
            return AffirmationRunResult(message="No active templates")

        users = await self.db.fetch_all(
            """
            SELECT p.user_id, p.phone_number, p.display_name,
                   EXISTS (
                       SELECT 1 FROM user_subscriptions us
                       JOIN subscription_tiers st ON st.id = us.tier_id
                       WHERE us.user_id = p.user_id AND us.status = 'active'
                         AND st.slug = 'couples'
                   ) AS is_couples
            FROM profiles p
            WHERE p.phone_verified = TRUE
              AND p.sms_notifications_enabled = TRUE
              AND p.phone_number IS NOT NULL
            """
        )
        logger.info(f"Found {len(users)} users with verified phones")

        result = AffirmationRunResult()
        for user in users:
            account_type = "couples" if user["is_couples"] else "personal"
            choices = templates.get(account_type)
            if not choices:
                continue

            message = affirmation_text(self.choose(choices), user["display_name"])
            if await _text_and_log(
                self.db,
                self.send,
                user["phone_number"],
                message,
                "daily_affirmation",
                user_id=user["user_id"],
            ):
                result.sent += 1
            else:
                result.failed += 1

        logger.info(f"Daily affirmations complete. Sent: {result.sent}, Failed: {result.failed}")
        return result


class TimeCapsuleDelivery:
    """Open capsules whose delivery time has passed.

    A capsule is marked delivered before anyone is notified, and only by
    the run whose conditional update flips it. SMS and push notices are
    best effort.
    """

    def __init__(
        self,
        db: Database,
        send_text: SendFn = send_sms,
        send_push: SendPushFn = send_web_push,
    ):
        self.db = db
        self.send_text = send_text
        self.send_push = send_push

    async def due_capsules(self, now: datetime) -> list[dict]:
        return await self.db.fetch_all(
            """
            SELECT tc.id, tc.sender_id, tc.recipient_id,
                   s.display_name AS sender_name,
                   r.phone_number, r.phone_verified, r.sms_notifications_enabled
            FROM time_capsule_messages tc
            LEFT JOIN profiles s ON s.user_id = tc.sender_id
            LEFT JOIN profiles r ON r.user_id = tc.recipient_id
            WHERE tc.is_delivered = FALSE AND tc.deliver_at <= $1
            ORDER BY tc.deliver_at
            """,
            now,
        )

    async def notify_recipient(self, capsule: dict) -> None:
        sender_name = capsule.get("sender_name") or "Your partner"

        if (
            capsule.get("phone_number")
            and capsule.get("phone_verified")
            and capsule.get("sms_notifications_enabled")
        ):
            await _text_and_log(
                self.db,
                self.send_text,
                capsule["phone_number"],
                capsule_sms_text(sender_name),
                "time_capsule",
                user_id=capsule["recipient_id"],
            )

        if not push_service.is_configured():
            return
        subscriptions = await self.db.fetch_all(
            "SELECT * FROM push_subscriptions WHERE user_id = $1 AND is_active = TRUE",
            capsule["recipient_id"],
        )
        payload = {
            "title": "💌 Time Capsule Arrived!",
            "body": f"{sender_name} sent you a love letter from the past",
            "url": "/",
            "tag": f"time-capsule-{capsule['id']}",
        }
        await push_to_subscriptions(self.db, subscriptions, payload, send=self.send_push)

    async def run(self, now: Optional[datetime] = None) -> CapsuleRunResult:
        now = now or datetime.now(timezone.utc)
        capsules = await self.due_capsules(now)
        logger.info(f"Found {len(capsules)} capsules to deliver")

        result = CapsuleRunResult()
        for capsule in capsules:
            try:
                claimed = await self.db.execute(
                    """
                    UPDATE time_capsule_messages
                    SET is_delivered = TRUE, delivered_at = $2
                    WHERE id = $1 AND is_delivered = FALSE
                    """,
                    capsule["id"],
                    now,
                )
                if claimed == "UPDATE 0":
                    continue
            except Exception as e:
                logger.error(f"Failed to deliver capsule {capsule['id']}: {e}", exc_info=True)
                result.results.append(CapsuleDelivery(id=capsule["id"], status="failed", error=str(e)))
                continue

            try:
                await self.notify_recipient(capsule)
            except Exception as e:
                logger.error(f"Notifying recipient of capsule {capsule['id']} failed: {e}", exc_info=True)
            result.results.append(CapsuleDelivery(id=capsule["id"], status="delivered"))

        result.processed = len(result.results)
        return result
