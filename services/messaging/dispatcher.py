# services/messaging/dispatcher.py
"""
Scheduled SMS dispatch.

Due rows are claimed with a single conditional update (pending -> processing)
so overlapping runs never pick up the same row, then each recipient is texted
and logged individually before the row settles on sent or failed. Rows still
processing after STALE_CLAIM_MINUTES are failed at the start of the next run.
"""

import logging
from typing import Awaitable, Callable, Optional

from services.messaging.models import DispatchResult
from shared.database import Database
from shared.sms_service import SmsError, log_delivery, send_sms

logger = logging.getLogger(__name__)

SendFn = Callable[[str, str], Awaitable[Optional[str]]]

# A claim older than this belongs to a run that died mid-dispatch
STALE_CLAIM_MINUTES = 30

RECIPIENT_BASE_QUERY = """
    SELECT user_id, phone_number FROM profiles
    WHERE phone_verified = TRUE
      AND sms_notifications_enabled = TRUE
      AND phone_number IS NOT NULL
"""

RECIPIENT_FILTERS = {
    "all": "",
    "couples": """
      AND user_id IN (
          SELECT us.user_id FROM user_subscriptions us
          JOIN subscription_tiers st ON st.id = us.tier_id
          WHERE us.status = 'active' AND st.slug = 'couples'
      )
    """,
    "personal": """
      AND user_id NOT IN (
          SELECT user_id FROM user_subscriptions WHERE status = 'active'
      )
    """,
}


class ScheduledSmsDispatcher:
    def __init__(self, db: Database, send: SendFn = send_sms):
        self.db = db
        self.send = send

    async def claim_due_messages(self) -> list[dict]:
        return await self.db.fetch_all(
            """
            UPDATE scheduled_sms SET status = 'processing', claimed_at = CURRENT_TIMESTAMP
            WHERE id IN (
                SELECT id FROM scheduled_sms
                WHERE status = 'pending' AND scheduled_at <= CURRENT_TIMESTAMP
                ORDER BY scheduled_at
                FOR UPDATE SKIP LOCKED
            )
            RETURNING *
            """
        )

    async def expire_stale_claims(self) -> int:
        """Fail rows a crashed run left in processing. They are never resent."""
        result = await self.db.execute(
            """
            UPDATE scheduled_sms
            SET status = 'failed', error_message = $2
            WHERE status = 'processing'
              AND (claimed_at IS NULL OR claimed_at < CURRENT_TIMESTAMP - make_interval(mins => $1))
            """,
            STALE_CLAIM_MINUTES,
            "Dispatch interrupted before completion",
        )
        expired = int(result.split()[-1])
        if expired:
            logger.warning(f"Marked {expired} stale scheduled SMS claims as failed")
        return expired

    async def resolve_recipients(self, scheduled: dict) -> list[dict]:
        recipient_type = scheduled.get("recipient_type") or "single"

        if recipient_type == "single":
            if not scheduled.get("phone_number"):
                raise ValueError("Scheduled SMS has no phone number")
            return [{"user_id": scheduled.get("user_id"), "phone_number": scheduled["phone_number"]}]

        if recipient_type not in RECIPIENT_FILTERS:
            raise ValueError(f"Unknown recipient type: {recipient_type}")

        return await self.db.fetch_all(RECIPIENT_BASE_QUERY + RECIPIENT_FILTERS[recipient_type])

    async def _finish(self, scheduled_id, status: str, error_message: Optional[str]) -> None:
        await self.db.execute(
            """
            UPDATE scheduled_sms
            SET status = $2, sent_at = CURRENT_TIMESTAMP, error_message = $3
            WHERE id = $1 AND status = 'processing'
            """,
            scheduled_id,
            status,
            error_message,
        )

    async def dispatch_one(self, scheduled: dict) -> tuple[int, int]:
        """Send one scheduled row to all its recipients. Returns (sent, failed)."""
        sent = 0
        failed = 0
        last_error: Optional[str] = None

        recipients = await self.resolve_recipients(scheduled)
        logger.info(f"Scheduled SMS {scheduled['id']}: sending to {len(recipients)} recipients")

        for recipient in recipients:
            phone = recipient["phone_number"]
            try:
                sid = await self.send(phone, scheduled["message"])
            except SmsError as e:
                last_error = str(e)
                failed += 1
                logger.warning(f"Scheduled SMS {scheduled['id']} to {phone} failed: {e}")
                await log_delivery(
                    self.db,
                    phone,
                    scheduled["message"],
                    "failed",
                    user_id=recipient.get("user_id"),
                    error_message=last_error,
                    sent_by=scheduled.get("created_by"),
                    scheduled_sms_id=scheduled["id"],
                )
                continue

            sent += 1
            await log_delivery(
                self.db,
                phone,
                scheduled["message"],
                "delivered",
                user_id=recipient.get("user_id"),
                twilio_sid=sid,
                sent_by=scheduled.get("created_by"),
                scheduled_sms_id=scheduled["id"],
            )

        if not recipients:
            last_error = "No eligible recipients"

        await self._finish(scheduled["id"], "sent" if sent > 0 else "failed", last_error)
        return sent, failed

    async def run(self) -> DispatchResult:
        await self.expire_stale_claims()
        due = await self.claim_due_messages()
        logger.info(f"Found {len(due)} pending scheduled messages")

        result = DispatchResult(processed=len(due))

        for scheduled in due:
            try:
                sent, failed = await self.dispatch_one(scheduled)
            except Exception as e:
                logger.error(f"Error processing scheduled SMS {scheduled['id']}: {e}", exc_info=True)
                await self._finish(scheduled["id"], "failed", str(e) or "Unknown error")
                continue

            result.sent += sent
            result.failed += failed

        logger.info(f"Scheduled SMS processing complete. Sent: {result.sent}, Failed: {result.failed}")
        return result
