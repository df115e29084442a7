# services/messaging/campaigns.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, Optional

from services.messaging.models import PushRunResult
from shared.database import Database
from shared.push_service import PushError, send_web_push

logger = logging.getLogger(__name__)

SendPushFn = Callable[..., Awaitable[int]]

# Minimum gap between two sends of one campaign to one subscription
DEDUPE_WINDOWS = {
    "inactive_visitor": timedelta(hours=24),
    "welcome_back": timedelta(days=7),
    "engagement": timedelta(hours=24),
}

RETURNING_EVENT_SAMPLE = 10
ENGAGEMENT_MIN_CLICKS = 3

NOT_RECENTLY_SENT = """
    NOT EXISTS (
        SELECT 1 FROM automated_push_logs l
        WHERE l.campaign_id = $1 AND l.subscription_id = ps.id AND l.created_at >= $2
    )
"""


def visited_on_multiple_days(timestamps: Iterable[datetime]) -> bool:
    """True when the timestamps cover at least two calendar days"""
    days = {ts.date() for ts in timestamps}
    return len(days) >= 2


async def deactivate_subscription(db: Database, subscription_id) -> None:
    await db.execute(
        """
        UPDATE push_subscriptions
        SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
        WHERE id = $1
        """,
        subscription_id,
    )


async def push_to_subscriptions(
    db: Database, subscriptions: list[dict], payload: dict, send: SendPushFn = send_web_push
) -> int:
    """Send one payload to each subscription. Returns how many the push services accepted."""
    sent = 0
    for subscription in subscriptions:
        try:
            await send(
                subscription["endpoint"], subscription["p256dh"], subscription["auth"], payload
            )
            sent += 1
        except PushError as e:
            logger.warning(f"Push to subscription {subscription['id']} failed: {e}")
            if e.subscription_gone:
                await deactivate_subscription(db, subscription["id"])
    return sent


class AutomatedPushProcessor:
    def __init__(self, db: Database, send: SendPushFn = send_web_push):
        self.db = db
        self.send = send

    async def eligible_subscriptions(self, campaign: dict, now: Optional[datetime] = None) -> list[dict]:
        now = now or datetime.now(timezone.utc)
        trigger = campaign["trigger_type"]
        window = DEDUPE_WINDOWS.get(trigger)
        if window is None:
            logger.warning(f"Campaign {campaign['name']} has unknown trigger {trigger}")
            return []

        dedupe_since = now - window

        if trigger == "inactive_visitor":
            cutoff = now - timedelta(minutes=campaign["delay_minutes"])
            return await self.db.fetch_all(
                f"""
                SELECT ps.* FROM push_subscriptions ps
                WHERE ps.is_active = TRUE AND ps.subscribed_at < $3
                  AND {NOT_RECENTLY_SENT}
                """,
                campaign["id"],
                dedupe_since,
                cutoff,
            )

        if trigger == "engagement":
            return await self.db.fetch_all(
                f"""
                SELECT ps.* FROM push_subscriptions ps
                WHERE ps.is_active = TRUE AND ps.session_id IS NOT NULL
                  AND (
                      SELECT COUNT(*) FROM tracking_events te
                      WHERE te.session_id = ps.session_id AND te.event_type = 'button_click'
                  ) >= $3
                  AND {NOT_RECENTLY_SENT}
                """,
                campaign["id"],
                dedupe_since,
                ENGAGEMENT_MIN_CLICKS,
            )

        # welcome_back
        candidates = await self.db.fetch_all(
            f"""
            SELECT ps.* FROM push_subscriptions ps
            WHERE ps.is_active = TRUE AND ps.session_id IS NOT NULL
              AND {NOT_RECENTLY_SENT}
            """,
            campaign["id"],
            dedupe_since,
        )

        eligible = []
        for subscription in candidates:
            events = await self.db.fetch_all(
                """
                SELECT created_at FROM tracking_events
                WHERE session_id = $1
                ORDER BY created_at DESC
                LIMIT $2
                """,
                subscription["session_id"],
                RETURNING_EVENT_SAMPLE,
            )
            if visited_on_multiple_days(event["created_at"] for event in events):
                eligible.append(subscription)
        return eligible

    async def _log(self, campaign_id, subscription: dict, status: str, error: Optional[str] = None):
        await self.db.execute(
            """
            INSERT INTO automated_push_logs
                (campaign_id, subscription_id, session_id, status, error_message)
            VALUES ($1, $2, $3, $4, $5)
            """,
            campaign_id,
            subscription["id"],
            subscription.get("session_id"),
            status,
            error,
        )

    async def deliver(self, campaign: dict, subscription: dict) -> bool:
        payload = {
            "title": campaign["title"],
            "body": campaign.get("body") or "",
            "url": "/",
            "tag": f"campaign-{campaign['id']}",
        }
        try:
            await self.send(
                subscription["endpoint"], subscription["p256dh"], subscription["auth"], payload
            )
        except PushError as e:
            logger.warning(f"Push for subscription {subscription['id']} failed: {e}")
            if e.subscription_gone:
                await deactivate_subscription(self.db, subscription["id"])
            await self._log(campaign["id"], subscription, "failed", str(e))
            return False

        await self._log(campaign["id"], subscription, "sent")
        return True

    async def _run_campaign(self, campaign: dict, result: PushRunResult) -> None:
        subscriptions = await self.eligible_subscriptions(campaign)
        logger.info(
            f"Campaign {campaign['name']} ({campaign['trigger_type']}): "
            f"{len(subscriptions)} eligible subscriptions"
        )
        for subscription in subscriptions:
            if await self.deliver(campaign, subscription):
                result.sent += 1
            else:
                result.failed += 1

    async def run(self) -> PushRunResult:
        campaigns = await self.db.fetch_all(
            "SELECT * FROM automated_push_campaigns WHERE is_active = TRUE ORDER BY created_at"
        )
        logger.info(f"Found {len(campaigns)} active push campaigns")

        result = PushRunResult(campaigns_processed=len(campaigns))

        for campaign in campaigns:
            try:
                await self._run_campaign(campaign, result)
            except Exception as e:
                logger.error(f"Campaign {campaign['id']} aborted: {e}", exc_info=True)

        logger.info(f"Automated push complete. Sent: {result.sent}, Failed: {result.failed}")
        return result
