# shared/partner_notifications.py
import logging
from typing import Optional

from shared.database import Database
from shared.json_utils import parse_jsonb_field
from shared.sms_service import SmsError, log_delivery, send_sms

logger = logging.getLogger(__name__)

GAME_NAMES = {
    "would_you_rather": "Would You Rather",
    "how_well_do_you_know_me": "How Well Do You Know Me",
    "truth_or_dare": "Truth or Dare",
    "love_languages": "Love Languages",
    "never_have_i_ever": "Never Have I Ever",
}


def game_display_name(game_type: str) -> str:
    return GAME_NAMES.get(game_type, game_type.replace("_", " ").title())


def build_partner_message(
    event: str, sender_name: str, game_type: Optional[str] = None, message: Optional[str] = None
) -> str:
    if event == "game_started":
        game = game_display_name(game_type or "game")
        return f"💜 {sender_name} started a game of {game} on Luna! Open the app to play together."
    if event == "love_message":
        return f"{message}\n\n- {sender_name} 💕"
    raise ValueError(f"Unknown partner event: {event}")


async def find_partner_id(db: Database, user_id: str) -> Optional[str]:
    link = await db.fetch_one(
        """
        SELECT user_id, partner_id FROM partner_links
        WHERE status = 'accepted' AND (user_id = $1 OR partner_id = $1)
        ORDER BY accepted_at DESC NULLS LAST
        LIMIT 1
        """,
        user_id,
    )
    if not link:
        return None
    partner_id = link["partner_id"] if str(link["user_id"]) == str(user_id) else link["user_id"]
    return str(partner_id) if partner_id else None


async def notify_partner(
    db: Database,
    user_id: str,
    event: str,
    game_type: Optional[str] = None,
    message: Optional[str] = None,
) -> dict:
    """Text the caller's linked partner about an event.

    Returns ``{"sent": bool, "reason": str | None}``; skips quietly when the
    partner can't or doesn't want to receive texts.
    """
    partner_id = await find_partner_id(db, user_id)
    if not partner_id:
        return {"sent": False, "reason": "no_partner"}

    partner = await db.fetch_one(
        """
        SELECT phone_number, phone_verified, sms_notifications_enabled,
               sms_notification_preferences
        FROM profiles WHERE user_id = $1
        """,
        partner_id,
    )
    if not partner or not partner["phone_verified"] or not partner["phone_number"]:
        return {"sent": False, "reason": "partner_phone_not_verified"}
    if not partner["sms_notifications_enabled"]:
        return {"sent": False, "reason": "partner_sms_disabled"}

    preferences = parse_jsonb_field(
        partner.get("sms_notification_preferences"), {}, "sms_notification_preferences"
    )
    if preferences.get(event) is False:
        return {"sent": False, "reason": "partner_preference_disabled"}

    sender = await db.fetch_one("SELECT display_name FROM profiles WHERE user_id = $1", user_id)
    sender_name = (sender or {}).get("display_name") or "Your partner"

    body = build_partner_message(event, sender_name, game_type=game_type, message=message)

    try:
        sid = await send_sms(partner["phone_number"], body)
    except SmsError as e:
        logger.error(f"Partner notification ({event}) for {partner_id} failed: {e}")
        await log_delivery(
            db,
            partner["phone_number"],
            body,
            "failed",
            template_name=f"partner_{event}",
            user_id=partner_id,
            error_message=str(e),
            sent_by=user_id,
        )
        return {"sent": False, "reason": "sms_failed"}

    await log_delivery(
        db,
        partner["phone_number"],
        body,
        "delivered",
        template_name=f"partner_{event}",
        user_id=partner_id,
        twilio_sid=sid,
        sent_by=user_id,
    )
    return {"sent": True, "reason": None}
