from unittest.mock import AsyncMock

import pytest

from shared import partner_notifications
from shared.partner_notifications import build_partner_message, game_display_name, notify_partner
from shared.sms_service import SmsError

LINK = {"user_id": "user-1", "partner_id": "user-2"}
VERIFIED_PARTNER = {
    "phone_number": "+14155550100",
    "phone_verified": True,
    "sms_notifications_enabled": True,
    "sms_notification_preferences": '{"game_started": true}',
}


def test_game_names():
    assert game_display_name("would_you_rather") == "Would You Rather"
    assert game_display_name("spin_the_wheel") == "Spin The Wheel"


def test_love_message_is_signed_by_sender():
    assert build_partner_message("love_message", "Sam", message="Miss you") == "Miss you\n\n- Sam 💕"


def test_unknown_event_is_rejected():
    with pytest.raises(ValueError):
        build_partner_message("breakup", "Sam")


@pytest.mark.asyncio
async def test_no_partner(db):
    db.fetch_one.return_value = None
    assert await notify_partner(db, "user-1", "game_started", game_type="truth_or_dare") == {
        "sent": False,
        "reason": "no_partner",
    }


@pytest.mark.asyncio
async def test_respects_partner_preferences(db):
    db.fetch_one.side_effect = [
        LINK,
        {**VERIFIED_PARTNER, "sms_notification_preferences": '{"love_message": false}'},
    ]

    result = await notify_partner(db, "user-1", "love_message", message="hi")

    assert result == {"sent": False, "reason": "partner_preference_disabled"}


@pytest.mark.asyncio
async def test_unverified_partner_is_skipped(db):
    db.fetch_one.side_effect = [LINK, {**VERIFIED_PARTNER, "phone_verified": False}]

    result = await notify_partner(db, "user-1", "game_started", game_type="love_languages")

    assert result["reason"] == "partner_phone_not_verified"


@pytest.mark.asyncio
async def test_sends_and_logs_delivery(db, monkeypatch):
    send = AsyncMock(return_value="SM1")
    monkeypatch.setattr(partner_notifications, "send_sms", send)
    db.fetch_one.side_effect = [LINK, VERIFIED_PARTNER, {"display_name": "Alex"}]

    result = await notify_partner(db, "user-1", "game_started", game_type="truth_or_dare")

    assert result == {"sent": True, "reason": None}
    to_number, body = send.call_args.args
    assert to_number == "+14155550100"
    assert "Alex started a game of Truth or Dare" in body
    assert db.execute.call_args.args[5] == "delivered"


@pytest.mark.asyncio
async def test_failed_send_is_logged(db, monkeypatch):
    monkeypatch.setattr(
        partner_notifications, "send_sms", AsyncMock(side_effect=SmsError("carrier rejected"))
    )
    db.fetch_one.side_effect = [
        {"user_id": "user-2", "partner_id": "user-1"},
        VERIFIED_PARTNER,
        None,
    ]

    result = await notify_partner(db, "user-1", "love_message", message="hey")

    assert result == {"sent": False, "reason": "sms_failed"}
    assert "failed" in db.execute.call_args.args
