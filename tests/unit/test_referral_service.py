import uuid
from datetime import datetime, timezone

import pytest
from fastapi import HTTPException

from services.ledger.referral_service import (
    ReferralService,
    add_months,
    conversion_points,
    signup_bonus,
)

USER_ID = str(uuid.uuid4())


def test_add_months_clamps_to_month_end():
    assert add_months(datetime(2026, 1, 31, tzinfo=timezone.utc), 1).day == 28
    assert add_months(datetime(2028, 1, 31), 1) == datetime(2028, 2, 29)
    assert add_months(datetime(2026, 12, 15), 1) == datetime(2027, 1, 15)
    assert add_months(datetime(2026, 11, 30), 3) == datetime(2027, 2, 28)


def test_first_referral_and_milestones():
    assert signup_bonus(None) == (50, "First referral bonus! 🎉")
    assert signup_bonus(4)[0] == 100
    assert signup_bonus(9)[0] == 250
    assert signup_bonus(2) == (0, None)


def test_conversion_points_by_plan():
    assert conversion_points("couples") == 150
    assert conversion_points("pro") == 100
    assert conversion_points("anything-else") == 100


@pytest.mark.asyncio
async def test_unknown_code_is_rejected(db):
    with pytest.raises(HTTPException) as exc_info:
        await ReferralService(db).record_signup(USER_ID, "nope1234")

    assert exc_info.value.detail == "Invalid referral code"
    assert db.fetch_one.call_args.args[1] == "NOPE1234"


@pytest.mark.asyncio
async def test_self_referral_is_rejected(db):
    db.fetch_one.return_value = {"user_id": uuid.UUID(USER_ID), "display_name": "Me"}

    with pytest.raises(HTTPException) as exc_info:
        await ReferralService(db).record_signup(USER_ID, "ABCD2345")

    assert exc_info.value.detail == "Cannot refer yourself"


@pytest.mark.asyncio
async def test_first_signup_awards_bonus(db):
    referrer_id = uuid.uuid4()
    db.fetch_one.side_effect = [
        {"user_id": referrer_id, "display_name": "Riley", "phone_number": None},
        {"display_name": "Sky"},
    ]
    db.conn.fetchrow.side_effect = [None, {"id": uuid.uuid4()}, None]

    result = await ReferralService(db).record_signup(USER_ID, "ABCD2345")

    assert result["is_first_referral"] is True
    assert result["points_awarded"] == 75
    bonus_call = db.conn.execute.call_args_list[-1]
    assert bonus_call.args[2:4] == (50, "bonus")


@pytest.mark.asyncio
async def test_conversion_without_pending_referral(db):
    db.conn.fetchrow.return_value = None
    assert await ReferralService(db).record_conversion(USER_ID, "pro") is None


@pytest.mark.asyncio
async def test_redeem_requires_matching_cost(db):
    with pytest.raises(HTTPException) as exc_info:
        await ReferralService(db).redeem(USER_ID, "bonus_coins", 1)

    assert exc_info.value.detail == "Invalid reward configuration"


@pytest.mark.asyncio
async def test_redeem_requires_points(db):
    db.conn.fetchrow.return_value = {"balance": 120}

    with pytest.raises(HTTPException) as exc_info:
        await ReferralService(db).redeem(USER_ID, "free_month_pro", 300)

    assert exc_info.value.detail == "Insufficient points"


@pytest.mark.asyncio
async def test_redeem_coins(db):
    db.conn.fetchrow.side_effect = [
        {"balance": 150},
        {"balance": 500},
        {
            "id": uuid.uuid4(),
            "user_id": uuid.UUID(USER_ID),
            "amount": 500,
            "transaction_type": "referral_bonus",
            "description": "Referral reward: 500 Luna Coins",
            "reference_id": None,
            "created_at": datetime.now(timezone.utc),
        },
    ]

    result = await ReferralService(db).redeem(USER_ID, "bonus_coins", 100)

    assert result.coins_awarded == 500
    assert result.new_points_balance == 50
    assert result.months_granted is None
    assert "INSERT INTO referral_redemptions" in db.executed_sql()


@pytest.mark.asyncio
async def test_redeem_free_month_creates_referral_subscription(db):
    tier_id = uuid.uuid4()
    db.conn.fetchrow.side_effect = [{"balance": 300}, {"id": tier_id}, None]

    result = await ReferralService(db).redeem(USER_ID, "free_month_pro", 300)

    assert result.months_granted == 1
    assert result.new_points_balance == 0
    assert result.subscription_extended_to > datetime.now(timezone.utc)
    insert = next(
        call for call in db.conn.execute.call_args_list if "'referral'" in call.args[0]
    )
    assert insert.args[2] == tier_id
