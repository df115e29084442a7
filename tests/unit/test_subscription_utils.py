import pytest

from shared.subscription_utils import (
    get_daily_message_limit,
    messages_per_day,
    should_warn_low_messages,
)


def test_negative_or_missing_limit_means_unlimited():
    assert messages_per_day({"messages_per_day": -1}) is None
    assert messages_per_day({}) is None
    assert messages_per_day({}, default=5) == 5
    assert messages_per_day({"messages_per_day": "10"}) == 10


@pytest.mark.parametrize(
    "used,expected",
    [(0, False), (2, False), (3, True), (4, True), (5, False)],
)
def test_low_message_warning_window(used, expected):
    # 5 per day warns while 1 or 2 messages remain
    assert should_warn_low_messages(5, used) is expected


@pytest.mark.asyncio
async def test_paid_subscription_uses_tier_limits(db):
    db.fetch_one.return_value = {
        "tier_slug": "pro",
        "tier_limits": '{"messages_per_day": -1}',
    }

    assert await get_daily_message_limit(db, "user-1") is None


@pytest.mark.asyncio
async def test_free_users_fall_back_to_free_tier(db):
    db.fetch_one.side_effect = [
        None,
        {"slug": "free", "limits": '{"messages_per_day": 7}', "features": "[]"},
    ]

    assert await get_daily_message_limit(db, "user-1") == 7
