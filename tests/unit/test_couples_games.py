import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException

from services.couples.games import GameSessionService, format_sse, game_channel
from services.couples.links import PartnerLinkService, other_member, require_link_member


def test_sse_framing():
    assert format_sse('{"a": 1}', event="game_update") == 'event: game_update\ndata: {"a": 1}\n\n'
    assert format_sse("one\ntwo") == "data: one\ndata: two\n\n"
    assert format_sse("") == "data: \n\n"


def test_channel_name():
    assert game_channel("link-1", "truth_or_dare") == "game:link-1:truth_or_dare"


def test_other_member():
    link = {"user_id": uuid.UUID(int=1), "partner_id": uuid.UUID(int=2)}
    assert other_member(link, str(uuid.UUID(int=1))) == str(uuid.UUID(int=2))
    assert other_member(link, str(uuid.UUID(int=2))) == str(uuid.UUID(int=1))
    assert other_member({"user_id": uuid.UUID(int=1), "partner_id": None}, str(uuid.UUID(int=1))) is None


@pytest.mark.asyncio
async def test_non_members_are_forbidden(db):
    with pytest.raises(HTTPException) as exc_info:
        await require_link_member(db, "link-1", "stranger")

    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_cannot_accept_own_invite(db):
    owner = str(uuid.uuid4())
    db.fetch_one.return_value = {"id": uuid.uuid4(), "user_id": uuid.UUID(owner)}

    with pytest.raises(HTTPException) as exc_info:
        await PartnerLinkService(db).accept_invite(owner, "abcd2345")

    assert exc_info.value.status_code == 400
    assert db.fetch_one.call_args.args[1] == "ABCD2345"


@pytest.mark.asyncio
async def test_invite_already_taken(db):
    db.fetch_one.side_effect = [{"id": uuid.uuid4(), "user_id": uuid.uuid4()}, None]

    with pytest.raises(HTTPException) as exc_info:
        await PartnerLinkService(db).accept_invite(str(uuid.uuid4()), "ABCD2345")

    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_stats_cover_full_history(db, redis_client):
    last = datetime(2026, 2, 14, tzinfo=timezone.utc)
    db.fetch_one.return_value = {
        "total_games_played": 12,
        "total_matches": 40,
        "average_score": Decimal("73"),
        "last_played": last,
    }

    stats = await GameSessionService(db, redis_client).get_stats("link-1", "love_languages")

    assert stats.total_games_played == 12
    assert stats.average_score == 73
    assert stats.last_played == last
    assert "LIMIT" not in db.fetch_one.call_args.args[0]


@pytest.mark.asyncio
async def test_event_stream_relays_messages_and_cleans_up(db, redis_client):
    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()
    pubsub.get_message = AsyncMock(return_value={"type": "message", "data": '{"event": "state_updated"}'})
    redis_client.pubsub.return_value = pubsub
    is_disconnected = AsyncMock(side_effect=[False, True])

    service = GameSessionService(db, redis_client)
    chunks = [
        chunk
        async for chunk in service.event_stream("link-1", "would_you_rather", is_disconnected)
    ]

    assert chunks == [
        ": connected\n\n",
        'event: game_update\ndata: {"event": "state_updated"}\n\n',
    ]
    pubsub.subscribe.assert_awaited_once_with("game:link-1:would_you_rather")
    pubsub.unsubscribe.assert_awaited_once_with("game:link-1:would_you_rather")
    pubsub.aclose.assert_awaited_once()


def stored_session(game_state: str = "{}", card: int = 0) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "id": uuid.uuid4(),
        "partner_link_id": uuid.UUID(int=7),
        "game_type": "truth_or_dare",
        "current_card_index": card,
        "game_state": game_state,
        "started_by": uuid.uuid4(),
        "created_at": now,
        "updated_at": now,
    }


@pytest.mark.asyncio
async def test_state_patch_is_merged_in_sql_and_published(db, redis_client):
    db.fetch_one.return_value = stored_session('{"round": 2, "turn": "partner"}')
    patch = {"turn": "partner", "answers": {"q1": "yes"}}

    session = await GameSessionService(db, redis_client).update_state(
        "link-1", "truth_or_dare", patch
    )

    sql, link_id, game_type, patch_param = db.fetch_one.call_args.args
    assert "game_state || $3::jsonb" in sql
    assert (link_id, game_type) == ("link-1", "truth_or_dare")
    assert json.loads(patch_param) == patch
    assert session.game_state == {"round": 2, "turn": "partner"}

    channel, message = redis_client.publish.call_args.args
    assert channel == "game:link-1:truth_or_dare"
    assert json.loads(message)["event"] == "state"


@pytest.mark.asyncio
async def test_state_patch_without_session(db, redis_client):
    db.fetch_one.return_value = None

    session = await GameSessionService(db, redis_client).update_state(
        "link-1", "truth_or_dare", {"round": 3}
    )

    assert session is None
    redis_client.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_moving_card_clears_state(db, redis_client):
    db.fetch_one.return_value = stored_session(card=4)

    session = await GameSessionService(db, redis_client).set_card("link-1", "would_you_rather", 4)

    sql, _, _, index = db.fetch_one.call_args.args
    assert "game_state = '{}'::jsonb" in sql
    assert index == 4
    assert session.current_card_index == 4
    assert session.game_state == {}
    channel, message = redis_client.publish.call_args.args
    assert channel == "game:link-1:would_you_rather"
    assert json.loads(message)["event"] == "card"
