import json
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from services.couples import routes
from services.couples.main import app

LINK_ID = str(uuid.uuid4())


def accepted_link(user_id: str) -> dict:
    return {
        "id": uuid.UUID(LINK_ID),
        "user_id": uuid.UUID(user_id),
        "partner_id": uuid.uuid4(),
        "status": "accepted",
    }


def session_row(user_id: str, created: bool) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "id": uuid.uuid4(),
        "partner_link_id": uuid.UUID(LINK_ID),
        "game_type": "truth_or_dare",
        "current_card_index": 0,
        "game_state": '{"round": 1}',
        "started_by": uuid.UUID(user_id),
        "created_at": now,
        "updated_at": now,
        "created": created,
    }


@pytest.mark.api
@pytest.mark.asyncio
async def test_game_type_must_be_a_slug(client_for):
    async with client_for(app) as client:
        response = await client.post(f"/games/{LINK_ID}/Truth-Or-Dare/start", json={})

    assert response.status_code == 422


@pytest.mark.api
@pytest.mark.asyncio
async def test_non_member_cannot_start_game(client_for, db):
    db.fetch_one.return_value = None

    async with client_for(app) as client:
        response = await client.post(f"/games/{LINK_ID}/truth_or_dare/start", json={})

    assert response.status_code == 403
    assert response.json()["error"] == "Not a member of this partner link"


@pytest.mark.api
@pytest.mark.asyncio
async def test_new_game_notifies_partner(client_for, db, redis_client, test_user, monkeypatch):
    notify = AsyncMock(return_value={"sent": True, "reason": None})
    monkeypatch.setattr(routes, "notify_partner", notify)
    db.fetch_one.side_effect = [
        accepted_link(test_user.user_id),
        session_row(test_user.user_id, created=True),
    ]

    async with client_for(app) as client:
        response = await client.post(
            f"/games/{LINK_ID}/truth_or_dare/start", json={"initial_state": {"round": 1}}
        )

    assert response.status_code == 200
    assert response.json()["game_state"] == {"round": 1}
    notify.assert_awaited_once()
    assert notify.call_args.kwargs["game_type"] == "truth_or_dare"
    channel = redis_client.publish.call_args.args[0]
    assert channel == f"game:{LINK_ID}:truth_or_dare"


@pytest.mark.api
@pytest.mark.asyncio
async def test_restarted_game_does_not_notify(client_for, db, test_user, monkeypatch):
    notify = AsyncMock()
    monkeypatch.setattr(routes, "notify_partner", notify)
    db.fetch_one.side_effect = [
        accepted_link(test_user.user_id),
        session_row(test_user.user_id, created=False),
    ]

    async with client_for(app) as client:
        response = await client.post(f"/games/{LINK_ID}/truth_or_dare/start", json={})

    assert response.status_code == 200
    notify.assert_not_awaited()


@pytest.mark.api
@pytest.mark.asyncio
async def test_missing_milestone(client_for, db, test_user):
    db.fetch_one.return_value = accepted_link(test_user.user_id)
    db.execute.return_value = "DELETE 0"

    async with client_for(app) as client:
        response = await client.delete(f"/links/{LINK_ID}/milestones/{uuid.uuid4()}")

    assert response.status_code == 404


@pytest.mark.api
@pytest.mark.asyncio
async def test_mood_level_range(client_for):
    async with client_for(app) as client:
        response = await client.post("/moods", json={"mood_level": 11, "mood_label": "elated"})

    assert response.status_code == 422


@pytest.mark.api
@pytest.mark.asyncio
async def test_state_patch_reaches_partner(client_for, db, redis_client, test_user):
    row = session_row(test_user.user_id, created=False)
    row.pop("created")
    row["game_state"] = '{"round": 1, "turn": "partner"}'
    db.fetch_one.side_effect = [accepted_link(test_user.user_id), row]

    async with client_for(app) as client:
        response = await client.patch(
            f"/games/{LINK_ID}/truth_or_dare/state", json={"state": {"turn": "partner"}}
        )

    assert response.status_code == 200
    assert response.json()["game_state"] == {"round": 1, "turn": "partner"}
    assert json.loads(db.fetch_one.call_args.args[3]) == {"turn": "partner"}
    channel = redis_client.publish.call_args.args[0]
    assert channel == f"game:{LINK_ID}:truth_or_dare"


@pytest.mark.api
@pytest.mark.asyncio
async def test_state_patch_without_session(client_for, db, redis_client, test_user):
    db.fetch_one.side_effect = [accepted_link(test_user.user_id), None]

    async with client_for(app) as client:
        response = await client.patch(
            f"/games/{LINK_ID}/truth_or_dare/state", json={"state": {"turn": "partner"}}
        )

    assert response.status_code == 404
    assert response.json()["error"] == "No active game session"
    redis_client.publish.assert_not_awaited()


@pytest.mark.api
@pytest.mark.asyncio
async def test_card_update(client_for, db, redis_client, test_user):
    row = session_row(test_user.user_id, created=False)
    row.pop("created")
    row["current_card_index"] = 3
    row["game_state"] = "{}"
    db.fetch_one.side_effect = [accepted_link(test_user.user_id), row]

    async with client_for(app) as client:
        response = await client.patch(f"/games/{LINK_ID}/truth_or_dare/card", json={"index": 3})

    assert response.status_code == 200
    assert response.json()["current_card_index"] == 3
    assert response.json()["game_state"] == {}
    assert db.fetch_one.call_args.args[3] == 3
    redis_client.publish.assert_awaited_once()


@pytest.mark.api
@pytest.mark.asyncio
async def test_card_update_without_session(client_for, db, test_user):
    db.fetch_one.side_effect = [accepted_link(test_user.user_id), None]

    async with client_for(app) as client:
        response = await client.patch(f"/games/{LINK_ID}/truth_or_dare/card", json={"index": 1})

    assert response.status_code == 404


@pytest.mark.api
@pytest.mark.asyncio
async def test_card_index_cannot_be_negative(client_for, db):
    async with client_for(app) as client:
        response = await client.patch(f"/games/{LINK_ID}/truth_or_dare/card", json={"index": -1})

    assert response.status_code == 422
    db.fetch_one.assert_not_awaited()


@pytest.mark.api
@pytest.mark.asyncio
async def test_time_capsule_goes_to_partner(client_for, db, test_user):
    link = accepted_link(test_user.user_id)
    deliver_at = datetime.now(timezone.utc) + timedelta(days=30)
    now = datetime.now(timezone.utc)
    db.fetch_one.side_effect = [
        link,
        {
            "id": uuid.uuid4(),
            "partner_link_id": uuid.UUID(LINK_ID),
            "sender_id": uuid.UUID(test_user.user_id),
            "recipient_id": link["partner_id"],
            "title": "Open on our anniversary",
            "message": "I still remember the rain.",
            "deliver_at": deliver_at,
            "is_delivered": False,
            "delivered_at": None,
            "created_at": now,
        },
    ]

    async with client_for(app) as client:
        response = await client.post(
            f"/links/{LINK_ID}/time-capsules",
            json={
                "title": "Open on our anniversary",
                "message": "I still remember the rain.",
                "deliver_at": deliver_at.isoformat(),
            },
        )

    assert response.status_code == 200
    assert response.json()["recipient_id"] == str(link["partner_id"])
    args = db.fetch_one.call_args.args
    assert args[2] == test_user.user_id
    assert args[3] == str(link["partner_id"])


@pytest.mark.api
@pytest.mark.asyncio
async def test_time_capsule_must_open_in_the_future(client_for, db):
    past = datetime.now(timezone.utc) - timedelta(minutes=5)

    async with client_for(app) as client:
        response = await client.post(
            f"/links/{LINK_ID}/time-capsules",
            json={"message": "Too late", "deliver_at": past.isoformat()},
        )

    assert response.status_code == 422
    db.fetch_one.assert_not_awaited()


@pytest.mark.api
@pytest.mark.asyncio
async def test_unopened_capsules_stay_hidden_from_recipient(client_for, db, test_user):
    db.fetch_one.return_value = accepted_link(test_user.user_id)

    async with client_for(app) as client:
        response = await client.get(f"/links/{LINK_ID}/time-capsules")

    assert response.status_code == 200
    sql, _, user_id = db.fetch_all.call_args.args
    assert "recipient_id = $2 AND is_delivered = TRUE" in sql
    assert user_id == test_user.user_id
