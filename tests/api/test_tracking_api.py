import uuid
from unittest.mock import AsyncMock

import pytest

from services.tracking import routes
from services.tracking.main import app
from shared.geo_service import GeoLocation

CALIFORNIA = GeoLocation(city="San Francisco", region="California", country="United States", country_code="US")
OREGON = GeoLocation(city="Portland", region="Oregon", country="United States", country_code="US")


@pytest.fixture
def lookup(monkeypatch):
    mock = AsyncMock(return_value=OREGON)
    monkeypatch.setattr(routes, "lookup_ip", mock)
    return mock


@pytest.mark.api
@pytest.mark.asyncio
async def test_visitor_requires_session_id(client_for, lookup):
    async with client_for(app, user=None) as client:
        response = await client.post("/track/visitor", json={"page_path": "/"})

    assert response.status_code == 400
    assert response.json()["error"] == "session_id is required"
    lookup.assert_not_awaited()


@pytest.mark.api
@pytest.mark.asyncio
async def test_blocked_region_is_not_recorded(client_for, db, lookup):
    lookup.return_value = CALIFORNIA

    async with client_for(app, user=None) as client:
        response = await client.post(
            "/track/visitor",
            json={"session_id": "sess-1"},
            headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["blocked"] is True
    assert body["reason"] == "california_restriction"
    lookup.assert_awaited_once_with("203.0.113.9")
    db.fetch_one.assert_not_awaited()


@pytest.mark.api
@pytest.mark.asyncio
async def test_anonymous_visit_has_no_user(client_for, db, lookup):
    visitor_id = uuid.uuid4()
    db.fetch_one.return_value = {"id": visitor_id}

    async with client_for(app, user=None) as client:
        response = await client.post(
            "/track/visitor",
            json={"session_id": "sess-2", "page_path": "/pricing"},
            headers={"user-agent": "pytest-agent"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["visitor_id"] == str(visitor_id)
    assert body["location"]["region"] == "Oregon"

    args = db.fetch_one.call_args.args
    assert args[1] == "sess-2"
    assert args[2] is None
    assert args[11] == "pytest-agent"


@pytest.mark.api
@pytest.mark.asyncio
async def test_authenticated_event_uses_token_user(client_for, db, lookup, test_user):
    db.fetch_one.return_value = {"id": uuid.uuid4()}

    async with client_for(app) as client:
        response = await client.post(
            "/track/event",
            json={
                "session_id": "sess-3",
                "event_type": "click",
                "event_name": "cta_start_chat",
                "event_data": {"variant": "b"},
            },
        )

    assert response.status_code == 200
    args = db.fetch_one.call_args.args
    assert args[2] == test_user.user_id
    assert args[-1] == '{"variant": "b"}'


@pytest.mark.api
@pytest.mark.asyncio
async def test_event_requires_name(client_for, lookup):
    async with client_for(app, user=None) as client:
        response = await client.post(
            "/track/event", json={"session_id": "sess-4", "event_type": "click"}
        )

    assert response.status_code == 400


@pytest.mark.api
@pytest.mark.asyncio
async def test_ip_rate_limit(client_for, redis_client, lookup):
    redis_client.pipeline.return_value.execute.return_value = [0, 120]

    async with client_for(app, user=None) as client:
        response = await client.post("/track/visitor", json={"session_id": "sess-5"})

    assert response.status_code == 429
    assert response.json()["error"] == "Too many tracking requests"
