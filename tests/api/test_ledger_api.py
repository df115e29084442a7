import pytest

from services.ledger.main import app


@pytest.mark.api
@pytest.mark.asyncio
async def test_health(client_for):
    async with client_for(app) as client:
        response = await client.get("/health")

    assert response.json() == {"status": "healthy", "service": "ledger", "version": "1.0.0"}


@pytest.mark.api
@pytest.mark.asyncio
async def test_coin_balance(client_for, db, test_user):
    db.fetch_one.return_value = {
        "user_id": test_user.user_id,
        "balance": 42,
        "lifetime_earned": 120,
    }

    async with client_for(app) as client:
        response = await client.get("/coins/balance")

    assert response.status_code == 200
    assert response.json()["balance"] == 42


@pytest.mark.api
@pytest.mark.asyncio
async def test_balance_requires_authentication(client_for):
    async with client_for(app, user=None) as client:
        response = await client.get("/coins/balance")

    assert response.status_code in (401, 403)


@pytest.mark.api
@pytest.mark.asyncio
async def test_spend_with_insufficient_coins(client_for, db):
    db.conn.fetchrow.return_value = {"balance": 3}

    async with client_for(app) as client:
        response = await client.post(
            "/coins/spend", json={"amount": 5, "description": "Unlock premium journal"}
        )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "insufficient" in body["error"].lower()


@pytest.mark.api
@pytest.mark.asyncio
async def test_spend_rejects_non_positive_amounts(client_for):
    async with client_for(app) as client:
        response = await client.post("/coins/spend", json={"amount": 0, "description": "x"})

    assert response.status_code == 422


@pytest.mark.api
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"bundle_id": "huge"},
        {"bundle_id": "small", "return_url": "https://evil.example.com/"},
    ],
)
async def test_coin_checkout_validation(client_for, payload):
    async with client_for(app) as client:
        response = await client.post("/checkout/coins", json=payload)

    assert response.status_code == 422


@pytest.mark.api
@pytest.mark.asyncio
async def test_referral_conversion_is_admin_only(client_for, test_user):
    async with client_for(app) as client:
        response = await client.post(
            "/referrals/convert", json={"user_id": test_user.user_id, "plan_type": "pro"}
        )

    assert response.status_code == 403


@pytest.mark.api
@pytest.mark.asyncio
async def test_referral_summary_defaults(client_for, db):
    db.fetch_one.side_effect = [{"referral_code": "LUNA2345"}, None]

    async with client_for(app) as client:
        response = await client.get("/referrals/summary")

    assert response.status_code == 200
    body = response.json()
    assert body["referral_code"] == "LUNA2345"
    assert body["balance"] == 0
    assert body["recent_transactions"] == []
