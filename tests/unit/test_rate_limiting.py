import pytest
from fastapi import HTTPException

from shared.rate_limiting import RateLimiter


@pytest.mark.asyncio
async def test_hit_is_recorded_under_the_limit(redis_client):
    redis_client.pipeline.return_value.execute.return_value = [0, 2]

    assert await RateLimiter(redis_client).allow("chat:user-1", 3, 60)

    redis_client.zadd.assert_awaited_once()
    assert redis_client.zadd.call_args.args[0] == "rate_limit:chat:user-1"
    redis_client.expire.assert_awaited_once_with("rate_limit:chat:user-1", 60)


@pytest.mark.asyncio
async def test_full_window_rejects_without_recording(redis_client):
    redis_client.pipeline.return_value.execute.return_value = [1, 3]

    assert not await RateLimiter(redis_client).allow("chat:user-1", 3, 60)
    redis_client.zadd.assert_not_awaited()


@pytest.mark.asyncio
async def test_enforce_raises_429(redis_client):
    redis_client.pipeline.return_value.execute.return_value = [0, 10]

    with pytest.raises(HTTPException) as exc_info:
        await RateLimiter(redis_client).enforce("track:1.2.3.4", 10, 60, "Too many requests")

    assert exc_info.value.status_code == 429
    assert exc_info.value.detail == "Too many requests"
