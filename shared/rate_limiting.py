# shared/rate_limiting.py
import time

import redis.asyncio as redis
from fastapi import HTTPException


class RateLimiter:
    """Sliding-window limits kept in Redis sorted sets"""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        """Record a hit for ``key`` unless ``limit`` hits already fall inside the window"""
        key = f"rate_limit:{key}"
        now = time.time()

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(key, 0, now - window_seconds)
        pipe.zcard(key)
        results = await pipe.execute()

        if results[1] >= limit:
            return False

        await self.redis.zadd(key, {f"{now:.6f}": now})
        await self.redis.expire(key, window_seconds)
        return True

    async def enforce(self, key: str, limit: int, window_seconds: int, message: str) -> None:
        if not await self.allow(key, limit, window_seconds):
            raise HTTPException(status_code=429, detail=message)
