# shared/redis_client.py
import os
from typing import Optional

import redis.asyncio as redis

from shared.json_utils import safe_json_dumps

# Redis configuration
REDIS_URL = os.getenv("REDIS_URL")
if not REDIS_URL:
    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
    REDIS_DB = int(os.getenv("REDIS_DB", "0"))

    if REDIS_PASSWORD:
        REDIS_URL = f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"
    else:
        REDIS_URL = f"redis://{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"

# Global Redis client
_redis_client: Optional[redis.Redis] = None


async def init_redis():
    """Initialize Redis connection"""
    global _redis_client

    _redis_client = redis.from_url(
        REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
        health_check_interval=30,
        socket_connect_timeout=5,
        retry_on_timeout=True,
    )

    await _redis_client.ping()


async def close_redis():
    """Close Redis connection"""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


async def get_redis() -> redis.Redis:
    """Dependency to get Redis client"""
    if not _redis_client:
        await init_redis()
    return _redis_client


class RedisCache:
    """Namespaced get/set/counter helpers over a shared client"""

    def __init__(self, client: redis.Redis, prefix: str = "cache"):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(self._key(key))

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            await self.client.setex(self._key(key), ttl, value)
        else:
            await self.client.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def increment(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        """Increment a counter, setting its expiry the first time it is created"""
        value = await self.client.incrby(self._key(key), amount)
        if ttl and value == amount:
            await self.client.expire(self._key(key), ttl)
        return value


async def publish_json(client: redis.Redis, channel: str, payload: dict) -> int:
    """Publish a JSON message. Returns the number of subscribers that received it."""
    return await client.publish(channel, safe_json_dumps(payload))
