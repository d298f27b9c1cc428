"""
Redis configuration and the key-value store used for rate limits and lockouts
"""

import redis.asyncio as redis
from typing import Optional, Any, Protocol, Tuple
import json
import logging

from app.config import settings

logger = logging.getLogger(__name__)

# Global Redis client
redis_client: Optional[redis.Redis] = None


async def init_redis():
    """
    Initialize Redis connection
    """
    global redis_client
    try:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True
        )
        # Test connection
        await redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise


async def close_redis():
    """
    Close Redis connection
    """
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


async def get_redis() -> redis.Redis:
    """
    Get Redis client
    """
    if not redis_client:
        await init_redis()
    return redis_client


class KeyValueStore(Protocol):
    """
    Minimal key-value contract consumed by the services.

    Anything exposing these coroutines can be injected, the Redis-backed
    implementation below is the production one.
    """

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool: ...

    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def delete(self, key: str) -> bool: ...


class RedisKeyValueStore:
    """
    Redis implementation of KeyValueStore
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client
        self.logger = logging.getLogger(__name__)

    async def get_client(self) -> redis.Redis:
        if not self.client:
            self.client = await get_redis()
        return self.client

    async def get(self, key: str) -> Optional[Any]:
        """Get value, decoding JSON when possible"""
        client = await self.get_client()
        value = await client.get(key)
        if value:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None
    ) -> bool:
        """Set value with optional TTL"""
        client = await self.get_client()
        if not isinstance(value, str):
            value = json.dumps(value)

        if ttl:
            return await client.setex(key, ttl, value)
        return await client.set(key, value)

    async def incr(self, key: str) -> int:
        client = await self.get_client()
        return await client.incr(key)

    async def expire(self, key: str, ttl: int) -> bool:
        client = await self.get_client()
        return await client.expire(key, ttl)

    async def delete(self, key: str) -> bool:
        client = await self.get_client()
        return await client.delete(key) > 0


async def hit_rate_limit(
    store: KeyValueStore,
    key: str,
    limit: int,
    window: int = 60
) -> Tuple[bool, int]:
    """
    Fixed-window counter on top of incr/expire.

    Returns:
        Tuple of (is_limited, current_count)
    """
    rate_key = f"rate:{key}"
    count = await store.incr(rate_key)
    if count == 1:
        await store.expire(rate_key, window)
    return count > limit, count


async def get_kv_store() -> KeyValueStore:
    """
    Dependency returning the Redis-backed key-value store
    """
    return RedisKeyValueStore(await get_redis())
