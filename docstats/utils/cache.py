"""
Redis cache utilities
"""

import json
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from docstats.config import get_settings

# Connection pool
_pool = None


async def get_redis_pool() -> ConnectionPool:
    """Get or create Redis connection pool"""
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=20,
            decode_responses=True,
        )
    return _pool


async def get_redis() -> redis.Redis:
    """Get Redis client"""
    pool = await get_redis_pool()
    return redis.Redis(connection_pool=pool)


async def close_redis():
    """Close Redis connections"""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


class CacheService:
    """Prefixed JSON key/value cache on top of Redis"""

    def __init__(self, prefix: str, client: Optional[redis.Redis] = None):
        self.prefix = prefix
        self._client = client

    def _key(self, key: str) -> str:
        """Generate full cache key with prefix"""
        return f"{self.prefix}:{key}"

    async def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        client = await self._get_client()
        value = await client.get(self._key(key))
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Set value in cache with TTL (seconds)"""
        client = await self._get_client()
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        return await client.setex(self._key(key), ttl, value)

    async def delete(self, *keys: str) -> int:
        """Delete one or more keys, returns how many existed"""
        if not keys:
            return 0
        client = await self._get_client()
        return await client.delete(*(self._key(key) for key in keys))

    async def ping(self) -> bool:
        client = await self._get_client()
        return await client.ping()
