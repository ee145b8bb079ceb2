"""
Statistics Cache
Cache-aside wrapper around Redis for statistics views

The cache is never the source of truth: every failure is logged and reported
as a miss (reads) or ignored (writes and invalidations).
"""

import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

from docstats.config import Settings
from docstats.utils.cache import CacheService

logger = logging.getLogger(__name__)

CACHE_ERRORS = (redis.RedisError, OSError)


class StatisticsCache:
    """Keyed access to cached project, summary and global statistics"""

    GLOBAL_KEY = "stats:global"

    def __init__(self, cache: CacheService, settings: Settings):
        self.cache = cache
        self.project_ttl = settings.STATS_CACHE_TTL
        self.summary_ttl = settings.SUMMARY_CACHE_TTL
        self.global_ttl = settings.GLOBAL_STATS_CACHE_TTL

    @staticmethod
    def project_key(project_id) -> str:
        return f"stats:project:{project_id}"

    @staticmethod
    def summary_key(project_id) -> str:
        return f"stats:summary:{project_id}"

    async def _get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            value = await self.cache.get(key)
        except CACHE_ERRORS as e:
            logger.warning(f"Failed to read cache key {key}: {e}")
            return None
        return value if isinstance(value, dict) else None

    async def _set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        try:
            await self.cache.set(key, value, ttl)
        except CACHE_ERRORS as e:
            logger.warning(f"Failed to write cache key {key}: {e}")

    # =========================================================================
    # PROJECT
    # =========================================================================

    async def get_project(self, project_id) -> Optional[Dict[str, Any]]:
        return await self._get(self.project_key(project_id))

    async def set_project(self, project_id, statistics: Dict[str, Any]) -> None:
        await self._set(self.project_key(project_id), statistics, self.project_ttl)

    async def get_summary(self, project_id) -> Optional[Dict[str, Any]]:
        return await self._get(self.summary_key(project_id))

    async def set_summary(self, project_id, summary: Dict[str, Any]) -> None:
        await self._set(self.summary_key(project_id), summary, self.summary_ttl)

    # =========================================================================
    # GLOBAL
    # =========================================================================

    async def get_global(self) -> Optional[Dict[str, Any]]:
        return await self._get(self.GLOBAL_KEY)

    async def set_global(self, statistics: Dict[str, Any]) -> None:
        await self._set(self.GLOBAL_KEY, statistics, self.global_ttl)

    async def invalidate_global(self) -> None:
        try:
            await self.cache.delete(self.GLOBAL_KEY)
        except CACHE_ERRORS as e:
            logger.warning(f"Failed to invalidate global statistics cache: {e}")

    # =========================================================================
    # INVALIDATION
    # =========================================================================

    async def invalidate_project(self, project_id) -> None:
        """Drop the project, summary and global entries after any write"""
        try:
            await self.cache.delete(
                self.project_key(project_id),
                self.summary_key(project_id),
                self.GLOBAL_KEY,
            )
        except CACHE_ERRORS as e:
            logger.warning(f"Failed to invalidate cache for project {project_id}: {e}")

    async def ping(self) -> bool:
        try:
            return bool(await self.cache.ping())
        except CACHE_ERRORS as e:
            logger.warning(f"Cache ping failed: {e}")
            return False
