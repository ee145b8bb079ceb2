"""
Maintenance Tasks
Retention cleanup of statistics belonging to archived or deleted projects
"""

import asyncio
from datetime import datetime
from typing import Dict, Optional

from celery.utils.log import get_task_logger

from docstats.config import get_settings
from docstats.exceptions import StatisticsError
from docstats.repositories import StatisticsRepository
from docstats.services import StatisticsCache, StatisticsService
from docstats.utils import CacheService, close_db, close_redis, get_db_context
from docstats.workers.celery_app import celery_app

logger = get_task_logger(__name__)


def run_async(coro):
    """Run async function in sync context"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _cleanup(retention_days: int) -> int:
    settings = get_settings()
    try:
        async with get_db_context() as db:
            service = StatisticsService(
                StatisticsRepository(db, max_retries=settings.STATISTICS_UPSERT_MAX_RETRIES),
                StatisticsCache(CacheService(settings.CACHE_KEY_PREFIX), settings),
                settings,
            )
            return await service.cleanup_old_statistics(retention_days)
    finally:
        # pools are bound to this task's event loop
        await close_db()
        await close_redis()


@celery_app.task(
    name="docstats.workers.tasks.maintenance_tasks.cleanup_old_statistics",
)
def cleanup_old_statistics(retention_days: Optional[int] = None) -> Dict:
    """
    Delete statistics of archived/deleted projects not updated
    within the retention window. Runs daily via beat.
    """
    retention_days = retention_days or get_settings().STATISTICS_RETENTION_DAYS
    logger.info(f"Starting statistics cleanup, retention {retention_days} days")

    try:
        deleted_count = run_async(_cleanup(retention_days))
    except StatisticsError as e:
        logger.error(f"Statistics cleanup failed: {e.message}")
        return {"error": e.message}

    logger.info(f"Statistics cleanup removed {deleted_count} records")
    return {
        "success": True,
        "deleted_count": deleted_count,
        "retention_days": retention_days,
        "timestamp": datetime.utcnow().isoformat(),
    }
