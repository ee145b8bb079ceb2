"""
Utility modules for the statistics service
"""

from .database import (
    get_db,
    get_db_context,
    init_db,
    close_db,
)
from .cache import (
    CacheService,
    get_redis,
    close_redis,
)

__all__ = [
    # Database
    "get_db",
    "get_db_context",
    "init_db",
    "close_db",
    # Cache
    "CacheService",
    "get_redis",
    "close_redis",
]
