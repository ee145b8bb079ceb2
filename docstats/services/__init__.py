"""
Business logic services
"""

from .statistics_cache import StatisticsCache
from .statistics_service import StatisticsService

__all__ = [
    "StatisticsCache",
    "StatisticsService",
]
