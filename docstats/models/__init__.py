"""
Database Models and domain entities
"""

from .database import (
    Base,
    # Enums
    ProjectStatus,
    # Models
    Project,
    ProjectStatistics,
)
from .entities import (
    CostsData,
    PerformanceData,
    UsageData,
    StatisticsMetadata,
    ConsistencyReport,
    ProjectStatisticsEntity,
)

__all__ = [
    "Base",
    # Enums
    "ProjectStatus",
    # Models
    "Project",
    "ProjectStatistics",
    # Entities
    "CostsData",
    "PerformanceData",
    "UsageData",
    "StatisticsMetadata",
    "ConsistencyReport",
    "ProjectStatisticsEntity",
]
