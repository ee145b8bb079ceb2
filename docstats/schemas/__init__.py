"""
Pydantic Schemas for API Request/Response validation
"""

from .statistics import (
    CostsStatistics,
    PerformanceStatistics,
    UsageStatistics,
    StatisticsMetadataUpdate,
    UpdateStatisticsRequest,
    PartialStatisticsUpdate,
    SearchCriteria,
    ValidationReport,
    StatisticsResponse,
    SummaryView,
    GlobalStatisticsResponse,
    CleanupResponse,
    DeleteResponse,
    HealthResponse,
    format_duration,
    format_currency,
)

__all__ = [
    # Requests
    "CostsStatistics",
    "PerformanceStatistics",
    "UsageStatistics",
    "StatisticsMetadataUpdate",
    "UpdateStatisticsRequest",
    "PartialStatisticsUpdate",
    "SearchCriteria",
    "ValidationReport",
    # Responses
    "StatisticsResponse",
    "SummaryView",
    "GlobalStatisticsResponse",
    "CleanupResponse",
    "DeleteResponse",
    "HealthResponse",
    # Formatting
    "format_duration",
    "format_currency",
]
