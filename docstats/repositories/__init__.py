"""
Data access layer
"""

from .statistics_repository import StatisticsRepository, sanitize_json_data

__all__ = ["StatisticsRepository", "sanitize_json_data"]
