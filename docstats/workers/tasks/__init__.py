"""
Celery Tasks
"""

from .maintenance_tasks import cleanup_old_statistics

__all__ = [
    "cleanup_old_statistics",
]
