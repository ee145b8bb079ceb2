"""
Celery Application Configuration
Periodic maintenance of stored statistics
"""

from celery import Celery
from kombu import Queue, Exchange

from docstats.config import get_settings

settings = get_settings()

celery_app = Celery(
    "docstats",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "docstats.workers.tasks.maintenance_tasks",
    ]
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    result_expires=86400,  # 24 hours

    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=600,
    task_soft_time_limit=540,

    worker_prefetch_multiplier=1,

    task_queues=(
        Queue("default", Exchange("default"), routing_key="default"),
        Queue("maintenance", Exchange("maintenance"), routing_key="maintenance"),
    ),

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    task_routes={
        "docstats.workers.tasks.maintenance_tasks.*": {"queue": "maintenance"},
    },

    beat_schedule={
        "cleanup-old-statistics": {
            "task": "docstats.workers.tasks.maintenance_tasks.cleanup_old_statistics",
            "schedule": settings.CLEANUP_SCHEDULE_SECONDS,
        },
    },
)
