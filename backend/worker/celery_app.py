"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Serialization and timezone settings
- Beat schedule running the delay sweep
- Registration of task modules
"""

from celery import Celery

from app.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "notification_engine",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

# Configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "worker.tasks.delay_sweep.*": {"queue": "sweep"},
        "worker.tasks.*": {"queue": "default"},
    },

    # Default queue
    task_default_queue="default",

    # Result expiration (1 hour; sweep results are only diagnostics)
    result_expires=3600,

    # Task execution limits
    task_soft_time_limit=300,   # 5 min soft limit (raises SoftTimeLimitExceeded)
    task_time_limit=600,        # 10 min hard limit (kills the task)
    task_acks_late=True,        # Acknowledge after execution
    worker_prefetch_multiplier=1,  # One task at a time per worker process

    # Retry
    task_reject_on_worker_lost=True,
    task_acks_on_failure_or_timeout=True,

    # Beat schedule for periodic tasks
    beat_schedule={
        "delay-sweep": {
            "task": "worker.tasks.delay_sweep.sweep_due_executions",
            "schedule": settings.DELAY_SWEEP_INTERVAL_SECONDS,
            "options": {"queue": "sweep", "expires": settings.DELAY_SWEEP_INTERVAL_SECONDS * 2},
        },
    },

    include=[
        "worker.tasks.delay_sweep",
    ],
)
