"""
Celery configuration for background proposal generation and expiration sweeps.
"""

from celery import Celery
from celery.schedules import crontab

from matchmaker.core.config import (
    REDIS_URL, CELERY_TIMEZONE, SWEEP_INTERVAL_SECONDS, NIGHTLY_GENERATION_HOUR
)

# Create Celery app
celery_app = Celery(
    "matchmaker",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["matchmaker.tasks.scheduler_tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=CELERY_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # 10 minutes max
    task_soft_time_limit=540,  # 9 minutes soft limit
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=50,
)

celery_app.conf.beat_schedule = {
    "nightly-proposal-generation": {
        "task": "generate_all_vendors",
        "schedule": crontab(hour=NIGHTLY_GENERATION_HOUR, minute=0),
    },
    "expire-stale-proposals": {
        "task": "sweep_expired",
        "schedule": float(SWEEP_INTERVAL_SECONDS),
    },
}
