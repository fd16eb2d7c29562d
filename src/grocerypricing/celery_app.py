"""Celery application configuration for background task processing."""

import os

from celery import Celery
from celery.schedules import crontab

from grocerypricing.config import get_settings

settings = get_settings()

# Redis serves as both broker and result backend
REDIS_URL = settings.redis_url

celery_app = Celery(
    "grocerypricing",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "grocerypricing.tasks.cache",
    ],
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # Result settings
    result_expires=86400,  # Results expire after 1 day
    # Retry settings (default for all tasks)
    task_default_retry_delay=60,
    task_max_retries=3,
    # Beat scheduler settings
    beat_schedule={
        "price-cache-cleanup": {
            "task": "grocerypricing.tasks.cache.cleanup_price_cache_task",
            "schedule": crontab(minute=0, hour="*/6"),  # Every 6 hours
            "options": {"queue": "maintenance"},
        },
    },
    # Queue routing
    task_routes={
        "grocerypricing.tasks.cache.*": {"queue": "maintenance"},
    },
    # Logging
    worker_hijack_root_logger=False,
)

if os.name == "nt":
    celery_app.conf.update(
        worker_pool="solo",
    )
