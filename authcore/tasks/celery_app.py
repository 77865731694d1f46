# authcore/tasks/celery_app.py
import logging
from datetime import timedelta

import nest_asyncio
from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init

from authcore.core.config import settings
from authcore.core.logging_config import setup_logging

logger = logging.getLogger("authcore.tasks.celery_app")

celery_app = Celery(
    "authcore",
    broker=str(settings.CELERY_BROKER_URL),
    backend=str(settings.CELERY_RESULT_BACKEND),
    # Explicitly list modules to import when the worker starts
    include=["authcore.tasks.maintenance"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.TIMEZONE,
    enable_utc=True,
    broker_connection_retry_on_startup=True,
    task_track_started=True,
    result_expires=settings.CELERY_RESULT_EXPIRES,
    beat_schedule={
        # Sweep expired/idle sessions and repair per-user indexes
        "sessions-cleanup-expired": {
            "task": "authcore.tasks.maintenance.cleanup_expired_sessions",
            "schedule": timedelta(seconds=settings.SESSION_CLEANUP_INTERVAL_SECONDS),
        },
        # Dashboard snapshot of session and security metrics
        "sessions-collect-metrics": {
            "task": "authcore.tasks.maintenance.collect_session_metrics",
            "schedule": crontab(minute=0),  # Every hour
        },
    },
)


@worker_process_init.connect(weak=False)
def init_worker_process_signal(**_kwargs):
    """Signal handler for when a Celery worker process starts."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE_PATH)
    logger.info("CELERY_WORKER_PROCESS_INIT: Applying nest_asyncio for event loop compatibility.")
    nest_asyncio.apply()
    logger.info("CELERY_WORKER_PROCESS_INIT: nest_asyncio applied.")
