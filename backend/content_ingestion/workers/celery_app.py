"""
Celery application instance and configuration.
"""

from celery import Celery, signals
from celery.schedules import crontab

from content_ingestion.core.config import settings
from content_ingestion.core.logging import setup_logging

# Create Celery application
celery_app = Celery(
    "content_ingestion",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["content_ingestion.tasks.pipeline_tasks"],
)

# Configure Celery
celery_app.conf.update(
    task_serializer=settings.CELERY_TASK_SERIALIZER,
    result_serializer=settings.CELERY_RESULT_SERIALIZER,
    accept_content=settings.celery_accept_content_list,
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=settings.CELERY_ENABLE_UTC,
    task_track_started=True,
    task_time_limit=60 * 60,  # 1 hour, extraction of large media is slow
    task_soft_time_limit=55 * 60,  # 55 minutes
    result_expires=3600,  # 1 hour
    # A job message is only acknowledged once its run finished
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.MAX_CONCURRENT_JOBS,
)

# Celery Beat Schedule (Periodic Tasks)
celery_app.conf.beat_schedule = {
    'dispatch-pending-jobs': {
        'task': 'pipeline.dispatch_pending_jobs',
        'schedule': crontab(minute='*'),  # Every minute
        'options': {'queue': 'pipeline'},
    },
    'recover-stalled-runs': {
        'task': 'pipeline.recover_stalled_runs',
        'schedule': crontab(minute='*/10'),  # Every 10 minutes
        'options': {'queue': 'pipeline'},
    },
}

# Task routing
celery_app.conf.task_routes = {
    'pipeline.*': {'queue': 'pipeline'},
}


@signals.setup_logging.connect
def configure_worker_logging(**kwargs):
    """Route Celery's own logging through structlog."""
    setup_logging()
