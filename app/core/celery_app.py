"""
Celery application configuration.

Celery uses Redis as both the message broker and result backend. The worker
only runs periodic maintenance; sign-in steps never wait on it.
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging
from app.core.config import settings
from app.core.logging_config import setup_logging

# Create Celery instance
celery_app = Celery(
    "lifevault_auth_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.tasks.maintenance_tasks"]
)

# Configure Celery
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task behavior
    task_track_started=True,
    task_time_limit=300,  # 5 minutes max per task
    task_soft_time_limit=240,

    # Result backend
    result_expires=3600,  # Results expire after 1 hour

    # Worker behavior
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=50,

    beat_schedule={
        "cleanup-expired-codes": {
            "task": "cleanup_expired_verification_codes",
            "schedule": crontab(hour=2, minute=0),  # 2 AM daily
        },
        "expire-stale-push-logins": {
            "task": "expire_stale_push_logins",
            "schedule": 60.0,
        },
    },
)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Use the API's log format in workers instead of Celery's own."""
    setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.JSON_LOGS, service="lifevault-auth-worker")
