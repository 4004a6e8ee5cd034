"""Celery worker configuration.

Background work for the booking lifecycle:
- Redelivery of booking events whose sink failed or timed out
- Hourly auto-decline of PENDING bookings the provider never answered
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

# Create Celery app
celery_app = Celery(
    "bookings_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.tasks"],
)

# Celery configuration
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
    task_time_limit=300,  # 5 minutes max
    task_soft_time_limit=240,  # Soft limit at 4 minutes

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour

    # Retry settings
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Auto-decline stale PENDING bookings every hour at :30
        "expire-pending-bookings": {
            "task": "app.tasks.expire_pending_bookings",
            "schedule": crontab(minute=30),
        },
    },
)


if __name__ == "__main__":
    celery_app.start()
