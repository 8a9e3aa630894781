"""
Celery application configuration for background tasks

Beat triggers the two milestone runs once a day. Delivery is at-least-once and
runs may overlap; the scheduler's claim/confirm protocol makes that safe.
"""
from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init
import structlog

from packages.common.config import get_settings
from packages.common.logging_config import configure_logging

logger = structlog.get_logger()
settings = get_settings()

# Create Celery app
app = Celery(
    "covrily_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=600,  # 10 minutes hard limit
    task_soft_time_limit=540,  # 9 minutes soft limit

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour
    result_extended=True,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=50,

    # Task routing
    task_routes={
        "notifications.*": {"queue": "notifications"},
    },

    # Beat schedule (periodic tasks)
    beat_schedule={
        "notify-due-today": {
            "task": "notifications.due_today",
            "schedule": crontab(hour=settings.due_today_schedule_hour, minute=0),
            "options": {"queue": "notifications"},
        },
        "notify-heads-up": {
            "task": "notifications.heads_up",
            "schedule": crontab(hour=settings.heads_up_schedule_hour, minute=5),
            "options": {"queue": "notifications"},
        },
    },
)

# Import tasks explicitly to register them
from services.worker.tasks import notifications  # noqa: E402,F401


@worker_process_init.connect
def init_worker(**kwargs):
    """Initialize worker process"""
    configure_logging(settings.log_level)
    logger.info("celery_worker_starting",
                concurrency=kwargs.get("concurrency", "unknown"),
                environment=settings.environment)


if __name__ == "__main__":
    app.start()
