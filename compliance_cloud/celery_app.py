"""
Compliance Cloud - Celery Configuration

Celery configuration for background task processing.
Uses Redis as the message broker and result backend.

Each queue gets its own worker so concurrency is set per queue:

    celery -A compliance_cloud.celery_app worker -Q compliance -c 1
    celery -A compliance_cloud.celery_app worker -Q filing-reminder,expiry-notification -c 2
    celery -A compliance_cloud.celery_app worker -Q email -c 5
    celery -A compliance_cloud.celery_app beat

``worker_argv`` builds the same arguments from settings for ``worker_main``.
"""

from typing import List

from celery import Celery
from celery.schedules import crontab

from compliance_cloud.config import settings
from compliance_cloud.schemas.jobs import QueueName


TASK_PREFIX = "compliance_cloud.tasks.celery_tasks"

# Worker processes per queue
QUEUE_CONCURRENCY = {
    QueueName.COMPLIANCE: settings.compliance_queue_concurrency,
    QueueName.FILING_REMINDER: settings.reminder_queue_concurrency,
    QueueName.EXPIRY_NOTIFICATION: settings.reminder_queue_concurrency,
    QueueName.EMAIL: settings.email_queue_concurrency,
}


def crontab_from_string(expression: str, **options) -> crontab:
    """Build a ``crontab`` from a five-field ``minute hour dom month dow`` string."""
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Invalid cron expression '{expression}': expected 5 fields")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
        **options,
    )


def worker_argv(*queues: str) -> List[str]:
    """
    ``worker_main`` arguments for a worker consuming ``queues``.

    Concurrency is the largest configured value among the queues.
    """
    unknown = [q for q in queues if q not in QUEUE_CONCURRENCY]
    if not queues or unknown:
        raise ValueError(f"Unknown queue(s): {', '.join(unknown) or '(none)'}")
    concurrency = max(QUEUE_CONCURRENCY[q] for q in queues)
    return ["worker", "-Q", ",".join(queues), "-c", str(concurrency), "-n", f"{queues[0]}@%h"]


# Create Celery app
celery_app = Celery(
    "compliance_cloud",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["compliance_cloud.tasks.celery_tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone=settings.celery_timezone,
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=settings.task_time_limit_seconds,
    task_soft_time_limit=settings.task_soft_time_limit_seconds,
    task_track_started=True,
    task_default_queue="default",

    # Priority 0 is served first
    broker_transport_options={
        "queue_order_strategy": "priority",
        "priority_steps": list(range(10)),
        "sep": ":",
    },

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings; completed results are pruned sooner by prune_job_results_task
    result_expires=settings.failed_job_retention_seconds,
    result_extended=True,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Nightly compliance score refresh
        "compliance-refresh": {
            "task": f"{TASK_PREFIX}.compliance_refresh_task",
            "schedule": crontab_from_string(settings.compliance_refresh_cron),
        },
        # Daily document expiry reminders
        "expiry-check": {
            "task": f"{TASK_PREFIX}.expiry_check_task",
            "schedule": crontab_from_string(settings.expiry_check_cron),
        },
        # Daily filing deadline reminders
        "filing-reminder-check": {
            "task": f"{TASK_PREFIX}.filing_reminder_check_task",
            "schedule": crontab_from_string(settings.filing_reminder_cron),
        },
        # Weekly notification cleanup
        "notification-cleanup": {
            "task": f"{TASK_PREFIX}.cleanup_notifications_task",
            "schedule": crontab_from_string(settings.notification_cleanup_cron),
        },
        # Hourly removal of completed job results
        "job-result-prune": {
            "task": f"{TASK_PREFIX}.prune_job_results_task",
            "schedule": crontab_from_string(settings.job_result_prune_cron),
        },
    },
)


# Task routing, one queue per job family
celery_app.conf.task_routes = {
    f"{TASK_PREFIX}.compliance_refresh_task": {"queue": QueueName.COMPLIANCE},
    f"{TASK_PREFIX}.expiry_check_task": {"queue": QueueName.EXPIRY_NOTIFICATION},
    f"{TASK_PREFIX}.filing_reminder_check_task": {"queue": QueueName.FILING_REMINDER},
    f"{TASK_PREFIX}.send_email_task": {"queue": QueueName.EMAIL},
    f"{TASK_PREFIX}.cleanup_notifications_task": {"queue": QueueName.COMPLIANCE},
    f"{TASK_PREFIX}.prune_job_results_task": {"queue": QueueName.COMPLIANCE},
}
