"""
Compliance Cloud - Celery Tasks

Celery entry points for the background jobs. Each task runs its job
coroutine on a fresh event loop; retries come from Celery and schedules
from beat.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from celery import shared_task

from compliance_cloud.config import settings
from compliance_cloud.database import engine
from compliance_cloud.models.notification import EntityKind
from compliance_cloud.queue.registry import QUEUES, QueueRegistry
from compliance_cloud.schemas.jobs import BatchJobPayload, TriggerSource
from compliance_cloud.schemas.notification import EmailJob
from compliance_cloud.services.email_service import EmailDeliveryError
from compliance_cloud.tasks.compliance_tasks import run_compliance_refresh
from compliance_cloud.tasks.email_tasks import run_send_email
from compliance_cloud.tasks.maintenance_tasks import run_notification_cleanup
from compliance_cloud.tasks.reminder_tasks import run_reminder_check
from compliance_cloud.utils.error_handling import TransientIOError

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    async def _run():
        try:
            return await coro
        finally:
            # Pooled connections are bound to this loop
            await engine.dispose()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_run())
    finally:
        loop.close()


def _payload(tenant_id: Optional[str], triggered_by: str) -> BatchJobPayload:
    return BatchJobPayload(tenant_id=tenant_id, triggered_by=triggered_by)


def _progress_reporter(task):
    async def report(progress: Dict[str, Any]) -> None:
        task.update_state(state="PROGRESS", meta=progress)
    return report


async def celery_email_sink(job: EmailJob) -> None:
    """Queue one email on the Celery ``email`` queue."""
    send_email_task.delay(job.model_dump(mode="json"))


# ===========================================
# COMPLIANCE TASKS
# ===========================================

@shared_task(
    name="compliance_cloud.tasks.celery_tasks.compliance_refresh_task",
    bind=True,
    autoretry_for=(TransientIOError,),
    retry_backoff=int(settings.queue_backoff_seconds),
    max_retries=settings.compliance_queue_attempts - 1,
)
def compliance_refresh_task(self, tenant_id: str = None, triggered_by: str = TriggerSource.CRON) -> Dict[str, Any]:
    """Recalculate compliance scores for one tenant or all of them."""
    result = run_async(run_compliance_refresh(
        _payload(tenant_id, triggered_by),
        report_progress=_progress_reporter(self),
    ))
    return result.model_dump(mode="json")


# ===========================================
# REMINDER TASKS
# ===========================================

@shared_task(
    name="compliance_cloud.tasks.celery_tasks.expiry_check_task",
    bind=True,
    autoretry_for=(TransientIOError,),
    retry_backoff=int(settings.queue_backoff_seconds),
    max_retries=settings.reminder_queue_attempts - 1,
)
def expiry_check_task(self, tenant_id: str = None, triggered_by: str = TriggerSource.CRON) -> Dict[str, Any]:
    """Notify about documents approaching expiry."""
    result = run_async(run_reminder_check(
        EntityKind.DOCUMENT,
        _payload(tenant_id, triggered_by),
        celery_email_sink,
        report_progress=_progress_reporter(self),
    ))
    return result.model_dump(mode="json")


@shared_task(
    name="compliance_cloud.tasks.celery_tasks.filing_reminder_check_task",
    bind=True,
    autoretry_for=(TransientIOError,),
    retry_backoff=int(settings.queue_backoff_seconds),
    max_retries=settings.reminder_queue_attempts - 1,
)
def filing_reminder_check_task(self, tenant_id: str = None, triggered_by: str = TriggerSource.CRON) -> Dict[str, Any]:
    """Notify about filing deadlines and flag urgent filings."""
    result = run_async(run_reminder_check(
        EntityKind.FILING,
        _payload(tenant_id, triggered_by),
        celery_email_sink,
        report_progress=_progress_reporter(self),
    ))
    return result.model_dump(mode="json")


# ===========================================
# EMAIL TASKS
# ===========================================

@shared_task(
    name="compliance_cloud.tasks.celery_tasks.send_email_task",
    bind=True,
    autoretry_for=(EmailDeliveryError, TransientIOError),
    retry_backoff=int(settings.email_backoff_seconds),
    max_retries=settings.email_queue_attempts - 1,
)
def send_email_task(self, email_job: Dict[str, Any]) -> Dict[str, Any]:
    """Send one notification email and record the outcome."""
    job = EmailJob.model_validate(email_job)
    result = run_async(run_send_email(job))
    return result.model_dump(mode="json")


# ===========================================
# MAINTENANCE TASKS
# ===========================================

@shared_task(name="compliance_cloud.tasks.celery_tasks.cleanup_notifications_task")
def cleanup_notifications_task(days_old: Optional[int] = None) -> Dict[str, Any]:
    """Delete notifications older than ``days_old`` or the retention window."""
    result = run_async(run_notification_cleanup(days_old=days_old))
    logger.info(f"Cleaned up {result.notifications_deleted} old notifications")
    return result.model_dump(mode="json")


@shared_task(bind=True, name="compliance_cloud.tasks.celery_tasks.prune_job_results_task")
def prune_job_results_task(self) -> Dict[str, int]:
    """Forget completed job results past their retention; failed ones expire with the backend."""
    registry = QueueRegistry(self.app, settings)
    removed = {
        name: len(registry.clean_queue(
            name,
            age_seconds=settings.completed_job_retention_seconds,
            limit=settings.job_result_prune_limit,
        ))
        for name in QUEUES
    }
    logger.info(f"Pruned completed job results: {removed}")
    return removed
