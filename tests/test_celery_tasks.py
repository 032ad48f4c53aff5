"""
Compliance Cloud - Celery Task Tests

The Celery entry points delegate to the job coroutines; collaborators are
patched so no broker is needed.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from compliance_cloud.config import settings
from compliance_cloud.models.notification import EntityKind
from compliance_cloud.queue.registry import QUEUES
from compliance_cloud.schemas.jobs import (
    BatchJobPayload,
    CleanupResult,
    ComplianceRefreshResult,
    ReminderRunResult,
)
from compliance_cloud.schemas.notification import EmailJob, EmailJobResult
from compliance_cloud.tasks import celery_tasks
from compliance_cloud.utils.dates import utcnow
from compliance_cloud.utils.error_handling import TransientIOError


class TestRunAsync:
    def test_returns_coroutine_result(self):
        async def answer():
            return 42

        assert celery_tasks.run_async(answer()) == 42

    def test_propagates_errors(self):
        async def boom():
            raise TransientIOError("database unavailable")

        with pytest.raises(TransientIOError):
            celery_tasks.run_async(boom())


class TestBatchTasks:
    def test_expiry_check_runs_document_scan(self):
        tenant_id = uuid4()
        run = AsyncMock(return_value=ReminderRunResult(tenants_processed=1, emails_queued=2))

        with patch.object(celery_tasks, "run_reminder_check", run):
            result = celery_tasks.expiry_check_task(tenant_id=str(tenant_id), triggered_by="manual")

        kind, payload, sink = run.await_args.args
        assert kind == EntityKind.DOCUMENT
        assert payload == BatchJobPayload(tenant_id=tenant_id, triggered_by="manual")
        assert sink is celery_tasks.celery_email_sink
        assert result["emails_queued"] == 2

    def test_filing_reminder_runs_filing_scan(self):
        run = AsyncMock(return_value=ReminderRunResult())

        with patch.object(celery_tasks, "run_reminder_check", run):
            celery_tasks.filing_reminder_check_task()

        kind, payload, _ = run.await_args.args
        assert kind == EntityKind.FILING
        assert payload.tenant_id is None
        assert payload.triggered_by == "cron"

    def test_compliance_refresh(self):
        run = AsyncMock(return_value=ComplianceRefreshResult(tenants_processed=3, clients_updated=12))

        with patch.object(celery_tasks, "run_compliance_refresh", run):
            result = celery_tasks.compliance_refresh_task()

        assert result["clients_updated"] == 12
        assert run.await_args.args[0] == BatchJobPayload()

    def test_cleanup(self):
        run = AsyncMock(return_value=CleanupResult(notifications_deleted=5))

        with patch.object(celery_tasks, "run_notification_cleanup", run):
            result = celery_tasks.cleanup_notifications_task(days_old=30)

        assert result == {"notifications_deleted": 5}
        run.assert_awaited_once_with(days_old=30)

    def test_prune_job_results_forgets_completed_results(self):
        registry = MagicMock()
        registry.clean_queue.return_value = ["job-1", "job-2"]

        with patch.object(celery_tasks, "QueueRegistry", return_value=registry):
            result = celery_tasks.prune_job_results_task()

        assert result == {name: 2 for name in QUEUES}
        registry.clean_queue.assert_any_call(
            "email",
            age_seconds=settings.completed_job_retention_seconds,
            limit=settings.job_result_prune_limit,
        )


class TestEmailTasks:
    def test_send_email_task_validates_payload(self):
        tenant_id = uuid4()
        job = EmailJob(
            recipient_email="ada@example.com",
            recipient_name="Ada",
            subject="Reminder",
            tenant_id=tenant_id,
        )
        run = AsyncMock(return_value=EmailJobResult(success=True, timestamp=utcnow()))

        with patch.object(celery_tasks, "run_send_email", run):
            result = celery_tasks.send_email_task(job.model_dump(mode="json"))

        assert run.await_args.args[0] == job
        assert result["success"] is True

    def test_email_sink_queues_celery_task(self):
        job = EmailJob(
            recipient_email="ada@example.com",
            recipient_name="Ada",
            subject="Reminder",
            tenant_id=uuid4(),
        )
        fake_task = MagicMock()

        with patch.object(celery_tasks, "send_email_task", fake_task):
            celery_tasks.run_async(celery_tasks.celery_email_sink(job))

        fake_task.delay.assert_called_once_with(job.model_dump(mode="json"))

    def test_email_retry_policy(self):
        assert TransientIOError in celery_tasks.send_email_task.autoretry_for
        assert celery_tasks.send_email_task.max_retries == 4
