"""
Compliance Cloud - Reminder Jobs

``expiry-check`` (documents) and ``filing-reminder-check`` (filings): scan
each tenant for entities crossing a reminder threshold, resolve who to tell
and fan out notifications plus ``send-email`` jobs.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from compliance_cloud.database import async_session_maker
from compliance_cloud.models.notification import EntityKind
from compliance_cloud.schemas.jobs import BatchJobPayload, ReminderRunResult
from compliance_cloud.services.notification_service import EmailSink, NotificationDispatcher
from compliance_cloud.services.recipient_resolver import RecipientResolver
from compliance_cloud.services.threshold_scanner import ThresholdScanner
from compliance_cloud.tasks.common import (
    ProgressReporter,
    Stopwatch,
    list_tenant_ids,
    noop_progress,
    transient_io,
)
from compliance_cloud.utils.error_handling import (
    ErrorCode,
    NotFoundError,
    PartialBatchFailure,
    is_transient_error,
)

logger = logging.getLogger(__name__)

STAGE_BY_KIND = {
    EntityKind.DOCUMENT: "expiry-check",
    EntityKind.FILING: "filing-reminder-check",
}


async def run_reminder_check(
    kind: EntityKind,
    payload: BatchJobPayload,
    email_sink: EmailSink,
    report_progress: ProgressReporter = noop_progress,
    session_factory: async_sessionmaker = async_session_maker,
    scanner: Optional[ThresholdScanner] = None,
    now: Optional[datetime] = None,
) -> ReminderRunResult:
    """
    Scan, resolve recipients and dispatch for one kind of entity.

    Failures are isolated per tenant and, inside a tenant, per entity.
    Connection-level errors fail the whole run so the queue retries it.
    """
    stage = STAGE_BY_KIND[kind]
    scanner = scanner or ThresholdScanner(session_factory)
    stopwatch = Stopwatch()
    result = ReminderRunResult()
    logger.info(f"Starting {stage} (tenant={payload.tenant_id}, triggered_by={payload.triggered_by})")

    async with transient_io(stage):
        async with session_factory() as db:
            tenant_ids = await list_tenant_ids(db, payload.tenant_id)

        if payload.tenant_id is not None and not tenant_ids:
            missing = NotFoundError("Tenant", payload.tenant_id, code=ErrorCode.TENANT_NOT_FOUND)
            logger.warning(f"{stage} requested for unknown tenant {payload.tenant_id}")
            result.errors.append(PartialBatchFailure(payload.tenant_id, missing, stage=stage).to_dict())

        for index, tenant_id in enumerate(tenant_ids, start=1):
            await report_progress({"current": index, "total": len(tenant_ids), "tenant_id": str(tenant_id)})
            try:
                async with session_factory() as db:
                    scan = await scanner.scan_tenant(db, tenant_id, kind, now=now)
                    result.entities_checked += scan.entities_checked
                    result.urgent_flagged += scan.urgent_flagged
                    result.skipped_already_notified += scan.skipped_already_notified

                    candidates = scan.candidates()
                    recipients = await RecipientResolver(db).resolve_many(
                        tenant_id, kind, [c.entity_id for c in candidates]
                    )
                    dispatcher = NotificationDispatcher(db, email_sink)

                    for candidate in candidates:
                        try:
                            dispatched = await dispatcher.dispatch(
                                tenant_id,
                                candidate,
                                candidate.threshold,
                                recipients.get(candidate.entity_id, set()),
                            )
                        except Exception as e:
                            if is_transient_error(e):
                                raise
                            logger.error(
                                f"{stage}: dispatch failed for {kind.value} {candidate.entity_id} "
                                f"(tenant {tenant_id}): {e}",
                                exc_info=True,
                            )
                            await db.rollback()
                            result.errors.append(PartialBatchFailure(
                                tenant_id, e, stage=f"{stage}:{kind.value}:{candidate.entity_id}",
                            ).to_dict())
                            continue
                        result.notifications_created += dispatched.notifications_created
                        result.emails_queued += dispatched.emails_queued

                result.tenants_processed += 1
            except Exception as e:
                if is_transient_error(e):
                    raise
                logger.error(f"{stage} failed for tenant {tenant_id}: {e}", exc_info=True)
                result.errors.append(PartialBatchFailure(tenant_id, e, stage=stage).to_dict())

    result.duration_ms = stopwatch.elapsed_ms
    logger.info(
        f"{stage} completed: {result.tenants_processed} tenant(s), {result.entities_checked} checked, "
        f"{result.notifications_created} notification(s), {result.emails_queued} email(s), "
        f"{len(result.errors)} error(s) in {result.duration_ms}ms"
    )
    return result
