"""
Compliance Cloud - Compliance Refresh Job

Recalculates and stores the compliance score of every client, tenant by
tenant. Runs nightly and on demand.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from compliance_cloud.database import async_session_maker
from compliance_cloud.schemas.jobs import BatchJobPayload, ComplianceRefreshResult
from compliance_cloud.services.compliance_service import ComplianceService
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


async def run_compliance_refresh(
    payload: BatchJobPayload,
    report_progress: ProgressReporter = noop_progress,
    session_factory: async_sessionmaker = async_session_maker,
    now: Optional[datetime] = None,
) -> ComplianceRefreshResult:
    """
    Refresh one tenant, or every active tenant.

    Each tenant runs in its own session; a failing tenant is recorded in
    ``errors`` and the run continues.
    """
    stopwatch = Stopwatch()
    result = ComplianceRefreshResult()
    logger.info(f"Starting compliance refresh (tenant={payload.tenant_id}, triggered_by={payload.triggered_by})")

    async with transient_io("compliance-refresh"):
        async with session_factory() as db:
            tenant_ids = await list_tenant_ids(db, payload.tenant_id)

        if payload.tenant_id is not None and not tenant_ids:
            missing = NotFoundError("Tenant", payload.tenant_id, code=ErrorCode.TENANT_NOT_FOUND)
            logger.warning(f"Compliance refresh requested for unknown tenant {payload.tenant_id}")
            result.errors.append(PartialBatchFailure(payload.tenant_id, missing, stage="compliance-refresh").to_dict())

        for index, tenant_id in enumerate(tenant_ids, start=1):
            await report_progress({"current": index, "total": len(tenant_ids), "tenant_id": str(tenant_id)})
            try:
                async with session_factory() as db:
                    outcome = await ComplianceService(db).refresh_tenant(tenant_id, now=now)
                result.tenants_processed += 1
                result.clients_updated += outcome.clients_updated
                result.clients_failed += outcome.clients_failed
            except Exception as e:
                if is_transient_error(e):
                    raise
                logger.error(f"Compliance refresh failed for tenant {tenant_id}: {e}", exc_info=True)
                result.errors.append(PartialBatchFailure(tenant_id, e, stage="compliance-refresh").to_dict())

    result.duration_ms = stopwatch.elapsed_ms
    logger.info(
        f"Compliance refresh completed: {result.tenants_processed} tenant(s), "
        f"{result.clients_updated} client(s) updated, {len(result.errors)} error(s) in {result.duration_ms}ms"
    )
    return result
