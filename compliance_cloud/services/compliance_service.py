"""
Compliance Cloud - Compliance Service

Evaluate-and-persist operations and dashboard queries over stored scores.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_cloud.models.client import Client
from compliance_cloud.models.compliance import ComplianceLevel
from compliance_cloud.schemas.compliance import (
    ClientWithIssues,
    ComplianceResult,
    ComplianceSummary,
    TenantRefreshResult,
)
from compliance_cloud.services.compliance_engine import ComplianceEngine, ScoringPolicy
from compliance_cloud.services.score_store import ComplianceScoreStore
from compliance_cloud.utils.error_handling import NotFoundError, is_transient_error

logger = logging.getLogger(__name__)


class ComplianceService:
    """Service wrapping the scoring engine and the score store."""

    def __init__(self, db: AsyncSession, policy: Optional[ScoringPolicy] = None):
        self.db = db
        self.engine = ComplianceEngine(db, policy)
        self.store = ComplianceScoreStore(db)

    async def evaluate(
        self,
        tenant_id: uuid.UUID,
        client_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> ComplianceResult:
        return await self.engine.evaluate(tenant_id, client_id, now=now)

    async def recalculate_client(
        self,
        tenant_id: uuid.UUID,
        client_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> ComplianceResult:
        """Evaluate a client and persist its score."""
        logger.info(f"Recalculating compliance for client {client_id} (tenant {tenant_id})")
        result = await self.engine.evaluate(tenant_id, client_id, now=now)
        await self.store.persist(tenant_id, client_id, result, calculated_at=now)
        return result

    async def refresh_tenant(
        self,
        tenant_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> TenantRefreshResult:
        """
        Recalculate every client of a tenant.

        A client that disappears mid-run is logged and counted as failed;
        connection-level errors propagate.
        """
        result = await self.db.execute(
            select(Client.id).where(Client.tenant_id == tenant_id).order_by(Client.created_at)
        )
        client_ids = list(result.scalars().all())

        outcome = TenantRefreshResult(tenant_id=tenant_id)
        for client_id in client_ids:
            try:
                evaluation = await self.engine.evaluate(tenant_id, client_id, now=now)
                await self.store.persist(tenant_id, client_id, evaluation, calculated_at=now)
                outcome.clients_updated += 1
            except NotFoundError as e:
                logger.warning(f"Skipping client {client_id} of tenant {tenant_id}: {e.message}")
                outcome.clients_failed += 1
            except Exception as e:
                if is_transient_error(e):
                    raise
                logger.error(
                    f"Failed to refresh compliance for client {client_id} (tenant {tenant_id}): {e}",
                    exc_info=True,
                )
                await self.db.rollback()
                outcome.clients_failed += 1

        logger.info(
            f"Tenant {tenant_id} compliance refreshed: "
            f"{outcome.clients_updated} updated, {outcome.clients_failed} failed"
        )
        return outcome

    async def get_summary(self, tenant_id: uuid.UUID) -> ComplianceSummary:
        """Aggregate of the tenant's stored scores for the dashboard."""
        scores = await self.store.list_for_tenant(tenant_id)
        summary = ComplianceSummary(total_clients=len(scores))
        for score in scores:
            if score.level == ComplianceLevel.GREEN:
                summary.green += 1
            elif score.level == ComplianceLevel.AMBER:
                summary.amber += 1
            else:
                summary.red += 1
            summary.total_missing_documents += score.missing_count
            summary.total_expiring_documents += score.expiring_count
            summary.total_overdue_filings += score.overdue_filings_count
        if scores:
            total = sum(s.score_value for s in scores)
            summary.average_score = int(total / len(scores) + 0.5)
        return summary

    async def get_clients_with_issues(self, tenant_id: uuid.UUID) -> List[ClientWithIssues]:
        """Red and amber clients, worst score first."""
        scores = await self.store.list_for_tenant(
            tenant_id,
            levels=[ComplianceLevel.RED, ComplianceLevel.AMBER],
        )
        return [
            ClientWithIssues(
                id=score.client.id,
                name=score.client.name,
                type=score.client.type,
                sector=score.client.sector,
                compliance_score=score.score_value,
                compliance_level=score.level,
                missing_count=score.missing_count,
                expiring_count=score.expiring_count,
                overdue_filings_count=score.overdue_filings_count,
            )
            for score in scores
        ]
