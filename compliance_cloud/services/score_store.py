"""
Compliance Cloud - Compliance Score Store

Latest compliance score per (tenant, client), overwritten in place.
"""

import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_cloud.database import upsert_statement
from compliance_cloud.models.compliance import ComplianceLevel, ComplianceScore
from compliance_cloud.schemas.compliance import ComplianceResult
from compliance_cloud.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)


class ComplianceScoreStore:
    """Upserts and reads persisted compliance scores."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def persist(
        self,
        tenant_id: uuid.UUID,
        client_id: uuid.UUID,
        result: ComplianceResult,
        calculated_at: Optional[datetime] = None,
        commit: bool = True,
    ) -> None:
        """
        Create or fully overwrite the client's score in one statement.

        ``last_calculated_at`` never moves backwards: a stale ``calculated_at``
        is raised to the stored value.
        """
        calculated_at = as_utc(calculated_at) or utcnow()
        existing = await self.get(tenant_id, client_id)
        if existing is not None:
            previous = as_utc(existing.last_calculated_at)
            if previous and previous > calculated_at:
                calculated_at = previous

        breakdown = result.breakdown
        values = {
            "id": uuid.uuid4(),
            "tenant_id": tenant_id,
            "client_id": client_id,
            "score_value": result.score_value,
            "level": result.level,
            "missing_count": breakdown.missing_documents,
            "expiring_count": breakdown.expiring_documents + breakdown.expired_documents,
            "overdue_filings_count": breakdown.overdue_filings,
            "last_calculated_at": calculated_at,
            "breakdown": breakdown.model_dump(mode="json"),
        }
        await self.db.execute(
            upsert_statement(self.db, ComplianceScore, values, ["tenant_id", "client_id"])
        )
        if commit:
            await self.db.commit()

        logger.debug(f"Compliance score stored for client {client_id}: {result.score_value}")

    async def get(self, tenant_id: uuid.UUID, client_id: uuid.UUID) -> Optional[ComplianceScore]:
        result = await self.db.execute(
            select(ComplianceScore)
            .where(ComplianceScore.tenant_id == tenant_id)
            .where(ComplianceScore.client_id == client_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_tenant(
        self,
        tenant_id: uuid.UUID,
        levels: Optional[Iterable[ComplianceLevel]] = None,
    ) -> List[ComplianceScore]:
        """Scores of a tenant, lowest first."""
        query = (
            select(ComplianceScore)
            .where(ComplianceScore.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        if levels is not None:
            query = query.where(ComplianceScore.level.in_(list(levels)))
        query = query.order_by(ComplianceScore.score_value.asc(), ComplianceScore.client_id)

        result = await self.db.execute(query)
        return list(result.scalars().unique().all())
