"""
Compliance Cloud - Compliance Router

API endpoints for client compliance scores.
"""

import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_cloud.dependencies import get_db, require_admin_token
from compliance_cloud.schemas.compliance import (
    ClientWithIssues,
    ComplianceResult,
    ComplianceSummary,
)
from compliance_cloud.services.compliance_service import ComplianceService


router = APIRouter(
    prefix="/tenants/{tenant_id}/compliance",
    tags=["Compliance"],
    dependencies=[Depends(require_admin_token)],
)


@router.get("/clients/{client_id}", response_model=ComplianceResult)
async def evaluate_client(
    tenant_id: uuid.UUID,
    client_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Evaluate a client's compliance without storing the score."""
    return await ComplianceService(db).evaluate(tenant_id, client_id)


@router.post("/clients/{client_id}/recalculate", response_model=ComplianceResult)
async def recalculate_client(
    tenant_id: uuid.UUID,
    client_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Evaluate a client and store the score."""
    return await ComplianceService(db).recalculate_client(tenant_id, client_id)


@router.get("/summary", response_model=ComplianceSummary)
async def get_summary(tenant_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Green/amber/red counts and totals over the stored scores."""
    return await ComplianceService(db).get_summary(tenant_id)


@router.get("/clients-with-issues", response_model=List[ClientWithIssues])
async def get_clients_with_issues(tenant_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Red and amber clients, worst first."""
    return await ComplianceService(db).get_clients_with_issues(tenant_id)
