"""
Compliance Cloud - Compliance Schemas

Rule condition parsing, scoring results and score read models.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from compliance_cloud.models.compliance import ComplianceLevel


# ===========================================
# RULE CONDITIONS
# ===========================================

class DocumentRuleCondition(BaseModel):
    """Condition of a ``document_required`` rule."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    document_type: str = Field(..., min_length=1, alias="documentType")


class FilingRuleCondition(BaseModel):
    """Condition of a ``filing_required`` rule."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    filing_type: str = Field(..., min_length=1, alias="filingType")
    frequency: Optional[str] = None


class RuleSetApplicability(BaseModel):
    """``applies_to`` filter of a rule set. Empty lists never match."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    client_types: Optional[List[str]] = Field(None, alias="clientTypes")
    sectors: Optional[List[str]] = None

    def matches(self, client_type: Optional[str], sector: Optional[str]) -> bool:
        if self.client_types is not None and client_type not in self.client_types:
            return False
        if self.sectors is not None and sector not in self.sectors:
            return False
        return True


# ===========================================
# SCORING RESULTS
# ===========================================

class ComplianceBreakdown(BaseModel):
    """Per-client counters behind a compliance score."""
    missing_documents: int = 0
    expired_documents: int = 0
    expiring_documents: int = 0
    overdue_filings: int = 0
    upcoming_filings: int = 0
    total_weight: float = 0.0
    achieved_weight: float = 0.0

    # Per-category percentages; None when no rule of that category applies
    documents_score: Optional[int] = None
    filings_score: Optional[int] = None

    skipped_rules: int = 0


class ComplianceResult(BaseModel):
    """Outcome of evaluating one client."""
    client_id: UUID
    score_value: int = Field(..., ge=0, le=100)
    level: ComplianceLevel
    breakdown: ComplianceBreakdown
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class ComplianceScoreResponse(BaseModel):
    """Persisted score for a client."""
    model_config = ConfigDict(from_attributes=True)

    client_id: UUID
    score_value: int
    level: ComplianceLevel
    missing_count: int
    expiring_count: int
    overdue_filings_count: int
    last_calculated_at: datetime
    breakdown: Optional[Dict] = None


class ClientWithIssues(BaseModel):
    """Red or amber client, as listed on the dashboard."""
    id: UUID
    name: str
    type: str
    sector: Optional[str] = None
    compliance_score: int
    compliance_level: ComplianceLevel
    missing_count: int
    expiring_count: int
    overdue_filings_count: int


class ComplianceSummary(BaseModel):
    """Tenant-wide aggregate of persisted scores."""
    total_clients: int = 0
    green: int = 0
    amber: int = 0
    red: int = 0
    average_score: int = 0
    total_missing_documents: int = 0
    total_expiring_documents: int = 0
    total_overdue_filings: int = 0


class TenantRefreshResult(BaseModel):
    """Outcome of refreshing every client of one tenant."""
    tenant_id: UUID
    clients_updated: int = 0
    clients_failed: int = 0
