"""
Compliance Cloud - Compliance Scoring Engine

Weighted multi-criterion compliance scoring of a client against the active
rule sets of its tenant.

Scoring is split in two:
- ``ComplianceEngine`` loads a fresh ``ClientSnapshot`` and the applicable
  rules from the database.
- ``score_snapshot`` is a pure function of (snapshot, rules, policy, now).

Nothing is persisted here; see ``ComplianceScoreStore``.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from compliance_cloud.config import Settings, settings as app_settings
from compliance_cloud.models.client import (
    COMPLETED_FILING_STATUSES,
    Client,
    Document,
    DocumentStatus,
    Filing,
    FilingStatus,
)
from compliance_cloud.models.compliance import (
    ComplianceLevel,
    ComplianceRule,
    ComplianceRuleSet,
    RuleType,
)
from compliance_cloud.schemas.compliance import (
    ComplianceBreakdown,
    ComplianceResult,
    DocumentRuleCondition,
    FilingRuleCondition,
    RuleSetApplicability,
)
from compliance_cloud.utils.dates import as_utc, utcnow
from compliance_cloud.utils.error_handling import (
    ClientNotFoundError,
    InvalidRuleConditionException,
)

logger = logging.getLogger(__name__)


# Share of a filing rule's weight earned while the filing is due soon but not done
UPCOMING_FILING_CREDIT = 0.5

URGENT_BANNER = "URGENT: Immediate action required to improve compliance"
ATTENTION_BANNER = "Several items need attention"

# Documents in these states never satisfy a rule
UNUSABLE_DOCUMENT_STATUSES = (DocumentStatus.REJECTED, DocumentStatus.ARCHIVED)


@dataclass(frozen=True)
class ScoringPolicy:
    """Tunable thresholds of the scoring algorithm."""
    green_threshold: int = 80
    amber_threshold: int = 50
    upcoming_filing_credit: float = UPCOMING_FILING_CREDIT
    expiring_window_days: int = 30
    upcoming_window_days: int = 14

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringPolicy":
        return cls(
            green_threshold=settings.compliance_green_threshold,
            amber_threshold=settings.compliance_amber_threshold,
            upcoming_filing_credit=settings.upcoming_filing_credit,
            expiring_window_days=settings.expiring_document_window_days,
            upcoming_window_days=settings.upcoming_filing_window_days,
        )

    def classify(self, score_value: int) -> ComplianceLevel:
        if score_value >= self.green_threshold:
            return ComplianceLevel.GREEN
        if score_value >= self.amber_threshold:
            return ComplianceLevel.AMBER
        return ComplianceLevel.RED


# ===========================================
# CLIENT SNAPSHOT
# ===========================================

@dataclass(frozen=True)
class DocumentFact:
    document_id: uuid.UUID
    document_type: str
    status: DocumentStatus
    has_version: bool
    expiry_date: Optional[datetime]


@dataclass(frozen=True)
class FilingFact:
    filing_id: uuid.UUID
    filing_type: str
    frequency: Optional[str]
    status: FilingStatus
    period_end: Optional[datetime]
    created_at: Optional[datetime]


@dataclass
class ClientSnapshot:
    """Point-in-time view of a client's documents and filings."""
    client_id: uuid.UUID
    client_type: Optional[str] = None
    sector: Optional[str] = None
    documents: List[DocumentFact] = field(default_factory=list)
    filings: List[FilingFact] = field(default_factory=list)

    @classmethod
    def from_client(cls, client: Client) -> "ClientSnapshot":
        documents = []
        for doc in client.documents:
            latest = doc.latest_version
            documents.append(DocumentFact(
                document_id=doc.id,
                document_type=doc.document_type.name,
                status=doc.status,
                has_version=latest is not None,
                expiry_date=as_utc(latest.expiry_date) if latest else None,
            ))
        filings = [
            FilingFact(
                filing_id=f.id,
                filing_type=f.filing_type.name,
                frequency=f.filing_type.frequency,
                status=f.status,
                period_end=as_utc(f.period_end),
                created_at=as_utc(f.created_at),
            )
            for f in client.filings
        ]
        return cls(
            client_id=client.id,
            client_type=client.type,
            sector=client.sector,
            documents=documents,
            filings=sort_filings_latest_first(filings),
        )

    def document_for(self, document_type: str) -> Optional[DocumentFact]:
        """
        Best usable document of a type: one with a version, preferring no
        expiry, then the furthest expiry.
        """
        candidates = [
            d for d in self.documents
            if d.document_type == document_type
            and d.has_version
            and d.status not in UNUSABLE_DOCUMENT_STATUSES
        ]
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda d: (d.expiry_date is None, d.expiry_date.timestamp() if d.expiry_date else 0.0),
        )

    def filings_for(self, filing_type: str, frequency: Optional[str] = None) -> List[FilingFact]:
        """Filings of a type, most recent first."""
        return [
            f for f in self.filings
            if f.filing_type == filing_type
            and (frequency is None or f.frequency is None or f.frequency == frequency)
        ]


def sort_filings_latest_first(filings: Iterable[FilingFact]) -> List[FilingFact]:
    """Order by period end desc, then created at desc; missing dates sort last."""
    def key(f: FilingFact):
        period = f.period_end.timestamp() if f.period_end else float("-inf")
        created = f.created_at.timestamp() if f.created_at else float("-inf")
        return (period, created)
    return sorted(filings, key=key, reverse=True)


# ===========================================
# PURE SCORING
# ===========================================

def parse_rule_condition(rule: ComplianceRule):
    """Validate a rule's weight and condition; raise if it cannot be scored."""
    weight = rule.weight
    if weight is None or isinstance(weight, bool) or not 0 <= weight <= 1 or math.isnan(weight):
        raise InvalidRuleConditionException(rule.id, f"weight {weight!r} outside [0, 1]")
    if not isinstance(rule.condition, dict):
        raise InvalidRuleConditionException(rule.id, "condition is not an object")

    try:
        if rule.rule_type == RuleType.DOCUMENT_REQUIRED:
            return DocumentRuleCondition.model_validate(rule.condition)
        if rule.rule_type == RuleType.FILING_REQUIRED:
            return FilingRuleCondition.model_validate(rule.condition)
    except ValidationError as e:
        raise InvalidRuleConditionException(rule.id, e.errors()[0]["msg"]) from e
    raise InvalidRuleConditionException(rule.id, f"unknown rule type {rule.rule_type!r}")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _percent(achieved: float, total: float) -> Optional[int]:
    if total <= 0:
        return None
    return round_half_up(achieved / total * 100)


def score_snapshot(
    snapshot: ClientSnapshot,
    rules: Sequence[ComplianceRule],
    now: Optional[datetime] = None,
    policy: ScoringPolicy = ScoringPolicy(),
) -> ComplianceResult:
    """
    Score a client snapshot against a flat list of rules.

    Malformed rules are skipped and counted in ``breakdown.skipped_rules``.
    An empty (or fully skipped) rule list scores 100.
    """
    now = as_utc(now) or utcnow()
    expiring_cutoff = now + timedelta(days=policy.expiring_window_days)
    upcoming_cutoff = now + timedelta(days=policy.upcoming_window_days)

    breakdown = ComplianceBreakdown()
    issues: List[str] = []
    recommendations: List[str] = []

    doc_total = doc_achieved = 0.0
    filing_total = filing_achieved = 0.0

    for rule in rules:
        try:
            condition = parse_rule_condition(rule)
        except InvalidRuleConditionException as e:
            logger.warning(f"Skipping rule {rule.id} for client {snapshot.client_id}: {e.message}")
            breakdown.skipped_rules += 1
            continue

        weight = float(rule.weight)

        if isinstance(condition, DocumentRuleCondition):
            doc_type = condition.document_type
            doc_total += weight
            document = snapshot.document_for(doc_type)

            if document is None:
                breakdown.missing_documents += 1
                issues.append(f"Missing required document: {doc_type}")
                recommendations.append(f"Upload {doc_type}")
            elif document.expiry_date is None:
                doc_achieved += weight
            elif document.expiry_date < now:
                breakdown.expired_documents += 1
                issues.append(f"{doc_type} has expired")
                recommendations.append(f"Renew {doc_type} immediately")
            elif document.expiry_date < expiring_cutoff:
                breakdown.expiring_documents += 1
                issues.append(f"{doc_type} expiring soon")
                recommendations.append(f"Plan renewal for {doc_type}")
                doc_achieved += weight
            else:
                doc_achieved += weight

        else:
            filing_type = condition.filing_type
            filing_total += weight
            filings = snapshot.filings_for(filing_type, condition.frequency)

            if not filings:
                breakdown.overdue_filings += 1
                issues.append(f"No {filing_type} filings found")
                recommendations.append(f"File {filing_type} immediately")
                continue

            latest = filings[0]
            if latest.status in COMPLETED_FILING_STATUSES:
                filing_achieved += weight
            elif latest.status == FilingStatus.OVERDUE or (
                latest.period_end is not None and latest.period_end < now
            ):
                breakdown.overdue_filings += 1
                issues.append(f"{filing_type} is overdue")
                recommendations.append(f"Submit {filing_type} immediately")
            elif latest.period_end is not None and latest.period_end < upcoming_cutoff:
                breakdown.upcoming_filings += 1
                recommendations.append(f"{filing_type} due soon")
                filing_achieved += weight * policy.upcoming_filing_credit
            else:
                filing_achieved += weight

    breakdown.total_weight = doc_total + filing_total
    breakdown.achieved_weight = doc_achieved + filing_achieved
    breakdown.documents_score = _percent(doc_achieved, doc_total)
    breakdown.filings_score = _percent(filing_achieved, filing_total)

    if breakdown.total_weight > 0:
        score_value = round_half_up(breakdown.achieved_weight / breakdown.total_weight * 100)
    else:
        score_value = 100
    score_value = max(0, min(100, score_value))

    level = policy.classify(score_value)
    if level == ComplianceLevel.RED:
        recommendations.insert(0, URGENT_BANNER)
    elif level == ComplianceLevel.AMBER:
        recommendations.insert(0, ATTENTION_BANNER)

    return ComplianceResult(
        client_id=snapshot.client_id,
        score_value=score_value,
        level=level,
        breakdown=breakdown,
        issues=issues,
        recommendations=recommendations,
    )


# ===========================================
# DATABASE-BACKED ENGINE
# ===========================================

class ComplianceEngine:
    """Evaluates clients against their tenant's active rule sets."""

    def __init__(self, db: AsyncSession, policy: Optional[ScoringPolicy] = None):
        self.db = db
        self.policy = policy or ScoringPolicy.from_settings(app_settings)

    async def load_snapshot(self, tenant_id: uuid.UUID, client_id: uuid.UUID) -> ClientSnapshot:
        """Read a fresh snapshot of the client; raise if it is not in the tenant."""
        result = await self.db.execute(
            select(Client)
            .where(Client.id == client_id)
            .where(Client.tenant_id == tenant_id)
            .options(
                selectinload(Client.documents).selectinload(Document.versions),
                selectinload(Client.filings),
            )
            .execution_options(populate_existing=True)
        )
        client = result.scalar_one_or_none()
        if client is None:
            raise ClientNotFoundError(client_id, tenant_id=tenant_id)
        return ClientSnapshot.from_client(client)

    async def get_applicable_rules(self, tenant_id: uuid.UUID, snapshot: ClientSnapshot) -> List[ComplianceRule]:
        """Rules of every active rule set of the tenant that applies to the client."""
        result = await self.db.execute(
            select(ComplianceRuleSet)
            .where(ComplianceRuleSet.tenant_id == tenant_id)
            .where(ComplianceRuleSet.active == True)  # noqa: E712
            .options(selectinload(ComplianceRuleSet.rules))
            .order_by(ComplianceRuleSet.created_at)
        )
        rules: List[ComplianceRule] = []
        for rule_set in result.scalars().all():
            if self._applies(rule_set, snapshot):
                rules.extend(rule_set.rules)
        return rules

    @staticmethod
    def _applies(rule_set: ComplianceRuleSet, snapshot: ClientSnapshot) -> bool:
        if not rule_set.applies_to:
            return True
        try:
            applicability = RuleSetApplicability.model_validate(rule_set.applies_to)
        except ValidationError:
            logger.warning(f"Rule set {rule_set.id} has an invalid applies_to filter; not applied")
            return False
        return applicability.matches(snapshot.client_type, snapshot.sector)

    async def evaluate(
        self,
        tenant_id: uuid.UUID,
        client_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> ComplianceResult:
        """Compute the compliance result of one client. Side-effect free."""
        snapshot = await self.load_snapshot(tenant_id, client_id)
        rules = await self.get_applicable_rules(tenant_id, snapshot)
        result = score_snapshot(snapshot, rules, now=now, policy=self.policy)

        logger.info(
            f"Compliance calculated for client {client_id} (tenant {tenant_id}): "
            f"score={result.score_value} level={result.level.value} "
            f"missing={result.breakdown.missing_documents} overdue={result.breakdown.overdue_filings}"
        )
        return result
