"""
Compliance Cloud - Compliance Models

Rule catalog (rule sets and weighted rules) and the persisted latest
compliance score per client.

Scores are overwritten in place on every recomputation; no history is kept.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compliance_cloud.models.base import BaseModel, JSONType, TenantScopedMixin

if TYPE_CHECKING:
    from compliance_cloud.models.client import Client


class RuleType(str, Enum):
    """What a compliance rule requires."""
    DOCUMENT_REQUIRED = "document_required"
    FILING_REQUIRED = "filing_required"


class ComplianceLevel(str, Enum):
    """Traffic-light classification of a compliance score."""
    GREEN = "green"
    AMBER = "amber"
    RED = "red"


class ComplianceRuleSet(BaseModel, TenantScopedMixin):
    """
    Named, tenant-owned group of rules.

    ``applies_to`` narrows the clients the set is evaluated for, e.g.
    ``{"clientTypes": ["company"], "sectors": ["mining"]}``. A NULL filter
    means the set applies to every client.
    """

    __tablename__ = "compliance_rule_sets"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    applies_to: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Applicability filters (clientTypes, sectors)",
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    rules: Mapped[List["ComplianceRule"]] = relationship(
        "ComplianceRule",
        back_populates="rule_set",
        cascade="all, delete-orphan",
        order_by="ComplianceRule.created_at",
    )


class ComplianceRule(BaseModel):
    """A single weighted requirement inside a rule set."""

    __tablename__ = "compliance_rules"

    rule_set_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("compliance_rule_sets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rule_type: Mapped[RuleType] = mapped_column(SQLEnum(RuleType), nullable=False)
    condition: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="documentType, or filingType + frequency",
    )
    weight: Mapped[float] = mapped_column(
        Float,
        default=1.0,
        nullable=False,
        comment="Contribution unit in [0, 1]",
    )
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    rule_set: Mapped["ComplianceRuleSet"] = relationship("ComplianceRuleSet", back_populates="rules")


class ComplianceScore(BaseModel, TenantScopedMixin):
    """Latest computed score for a client. At most one row per (tenant, client)."""

    __tablename__ = "compliance_scores"
    __table_args__ = (
        UniqueConstraint("tenant_id", "client_id", name="uq_compliance_scores_tenant_client"),
    )

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    score_value: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[ComplianceLevel] = mapped_column(SQLEnum(ComplianceLevel), nullable=False, index=True)
    missing_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expiring_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Expiring plus expired documents",
    )
    overdue_filings_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    breakdown: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    client: Mapped["Client"] = relationship("Client", lazy="joined")
