"""
Compliance Cloud - Client Records

Clients and the documents, filings and work items attached to them.

These tables are maintained by the CRUD side of the platform. The compliance
core reads them on every evaluation and writes nothing back except the
urgency note appended to Filing.internal_notes.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compliance_cloud.models.base import BaseModel, TenantScopedMixin

if TYPE_CHECKING:
    from compliance_cloud.models.tenant import Tenant, User


class DocumentStatus(str, Enum):
    """Review status of a client document."""
    VALID = "valid"
    PENDING_REVIEW = "pending_review"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class FilingStatus(str, Enum):
    """Lifecycle of a regulatory filing."""
    DRAFT = "draft"
    PREPARED = "prepared"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    OVERDUE = "overdue"
    REJECTED = "rejected"


# Filings still waiting on staff action
OUTSTANDING_FILING_STATUSES = (FilingStatus.DRAFT, FilingStatus.PREPARED)
COMPLETED_FILING_STATUSES = (FilingStatus.SUBMITTED, FilingStatus.APPROVED)


class Client(BaseModel, TenantScopedMixin):
    """A client of the firm (individual, company, trust...)."""

    __tablename__ = "clients"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="individual, company, partnership, ngo...",
    )
    sector: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="clients")
    documents: Mapped[List["Document"]] = relationship(
        "Document",
        back_populates="client",
        cascade="all, delete-orphan",
    )
    filings: Mapped[List["Filing"]] = relationship(
        "Filing",
        back_populates="client",
        cascade="all, delete-orphan",
    )


class DocumentType(BaseModel, TenantScopedMixin):
    """Kind of document a rule can require (passport, tax certificate...)."""

    __tablename__ = "document_types"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class Document(BaseModel, TenantScopedMixin):
    """A client document; content lives in its versions."""

    __tablename__ = "documents"

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    document_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("document_types.id", ondelete="RESTRICT"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        SQLEnum(DocumentStatus),
        default=DocumentStatus.VALID,
        nullable=False,
        index=True,
    )

    client: Mapped["Client"] = relationship("Client", back_populates="documents")
    document_type: Mapped["DocumentType"] = relationship("DocumentType", lazy="joined")
    versions: Mapped[List["DocumentVersion"]] = relationship(
        "DocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentVersion.version_number",
    )

    @property
    def latest_version(self) -> Optional["DocumentVersion"]:
        """Highest-numbered version, if any."""
        if not self.versions:
            return None
        return max(self.versions, key=lambda v: v.version_number)


class DocumentVersion(BaseModel):
    """One uploaded revision of a document with its validity window."""

    __tablename__ = "document_versions"

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    issue_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    storage_key: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Object storage key (managed by the storage service)",
    )

    document: Mapped["Document"] = relationship("Document", back_populates="versions")


class FilingType(BaseModel, TenantScopedMixin):
    """Kind of regulatory filing (VAT return, annual return...)."""

    __tablename__ = "filing_types"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    authority: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    frequency: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="monthly, quarterly, annual, one_off",
    )


class Filing(BaseModel, TenantScopedMixin):
    """A filing for one client and period."""

    __tablename__ = "filings"

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filing_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("filing_types.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status: Mapped[FilingStatus] = mapped_column(
        SQLEnum(FilingStatus),
        default=FilingStatus.DRAFT,
        nullable=False,
        index=True,
    )
    period_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        comment="Filing deadline",
    )
    period_label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    client: Mapped["Client"] = relationship("Client", back_populates="filings")
    filing_type: Mapped["FilingType"] = relationship("FilingType", lazy="joined")


class Task(BaseModel, TenantScopedMixin):
    """Work item, optionally tied to a filing or document and assigned to a user."""

    __tablename__ = "tasks"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="open", nullable=False)
    filing_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("filings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    assigned_to: Mapped[Optional["User"]] = relationship("User")
