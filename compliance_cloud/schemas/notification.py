"""
Compliance Cloud - Notification Schemas

Typed notification metadata and the ``send-email`` job contract.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from compliance_cloud.models.notification import (
    ChannelStatus,
    EntityKind,
    NotificationType,
    UrgencyLevel,
)


class EmailTemplate:
    """Email template names."""
    DOCUMENT_EXPIRY = "document-expiry"
    FILING_REMINDER = "filing-reminder"
    COMPLIANCE_ALERT = "compliance-alert"
    DEFAULT = "default"


class NotificationMetadata(BaseModel):
    """Structured metadata stored on a reminder notification."""
    model_config = ConfigDict(extra="forbid")

    entity_kind: EntityKind
    entity_id: UUID
    client_id: UUID
    client_name: Optional[str] = None
    due_date: datetime
    days_until_due: int
    threshold_days: int
    urgency_level: UrgencyLevel

    # Document reminders
    document_title: Optional[str] = None
    document_type: Optional[str] = None

    # Filing reminders
    filing_type: Optional[str] = None
    period_label: Optional[str] = None
    filing_status: Optional[str] = None


class EmailJob(BaseModel):
    """Payload of a ``send-email`` job."""
    recipient_email: str = Field(..., min_length=3)
    recipient_name: str
    subject: str
    template: str = EmailTemplate.DEFAULT
    data: Dict[str, Any] = Field(default_factory=dict)
    notification_id: Optional[UUID] = None
    tenant_id: UUID


class EmailJobResult(BaseModel):
    """Outcome of one email delivery attempt."""
    success: bool
    notification_id: Optional[UUID] = None
    error: Optional[str] = None
    timestamp: datetime


class NotificationResponse(BaseModel):
    """Notification as returned to the user."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: NotificationType
    channel_status: ChannelStatus
    urgency: UrgencyLevel
    title: str
    message: str
    is_read: bool
    read_at: Optional[datetime] = None
    email_sent_at: Optional[datetime] = None
    created_at: datetime
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias=AliasChoices("extra_data", "metadata"))


class NotificationListResponse(BaseModel):
    """Page of notifications with the unread counter."""
    items: List[NotificationResponse]
    total: int = 0
    unread_count: int
