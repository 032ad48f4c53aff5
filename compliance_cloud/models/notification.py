"""
Compliance Cloud - Notification Models

Notification: in-app record created for each recipient of a reminder, with
the delivery status of its outbound channel.

ReminderMarker: the last reminder threshold fired for a filing or document,
so that reruns of a scan never notify twice for the same threshold.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from compliance_cloud.models.base import BaseModel, JSONType, TenantScopedMixin


class NotificationType(str, Enum):
    """Delivery channel of a notification."""
    EMAIL = "email"
    IN_APP = "in_app"
    SMS = "sms"


class ChannelStatus(str, Enum):
    """Outbound delivery state."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class UrgencyLevel(str, Enum):
    """How close a deadline is."""
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"


class EntityKind(str, Enum):
    """Kind of record a reminder is about."""
    FILING = "filing"
    DOCUMENT = "document"


class Notification(BaseModel, TenantScopedMixin):
    """
    Notification model for storing user notifications.

    Read state is tracked in dedicated columns; ``extra_data`` holds the
    structured reminder metadata (see ``NotificationMetadata``).
    """

    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint(
            "recipient_user_id", "entity_kind", "entity_id", "due_at", "threshold_days",
            name="uq_notifications_reminder",
        ),
    )

    recipient_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType),
        default=NotificationType.IN_APP,
        nullable=False,
    )
    channel_status: Mapped[ChannelStatus] = mapped_column(
        SQLEnum(ChannelStatus),
        default=ChannelStatus.PENDING,
        nullable=False,
        index=True,
    )
    urgency: Mapped[UrgencyLevel] = mapped_column(
        SQLEnum(UrgencyLevel),
        default=UrgencyLevel.NORMAL,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # Status tracking
    is_read: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True,
    )
    read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Reminder identity; one notification per recipient, deadline and threshold
    entity_kind: Mapped[Optional[EntityKind]] = mapped_column(
        SQLEnum(EntityKind, native_enum=False, length=20),
        nullable=True,
    )
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    threshold_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Email delivery status
    email_queued_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    email_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    extra_data: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        comment="Structured reminder metadata",
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, type={self.type}, recipient={self.recipient_user_id})>"

    def mark_as_read(self) -> None:
        """Mark notification as read."""
        if not self.is_read:
            self.is_read = True
            self.read_at = datetime.now(timezone.utc)

    def mark_email_sent(self) -> None:
        """Record a successful email delivery."""
        self.channel_status = ChannelStatus.SENT
        self.email_sent_at = datetime.now(timezone.utc)
        self.email_error = None

    def mark_email_failed(self, error: str) -> None:
        """Record a failed email delivery."""
        self.channel_status = ChannelStatus.FAILED
        self.email_error = error


class ReminderMarker(BaseModel, TenantScopedMixin):
    """Last reminder threshold fired for one filing or document."""

    __tablename__ = "reminder_markers"
    __table_args__ = (
        UniqueConstraint("entity_kind", "entity_id", name="uq_reminder_markers_entity"),
    )

    entity_kind: Mapped[EntityKind] = mapped_column(SQLEnum(EntityKind), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    due_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Deadline the marker refers to",
    )
    last_threshold_days: Mapped[int] = mapped_column(Integer, nullable=False)
    last_fired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
