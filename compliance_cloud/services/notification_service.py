"""
Compliance Cloud - Notification Service

Reminder fan-out (one in-app notification and one queued email per
recipient) and the per-user notification operations.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_cloud.config import settings
from compliance_cloud.database import upsert_statement
from compliance_cloud.models.notification import (
    ChannelStatus,
    EntityKind,
    Notification,
    NotificationType,
    ReminderMarker,
    UrgencyLevel,
)
from compliance_cloud.schemas.notification import EmailJob, EmailTemplate, NotificationMetadata
from compliance_cloud.services.recipient_resolver import Recipient
from compliance_cloud.services.threshold_scanner import ReminderCandidate
from compliance_cloud.utils.dates import utcnow

logger = logging.getLogger(__name__)


# Enqueues one send-email job
EmailSink = Callable[[EmailJob], Awaitable[Any]]


def urgency_for(
    days: int,
    urgent_days: Optional[int] = None,
    high_days: Optional[int] = None,
) -> UrgencyLevel:
    urgent_days = settings.urgent_threshold_days if urgent_days is None else urgent_days
    high_days = settings.high_threshold_days if high_days is None else high_days
    if days <= urgent_days:
        return UrgencyLevel.URGENT
    if days <= high_days:
        return UrgencyLevel.HIGH
    return UrgencyLevel.NORMAL


@dataclass
class DispatchResult:
    notifications_created: int = 0
    emails_queued: int = 0


class NotificationDispatcher:
    """Persists reminder notifications and queues their emails."""

    def __init__(self, db: AsyncSession, email_sink: EmailSink):
        self.db = db
        self.email_sink = email_sink

    @staticmethod
    def build_content(entity: ReminderCandidate, urgency: UrgencyLevel) -> Tuple[str, str, str, str]:
        """(title, message, email subject, email template) for an entity."""
        label = urgency.value.upper()
        days = entity.days_until_due
        if entity.kind == EntityKind.FILING:
            title = f"{entity.type_name} due in {days} day(s)"
            message = f'{label}: Filing "{entity.type_name}" for client {entity.client_name} due in {days} day(s)'
            return title, message, f"{label}: Filing Deadline Approaching", EmailTemplate.FILING_REMINDER
        title = f"{entity.title} expires in {days} day(s)"
        message = f'{label}: Document "{entity.title}" for client {entity.client_name} expires in {days} day(s)'
        return title, message, f"{label}: Document Expiring Soon", EmailTemplate.DOCUMENT_EXPIRY

    async def dispatch(
        self,
        tenant_id: uuid.UUID,
        entity: ReminderCandidate,
        threshold: int,
        recipients: Iterable[Recipient],
    ) -> DispatchResult:
        """
        Notify every recipient about an entity that crossed ``threshold``.

        Each recipient gets at most one notification per deadline and
        threshold. A notification is committed before its email is queued and
        stamped with ``email_queued_at`` afterwards, so a rerun after a failed
        enqueue only retries the recipients whose email never left. The
        entity's reminder marker is advanced once every recipient is done;
        with no recipients the marker is left alone.
        """
        recipients = sorted(set(recipients), key=lambda r: str(r.user_id))
        if not recipients:
            logger.warning(
                f"No recipients for {entity.kind.value} {entity.entity_id} at {threshold}d "
                f"(tenant {tenant_id}); marker not advanced"
            )
            return DispatchResult()

        urgency = urgency_for(threshold)
        title, message, subject, template = self.build_content(entity, urgency)
        metadata = NotificationMetadata(
            entity_kind=entity.kind,
            entity_id=entity.entity_id,
            client_id=entity.client_id,
            client_name=entity.client_name,
            due_date=entity.due_at,
            days_until_due=entity.days_until_due,
            threshold_days=threshold,
            urgency_level=urgency,
            document_title=entity.title if entity.kind == EntityKind.DOCUMENT else None,
            document_type=entity.type_name if entity.kind == EntityKind.DOCUMENT else None,
            filing_type=entity.type_name if entity.kind == EntityKind.FILING else None,
            period_label=entity.period_label,
            filing_status=entity.status if entity.kind == EntityKind.FILING else None,
        )
        metadata_json = metadata.model_dump(mode="json", exclude_none=True)

        existing = await self.get_fired_notifications(entity, threshold)
        result = DispatchResult()
        for recipient in recipients:
            notification = existing.get(recipient.user_id)
            if notification is None:
                notification = Notification(
                    tenant_id=tenant_id,
                    recipient_user_id=recipient.user_id,
                    type=NotificationType.IN_APP,
                    channel_status=ChannelStatus.PENDING,
                    urgency=urgency,
                    title=title,
                    message=message,
                    entity_kind=entity.kind,
                    entity_id=entity.entity_id,
                    due_at=entity.due_at,
                    threshold_days=threshold,
                    extra_data=metadata_json,
                )
                self.db.add(notification)
                await self.db.commit()
                result.notifications_created += 1
            elif notification.email_queued_at is not None:
                continue

            await self.email_sink(EmailJob(
                recipient_email=recipient.email,
                recipient_name=recipient.name,
                subject=subject,
                template=template,
                data=metadata_json,
                notification_id=notification.id,
                tenant_id=tenant_id,
            ))
            notification.email_queued_at = utcnow()
            await self.db.commit()
            result.emails_queued += 1

        await self.mark_fired(tenant_id, entity, threshold)

        logger.info(
            f"Dispatched {entity.kind.value} {entity.entity_id} at {threshold}d (tenant {tenant_id}): "
            f"{result.notifications_created} notification(s), {result.emails_queued} email(s)"
        )
        return result

    async def get_fired_notifications(
        self,
        entity: ReminderCandidate,
        threshold: int,
    ) -> Dict[uuid.UUID, Notification]:
        """Notifications already created for this deadline and threshold, by recipient."""
        result = await self.db.execute(
            select(Notification)
            .where(Notification.entity_kind == entity.kind)
            .where(Notification.entity_id == entity.entity_id)
            .where(Notification.due_at == entity.due_at)
            .where(Notification.threshold_days == threshold)
        )
        return {n.recipient_user_id: n for n in result.scalars().all()}

    async def mark_fired(self, tenant_id: uuid.UUID, entity: ReminderCandidate, threshold: int) -> None:
        """Record ``threshold`` as the last one fired for the entity's deadline."""
        await self.db.execute(upsert_statement(
            self.db,
            ReminderMarker,
            {
                "id": uuid.uuid4(),
                "tenant_id": tenant_id,
                "entity_kind": entity.kind,
                "entity_id": entity.entity_id,
                "due_at": entity.due_at,
                "last_threshold_days": threshold,
                "last_fired_at": utcnow(),
            },
            ["entity_kind", "entity_id"],
        ))
        await self.db.commit()


class NotificationService:
    """Service for reading and maintaining user notifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_notification_by_id(
        self,
        notification_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> Optional[Notification]:
        query = select(Notification).where(Notification.id == notification_id)
        if user_id is not None:
            query = query.where(Notification.recipient_user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_user_notifications(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Notification], int]:
        """
        Get notifications for a user, newest first.

        Returns:
            Tuple of (notifications, total_count)
        """
        conditions = [
            Notification.tenant_id == tenant_id,
            Notification.recipient_user_id == user_id,
        ]
        if unread_only:
            conditions.append(Notification.is_read == False)  # noqa: E712

        count_result = await self.db.execute(select(func.count(Notification.id)).where(*conditions))
        total = count_result.scalar() or 0

        result = await self.db.execute(
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def get_unread_count(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id))
            .where(Notification.tenant_id == tenant_id)
            .where(Notification.recipient_user_id == user_id)
            .where(Notification.is_read == False)  # noqa: E712
        )
        return result.scalar() or 0

    async def mark_as_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Mark a notification as read."""
        notification = await self.get_notification_by_id(notification_id, user_id)
        if not notification:
            return False

        notification.mark_as_read()
        await self.db.commit()

        logger.info(f"Notification {notification_id} marked as read")
        return True

    async def mark_all_as_read(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> int:
        """Mark all notifications as read for a user."""
        result = await self.db.execute(
            update(Notification)
            .where(Notification.tenant_id == tenant_id)
            .where(Notification.recipient_user_id == user_id)
            .where(Notification.is_read == False)  # noqa: E712
            .values(is_read=True, read_at=utcnow())
        )
        await self.db.commit()

        count = result.rowcount
        logger.info(f"Marked {count} notifications as read for user {user_id}")
        return count

    async def record_email_result(
        self,
        notification_id: uuid.UUID,
        success: bool,
        error: Optional[str] = None,
    ) -> bool:
        """Set the channel status after an email attempt. False if the notification is gone."""
        notification = await self.get_notification_by_id(notification_id)
        if notification is None:
            return False

        if success:
            notification.mark_email_sent()
        else:
            notification.mark_email_failed(error or "unknown error")
        await self.db.commit()
        return True

    async def delete_old_notifications(self, days_old: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Delete notifications older than specified days."""
        days_old = settings.notification_retention_days if days_old is None else days_old
        cutoff = (now or utcnow()) - timedelta(days=days_old)

        result = await self.db.execute(
            delete(Notification).where(Notification.created_at < cutoff)
        )
        await self.db.commit()

        count = result.rowcount
        logger.info(f"Deleted {count} notifications older than {days_old} days")
        return count
