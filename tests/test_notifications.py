"""
Compliance Cloud - Notification Tests

Recipient resolution, reminder fan-out and the per-user notification
operations.
"""

from datetime import timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from conftest import NOW, RecordingSink, days
from compliance_cloud.models.notification import (
    ChannelStatus,
    EntityKind,
    Notification,
    ReminderMarker,
    UrgencyLevel,
)
from compliance_cloud.schemas.notification import EmailTemplate
from compliance_cloud.services.notification_service import (
    NotificationDispatcher,
    NotificationService,
    urgency_for,
)
from compliance_cloud.services.recipient_resolver import EntityRef, Recipient, RecipientResolver
from compliance_cloud.services.threshold_scanner import ReminderCandidate
from compliance_cloud.tasks.maintenance_tasks import run_notification_cleanup
from compliance_cloud.utils.dates import utcnow


def filing_candidate(tenant, client, filing, days_until_due=7, threshold=7):
    return ReminderCandidate(
        kind=EntityKind.FILING,
        entity_id=filing.id,
        tenant_id=tenant.id,
        client_id=client.id,
        client_name=client.name,
        due_at=NOW + days(days_until_due),
        days_until_due=days_until_due,
        threshold=threshold,
        title="Q1 2026",
        type_name="VAT Return",
        period_label="Q1 2026",
        status="draft",
    )


def as_recipient(user):
    return Recipient(user_id=user.id, email=user.email, name=user.name)


async def add_notification(db, tenant, user, title="Reminder", created_at=None, is_read=False):
    notification = Notification(
        id=uuid4(),
        tenant_id=tenant.id,
        recipient_user_id=user.id,
        title=title,
        message=title,
        is_read=is_read,
        created_at=created_at or utcnow(),
    )
    db.add(notification)
    await db.commit()
    return notification


class TestRecipientResolver:
    """Role-based and assignment-based audiences."""

    @pytest.mark.asyncio
    async def test_roles_and_assignees_merged(self, db_session, seed, test_tenant, test_client_record):
        admin = await seed.member(test_tenant, "admin", name="Ada Admin")
        await seed.member(test_tenant, "viewer", name="Vic Viewer")
        assignee = await seed.member(test_tenant, "viewer", name="Tess Tasked")
        filing = await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))
        await seed.task(test_tenant, assignee, filing=filing)
        # assigned admin appears once
        await seed.task(test_tenant, admin, filing=filing)

        resolver = RecipientResolver(db_session, filing_roles=["admin"])
        recipients = await resolver.resolve(test_tenant.id, EntityRef(EntityKind.FILING, filing.id))

        assert {r.user_id for r in recipients} == {admin.id, assignee.id}
        assert len(recipients) == 2

    @pytest.mark.asyncio
    async def test_inactive_users_excluded(self, db_session, seed, test_tenant, test_client_record):
        await seed.member(test_tenant, "admin", is_active=False)
        retired = await seed.member(test_tenant, "viewer", is_active=False)
        filing = await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))
        await seed.task(test_tenant, retired, filing=filing)

        recipients = await RecipientResolver(db_session, filing_roles=["admin"]).resolve(
            test_tenant.id, EntityRef(EntityKind.FILING, filing.id)
        )

        assert recipients == set()

    @pytest.mark.asyncio
    async def test_members_of_other_tenants_excluded(self, db_session, seed, test_tenant, test_client_record):
        other = await seed.tenant(name="Other Firm")
        await seed.member(other, "admin")
        filing = await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))

        recipients = await RecipientResolver(db_session, filing_roles=["admin"]).resolve(
            test_tenant.id, EntityRef(EntityKind.FILING, filing.id)
        )

        assert recipients == set()

    @pytest.mark.asyncio
    async def test_document_roles_and_document_tasks(self, db_session, seed, test_tenant, test_client_record):
        officer = await seed.member(test_tenant, "compliance_officer")
        await seed.member(test_tenant, "tax_preparer")
        assignee = await seed.member(test_tenant, "viewer")
        document = await seed.document(test_tenant, test_client_record, "Passport", expiry=NOW + days(30))
        other = await seed.document(test_tenant, test_client_record, "Licence", expiry=NOW + days(30))
        await seed.task(test_tenant, assignee, document=document)

        resolver = RecipientResolver(db_session, document_roles=["compliance_officer"])
        resolved = await resolver.resolve_many(test_tenant.id, EntityKind.DOCUMENT, [document.id, other.id])

        assert {r.user_id for r in resolved[document.id]} == {officer.id, assignee.id}
        assert {r.user_id for r in resolved[other.id]} == {officer.id}

    @pytest.mark.asyncio
    async def test_no_roles_configured(self, db_session, seed, test_tenant, test_client_record):
        await seed.member(test_tenant, "admin")
        filing = await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))

        recipients = await RecipientResolver(db_session, filing_roles=[]).resolve(
            test_tenant.id, EntityRef(EntityKind.FILING, filing.id)
        )

        assert recipients == set()


class TestUrgency:
    def test_levels(self):
        assert urgency_for(3) == UrgencyLevel.URGENT
        assert urgency_for(7) == UrgencyLevel.HIGH
        assert urgency_for(14) == UrgencyLevel.NORMAL
        assert urgency_for(5, urgent_days=5, high_days=10) == UrgencyLevel.URGENT


class TestNotificationDispatcher:
    """One notification and one email per recipient."""

    @pytest.mark.asyncio
    async def test_dispatch_filing_reminder(self, db_session, seed, test_tenant, test_client_record, email_sink):
        first = await seed.member(test_tenant, "admin", name="Ada Admin")
        second = await seed.member(test_tenant, "manager", name="Max Manager")
        filing = await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))
        candidate = filing_candidate(test_tenant, test_client_record, filing)

        result = await NotificationDispatcher(db_session, email_sink).dispatch(
            test_tenant.id, candidate, 7, {as_recipient(first), as_recipient(second)},
        )

        assert result.notifications_created == 2
        assert result.emails_queued == 2

        rows = (await db_session.execute(select(Notification))).scalars().all()
        assert {n.recipient_user_id for n in rows} == {first.id, second.id}
        notification = rows[0]
        assert notification.urgency == UrgencyLevel.HIGH
        assert notification.channel_status == ChannelStatus.PENDING
        assert notification.title == "VAT Return due in 7 day(s)"
        assert notification.message == (
            f'HIGH: Filing "VAT Return" for client {test_client_record.name} due in 7 day(s)'
        )
        assert notification.extra_data["entity_kind"] == "filing"
        assert notification.extra_data["entity_id"] == str(filing.id)
        assert notification.extra_data["threshold_days"] == 7
        assert notification.extra_data["filing_type"] == "VAT Return"
        assert "document_title" not in notification.extra_data

        assert {job.recipient_email for job in email_sink.jobs} == {first.email, second.email}
        job = email_sink.jobs[0]
        assert job.subject == "HIGH: Filing Deadline Approaching"
        assert job.template == EmailTemplate.FILING_REMINDER
        assert job.tenant_id == test_tenant.id
        assert job.notification_id in {n.id for n in rows}

        marker = await db_session.scalar(select(ReminderMarker).where(ReminderMarker.entity_id == filing.id))
        assert marker.last_threshold_days == 7
        assert marker.due_at.replace(tzinfo=timezone.utc) == candidate.due_at

    @pytest.mark.asyncio
    async def test_marker_advances_without_duplicating(self, db_session, session_factory, seed, test_tenant, test_client_record, email_sink):
        user = await seed.member(test_tenant, "admin")
        filing = await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))
        dispatcher = NotificationDispatcher(db_session, email_sink)

        await dispatcher.dispatch(
            test_tenant.id, filing_candidate(test_tenant, test_client_record, filing), 7, [as_recipient(user)],
        )
        await dispatcher.dispatch(
            test_tenant.id,
            filing_candidate(test_tenant, test_client_record, filing, days_until_due=3, threshold=3),
            3,
            [as_recipient(user)],
        )

        async with session_factory() as db:
            markers = (await db.execute(select(ReminderMarker))).scalars().all()
        assert len(markers) == 1
        assert markers[0].last_threshold_days == 3
        assert len(email_sink.jobs) == 2

    @pytest.mark.asyncio
    async def test_no_recipients_leaves_marker_unset(self, db_session, seed, test_tenant, test_client_record, email_sink):
        filing = await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))
        candidate = filing_candidate(test_tenant, test_client_record, filing)
        dispatcher = NotificationDispatcher(db_session, email_sink)

        result = await dispatcher.dispatch(test_tenant.id, candidate, 7, set())

        assert result.notifications_created == 0
        assert await db_session.scalar(select(func.count(ReminderMarker.id))) == 0

        # an assignee added later the same day is still reminded
        assignee = await seed.member(test_tenant, "viewer")
        result = await dispatcher.dispatch(test_tenant.id, candidate, 7, [as_recipient(assignee)])

        assert result.emails_queued == 1
        assert [job.recipient_email for job in email_sink.jobs] == [assignee.email]
        assert await db_session.scalar(select(func.count(ReminderMarker.id))) == 1

    @pytest.mark.asyncio
    async def test_failed_enqueue_retries_only_missing_recipients(self, session_factory, seed, test_tenant, test_client_record):
        first = await seed.member(test_tenant, "admin")
        second = await seed.member(test_tenant, "manager")
        filing = await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))
        candidate = filing_candidate(test_tenant, test_client_record, filing)
        recipients = [as_recipient(first), as_recipient(second)]

        failing = RecordingSink(fail_on=1)
        async with session_factory() as db:
            with pytest.raises(RuntimeError):
                await NotificationDispatcher(db, failing).dispatch(test_tenant.id, candidate, 7, recipients)

        retry_sink = RecordingSink()
        async with session_factory() as db:
            result = await NotificationDispatcher(db, retry_sink).dispatch(test_tenant.id, candidate, 7, recipients)

        assert result.notifications_created == 0
        assert result.emails_queued == 1
        assert {failing.jobs[0].recipient_email, retry_sink.jobs[0].recipient_email} == {first.email, second.email}

        async with session_factory() as db:
            rows = (await db.execute(select(Notification))).scalars().all()
            marker_count = await db.scalar(select(func.count(ReminderMarker.id)))
        assert sorted(str(n.recipient_user_id) for n in rows) == sorted([str(first.id), str(second.id)])
        assert all(n.email_queued_at is not None for n in rows)
        assert all(n.threshold_days == 7 and n.entity_id == filing.id for n in rows)
        assert marker_count == 1

    @pytest.mark.asyncio
    async def test_document_content(self, db_session, seed, test_tenant, test_client_record, email_sink):
        user = await seed.member(test_tenant, "compliance_officer")
        document = await seed.document(test_tenant, test_client_record, "Passport", expiry=NOW + days(30), title="Director passport")
        candidate = ReminderCandidate(
            kind=EntityKind.DOCUMENT,
            entity_id=document.id,
            tenant_id=test_tenant.id,
            client_id=test_client_record.id,
            client_name=test_client_record.name,
            due_at=NOW + days(30),
            days_until_due=30,
            threshold=30,
            title="Director passport",
            type_name="Passport",
            status="valid",
        )

        await NotificationDispatcher(db_session, email_sink).dispatch(test_tenant.id, candidate, 30, [as_recipient(user)])

        notification = await db_session.scalar(select(Notification))
        assert notification.urgency == UrgencyLevel.NORMAL
        assert notification.title == "Director passport expires in 30 day(s)"
        assert notification.extra_data["document_title"] == "Director passport"
        assert notification.extra_data["document_type"] == "Passport"
        assert email_sink.jobs[0].subject == "NORMAL: Document Expiring Soon"
        assert email_sink.jobs[0].template == EmailTemplate.DOCUMENT_EXPIRY
        assert email_sink.jobs[0].recipient_name == user.name


class TestNotificationService:
    """Listing, read state and delivery status."""

    @pytest.mark.asyncio
    async def test_list_newest_first_with_counts(self, db_session, seed, test_tenant):
        user = await seed.user()
        await add_notification(db_session, test_tenant, user, "older", created_at=NOW - days(2))
        await add_notification(db_session, test_tenant, user, "newer", created_at=NOW - days(1))
        await add_notification(db_session, test_tenant, user, "seen", created_at=NOW - days(3), is_read=True)

        service = NotificationService(db_session)
        items, total = await service.get_user_notifications(test_tenant.id, user.id)
        unread, unread_total = await service.get_user_notifications(test_tenant.id, user.id, unread_only=True)

        assert [n.title for n in items] == ["newer", "older", "seen"]
        assert total == 3
        assert [n.title for n in unread] == ["newer", "older"]
        assert unread_total == 2
        assert await service.get_unread_count(test_tenant.id, user.id) == 2

    @pytest.mark.asyncio
    async def test_mark_as_read_requires_recipient(self, db_session, seed, test_tenant):
        owner = await seed.user()
        stranger = await seed.user()
        notification = await add_notification(db_session, test_tenant, owner)
        service = NotificationService(db_session)

        assert await service.mark_as_read(notification.id, stranger.id) is False
        assert await service.mark_as_read(notification.id, owner.id) is True

        stored = await service.get_notification_by_id(notification.id)
        assert stored.is_read is True
        assert stored.read_at is not None

    @pytest.mark.asyncio
    async def test_mark_all_as_read(self, db_session, seed, test_tenant):
        user = await seed.user()
        for _ in range(3):
            await add_notification(db_session, test_tenant, user)
        service = NotificationService(db_session)

        assert await service.mark_all_as_read(test_tenant.id, user.id) == 3
        assert await service.get_unread_count(test_tenant.id, user.id) == 0

    @pytest.mark.asyncio
    async def test_record_email_result(self, db_session, seed, test_tenant):
        user = await seed.user()
        sent = await add_notification(db_session, test_tenant, user)
        failed = await add_notification(db_session, test_tenant, user)
        service = NotificationService(db_session)

        assert await service.record_email_result(sent.id, success=True) is True
        assert await service.record_email_result(failed.id, success=False, error="mailbox full") is True
        assert await service.record_email_result(uuid4(), success=True) is False

        sent = await service.get_notification_by_id(sent.id)
        failed = await service.get_notification_by_id(failed.id)
        assert sent.channel_status == ChannelStatus.SENT
        assert sent.email_sent_at is not None
        assert failed.channel_status == ChannelStatus.FAILED
        assert failed.email_error == "mailbox full"


class TestNotificationCleanup:
    @pytest.mark.asyncio
    async def test_old_notifications_deleted(self, db_session, session_factory, seed, test_tenant):
        user = await seed.user()
        await add_notification(db_session, test_tenant, user, "ancient", created_at=utcnow() - days(120))
        await add_notification(db_session, test_tenant, user, "recent", created_at=utcnow() - days(10))

        result = await run_notification_cleanup(days_old=90, session_factory=session_factory)

        assert result.notifications_deleted == 1
        async with session_factory() as db:
            titles = (await db.execute(select(Notification.title))).scalars().all()
            count = await db.scalar(select(func.count(Notification.id)))
        assert titles == ["recent"]
        assert count == 1
