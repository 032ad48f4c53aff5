"""
Compliance Cloud - Reminder Job Tests

End-to-end runs of the filing reminder and document expiry jobs against
the database, with a recording email sink.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from conftest import NOW, RecordingSink, days
from compliance_cloud.models.client import DocumentStatus
from compliance_cloud.models.notification import EntityKind, Notification
from compliance_cloud.schemas.jobs import BatchJobPayload, TriggerSource
from compliance_cloud.services.threshold_scanner import ThresholdScanner
from compliance_cloud.tasks.reminder_tasks import run_reminder_check
from compliance_cloud.utils.error_handling import ErrorCode


@pytest.fixture
def scanner(session_factory):
    return ThresholdScanner(
        session_factory,
        filing_thresholds=[3, 7, 14],
        document_thresholds=[7, 14, 30],
        urgent_threshold_days=3,
    )


async def run(kind, sink, session_factory, scanner, tenant_id=None):
    return await run_reminder_check(
        kind,
        BatchJobPayload(tenant_id=tenant_id, triggered_by=TriggerSource.MANUAL),
        sink,
        session_factory=session_factory,
        scanner=scanner,
        now=NOW,
    )


async def notification_count(session_factory) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count(Notification.id)))


class TestFilingReminderCheck:
    """filing-reminder-check"""

    @pytest.mark.asyncio
    async def test_notifies_role_holders_and_assignees(self, session_factory, seed, test_tenant, test_client_record, email_sink, scanner):
        admin = await seed.member(test_tenant, "admin")
        assignee = await seed.member(test_tenant, "viewer")
        await seed.member(test_tenant, "viewer")
        filing = await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))
        await seed.task(test_tenant, assignee, filing=filing)

        result = await run(EntityKind.FILING, email_sink, session_factory, scanner)

        assert result.tenants_processed == 1
        assert result.entities_checked == 1
        assert result.notifications_created == 2
        assert result.emails_queued == 2
        assert result.errors == []
        assert {job.recipient_email for job in email_sink.jobs} == {admin.email, assignee.email}
        assert await notification_count(session_factory) == 2

    @pytest.mark.asyncio
    async def test_rerun_sends_nothing(self, session_factory, seed, test_tenant, test_client_record, email_sink, scanner):
        await seed.member(test_tenant, "admin")
        await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))

        await run(EntityKind.FILING, email_sink, session_factory, scanner)
        rerun = await run(EntityKind.FILING, email_sink, session_factory, scanner)

        assert rerun.notifications_created == 0
        assert rerun.emails_queued == 0
        assert rerun.skipped_already_notified == 1
        assert len(email_sink.jobs) == 1
        assert await notification_count(session_factory) == 1

    @pytest.mark.asyncio
    async def test_urgent_filing_flagged(self, session_factory, seed, test_tenant, test_client_record, email_sink, scanner):
        await seed.member(test_tenant, "admin")
        await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(3))

        result = await run(EntityKind.FILING, email_sink, session_factory, scanner)

        assert result.urgent_flagged == 1
        assert email_sink.jobs[0].subject == "URGENT: Filing Deadline Approaching"

    @pytest.mark.asyncio
    async def test_failed_email_enqueue_isolated_per_entity(self, session_factory, seed, test_tenant, email_sink, scanner):
        await seed.member(test_tenant, "admin")
        first_client = await seed.client(test_tenant, name="Alpha Ltd")
        second_client = await seed.client(test_tenant, name="Beta Ltd")
        await seed.filing(test_tenant, first_client, "VAT Return", NOW + days(7))
        await seed.filing(test_tenant, second_client, "VAT Return", NOW + days(7))
        sink = RecordingSink(fail_on=1)

        result = await run(EntityKind.FILING, sink, session_factory, scanner)

        assert result.tenants_processed == 1
        assert result.emails_queued == 1
        assert len(result.errors) == 1
        assert result.errors[0]["stage"].startswith("filing-reminder-check:filing:")
        assert "email queue rejected job" in result.errors[0]["error"]

        # the failed entity has no marker and fires again
        retry = await run(EntityKind.FILING, email_sink, session_factory, scanner)
        assert retry.emails_queued == 1
        assert retry.notifications_created == 0
        assert retry.skipped_already_notified == 1
        assert await notification_count(session_factory) == 2

    @pytest.mark.asyncio
    async def test_rerun_after_partial_enqueue_notifies_each_recipient_once(self, session_factory, seed, test_tenant, test_client_record, scanner):
        admin = await seed.member(test_tenant, "admin")
        manager = await seed.member(test_tenant, "manager")
        await seed.filing(test_tenant, test_client_record, "VAT Return", NOW + days(7))

        first_sink = RecordingSink(fail_on=1)
        first = await run(EntityKind.FILING, first_sink, session_factory, scanner)
        assert first.emails_queued == 1
        assert len(first.errors) == 1

        second_sink = RecordingSink()
        second = await run(EntityKind.FILING, second_sink, session_factory, scanner)

        assert second.notifications_created == 0
        assert second.emails_queued == 1
        emailed = [job.recipient_email for job in first_sink.jobs + second_sink.jobs]
        assert sorted(emailed) == sorted([admin.email, manager.email])

        async with session_factory() as db:
            rows = await db.execute(
                select(Notification.recipient_user_id, func.count(Notification.id))
                .group_by(Notification.recipient_user_id)
            )
            per_recipient = dict(rows.all())
        assert sorted(per_recipient.values()) == [1, 1]

        third = await run(EntityKind.FILING, RecordingSink(), session_factory, scanner)
        assert third.emails_queued == 0
        assert third.skipped_already_notified == 1

    @pytest.mark.asyncio
    async def test_single_tenant_run(self, session_factory, seed, email_sink, scanner):
        chosen = await seed.tenant(name="Chosen")
        other = await seed.tenant(name="Other")
        for tenant in (chosen, other):
            await seed.member(tenant, "admin")
            client = await seed.client(tenant)
            await seed.filing(tenant, client, "VAT Return", NOW + days(14))

        result = await run(EntityKind.FILING, email_sink, session_factory, scanner, tenant_id=chosen.id)

        assert result.tenants_processed == 1
        assert result.emails_queued == 1
        assert {job.tenant_id for job in email_sink.jobs} == {chosen.id}

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, session_factory, email_sink, scanner):
        result = await run(EntityKind.FILING, email_sink, session_factory, scanner, tenant_id=uuid4())

        assert result.tenants_processed == 0
        assert result.errors[0]["error_type"] == ErrorCode.TENANT_NOT_FOUND.value
        assert result.errors[0]["stage"] == "filing-reminder-check"


class TestExpiryCheck:
    """expiry-check"""

    @pytest.mark.asyncio
    async def test_expiring_document_notifies_officers(self, session_factory, seed, test_tenant, test_client_record, email_sink, scanner):
        officer = await seed.member(test_tenant, "compliance_officer")
        await seed.member(test_tenant, "tax_preparer")
        await seed.document(test_tenant, test_client_record, "Passport", expiry=NOW + days(30))
        await seed.document(test_tenant, test_client_record, "Licence", expiry=NOW + days(45))

        result = await run(EntityKind.DOCUMENT, email_sink, session_factory, scanner)

        assert result.entities_checked == 1
        assert result.notifications_created == 1
        assert [job.recipient_email for job in email_sink.jobs] == [officer.email]
        assert email_sink.jobs[0].data["document_type"] == "Passport"
        assert email_sink.jobs[0].data["threshold_days"] == 30

    @pytest.mark.asyncio
    async def test_rejected_documents_skipped(self, session_factory, seed, test_tenant, test_client_record, email_sink, scanner):
        await seed.member(test_tenant, "admin")
        await seed.document(
            test_tenant, test_client_record, "Passport", expiry=NOW + days(7), status=DocumentStatus.REJECTED,
        )

        result = await run(EntityKind.DOCUMENT, email_sink, session_factory, scanner)

        assert result.entities_checked == 0
        assert email_sink.jobs == []
