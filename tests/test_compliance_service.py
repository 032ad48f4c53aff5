"""
Compliance Cloud - Compliance Service Tests

Score persistence, tenant refresh and dashboard aggregates.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from conftest import NOW, days
from compliance_cloud.models.compliance import ComplianceLevel, ComplianceScore, RuleType
from compliance_cloud.schemas.jobs import BatchJobPayload
from compliance_cloud.services.compliance_engine import ScoringPolicy
from compliance_cloud.services.compliance_service import ComplianceService
from compliance_cloud.services.score_store import ComplianceScoreStore
from compliance_cloud.tasks.compliance_tasks import run_compliance_refresh
from compliance_cloud.utils.error_handling import ErrorCode
from compliance_cloud.utils.dates import as_utc


PASSPORT_RULE = (RuleType.DOCUMENT_REQUIRED, {"documentType": "Passport"}, 1.0)


@pytest.fixture
def service(db_session):
    return ComplianceService(db_session, ScoringPolicy())


class TestScoreStore:
    """Upsert semantics of stored scores."""

    @pytest.mark.asyncio
    async def test_recalculate_twice_keeps_one_row(self, service, db_session, seed, test_tenant, test_client_record):
        await seed.rule_set(test_tenant, [PASSPORT_RULE])

        await service.recalculate_client(test_tenant.id, test_client_record.id, now=NOW)
        await service.recalculate_client(test_tenant.id, test_client_record.id, now=NOW + days(1))

        count = await db_session.scalar(select(func.count(ComplianceScore.id)))
        assert count == 1

        stored = await ComplianceScoreStore(db_session).get(test_tenant.id, test_client_record.id)
        assert stored.score_value == 0
        assert stored.level == ComplianceLevel.RED
        assert stored.missing_count == 1
        assert stored.breakdown["missing_documents"] == 1
        assert as_utc(stored.last_calculated_at) == NOW + days(1)

    @pytest.mark.asyncio
    async def test_score_overwritten_when_client_improves(self, service, db_session, seed, test_tenant, test_client_record):
        await seed.rule_set(test_tenant, [PASSPORT_RULE])
        await service.recalculate_client(test_tenant.id, test_client_record.id, now=NOW)

        await seed.document(test_tenant, test_client_record, "Passport", expiry=NOW + days(400))
        await service.recalculate_client(test_tenant.id, test_client_record.id, now=NOW + days(1))

        stored = await ComplianceScoreStore(db_session).get(test_tenant.id, test_client_record.id)
        assert stored.score_value == 100
        assert stored.level == ComplianceLevel.GREEN
        assert stored.missing_count == 0

    @pytest.mark.asyncio
    async def test_last_calculated_at_never_moves_backwards(self, service, db_session, test_tenant, test_client_record):
        await service.recalculate_client(test_tenant.id, test_client_record.id, now=NOW)
        await service.recalculate_client(test_tenant.id, test_client_record.id, now=NOW - days(3))

        stored = await ComplianceScoreStore(db_session).get(test_tenant.id, test_client_record.id)
        assert as_utc(stored.last_calculated_at) == NOW

    @pytest.mark.asyncio
    async def test_expiring_count_includes_expired(self, service, db_session, seed, test_tenant, test_client_record):
        await seed.rule_set(test_tenant, [
            PASSPORT_RULE,
            (RuleType.DOCUMENT_REQUIRED, {"documentType": "Tax Certificate"}, 1.0),
        ])
        await seed.document(test_tenant, test_client_record, "Passport", expiry=NOW - days(1))
        await seed.document(test_tenant, test_client_record, "Tax Certificate", expiry=NOW + days(10))

        await service.recalculate_client(test_tenant.id, test_client_record.id, now=NOW)

        stored = await ComplianceScoreStore(db_session).get(test_tenant.id, test_client_record.id)
        assert stored.expiring_count == 2


class TestTenantAggregates:
    """Summary and clients-with-issues."""

    @pytest.mark.asyncio
    async def test_summary_and_issues(self, service, seed, test_tenant):
        await seed.rule_set(test_tenant, [PASSPORT_RULE])
        good = await seed.client(test_tenant, name="Good Co")
        bad = await seed.client(test_tenant, name="Bad Co")
        await seed.document(test_tenant, good, "Passport", expiry=NOW + days(400))

        outcome = await service.refresh_tenant(test_tenant.id, now=NOW)
        assert outcome.clients_updated == 2
        assert outcome.clients_failed == 0

        summary = await service.get_summary(test_tenant.id)
        assert summary.total_clients == 2
        assert summary.green == 1
        assert summary.red == 1
        assert summary.average_score == 50
        assert summary.total_missing_documents == 1

        issues = await service.get_clients_with_issues(test_tenant.id)
        assert [c.id for c in issues] == [bad.id]
        assert issues[0].compliance_level == ComplianceLevel.RED
        assert issues[0].missing_count == 1

    @pytest.mark.asyncio
    async def test_empty_tenant_summary(self, service, test_tenant):
        summary = await service.get_summary(test_tenant.id)
        assert summary.total_clients == 0
        assert summary.average_score == 0


class TestComplianceRefreshJob:
    """The multi-tenant refresh job."""

    @pytest.mark.asyncio
    async def test_refreshes_every_active_tenant(self, session_factory, seed):
        active = await seed.tenant(name="Active")
        inactive = await seed.tenant(name="Dormant", is_active=False)
        await seed.client(active)
        await seed.client(inactive)

        progress = []

        async def report(update):
            progress.append(update)

        result = await run_compliance_refresh(
            BatchJobPayload(),
            report_progress=report,
            session_factory=session_factory,
            now=NOW,
        )

        assert result.tenants_processed == 1
        assert result.clients_updated == 1
        assert result.errors == []
        assert progress == [{"current": 1, "total": 1, "tenant_id": str(active.id)}]

    @pytest.mark.asyncio
    async def test_unknown_tenant_recorded_as_error(self, session_factory):
        missing = uuid4()

        result = await run_compliance_refresh(
            BatchJobPayload(tenant_id=missing, triggered_by="manual"),
            session_factory=session_factory,
            now=NOW,
        )

        assert result.tenants_processed == 0
        assert len(result.errors) == 1
        assert result.errors[0]["tenant_id"] == str(missing)
        assert result.errors[0]["error_type"] == ErrorCode.TENANT_NOT_FOUND.value

    @pytest.mark.asyncio
    async def test_failing_tenant_does_not_stop_others(self, session_factory, seed, monkeypatch):
        first = await seed.tenant(name="First")
        second = await seed.tenant(name="Second")
        await seed.client(first)
        await seed.client(second)

        original = ComplianceService.refresh_tenant

        async def flaky_refresh(self, tenant_id, now=None):
            if tenant_id == first.id:
                raise RuntimeError("rule catalog corrupted")
            return await original(self, tenant_id, now=now)

        monkeypatch.setattr(ComplianceService, "refresh_tenant", flaky_refresh)

        result = await run_compliance_refresh(BatchJobPayload(), session_factory=session_factory, now=NOW)

        assert result.tenants_processed == 1
        assert result.clients_updated == 1
        assert len(result.errors) == 1
        assert result.errors[0]["tenant_id"] == str(first.id)
        assert "rule catalog corrupted" in result.errors[0]["error"]
