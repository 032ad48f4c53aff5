"""
Compliance Cloud - Test Configuration

Pytest fixtures and configuration. Tests run against an in-memory SQLite
database through aiosqlite; every datetime is UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Dict, Iterable, Optional, Tuple
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import compliance_cloud.models  # noqa: F401
from compliance_cloud.database import Base
from compliance_cloud.models.client import (
    Client,
    Document,
    DocumentStatus,
    DocumentType,
    DocumentVersion,
    Filing,
    FilingStatus,
    FilingType,
    Task,
)
from compliance_cloud.models.compliance import ComplianceRule, ComplianceRuleSet, RuleType
from compliance_cloud.models.tenant import Role, Tenant, TenantUser, User
from compliance_cloud.schemas.notification import EmailJob


# Fixed clock for deadline arithmetic
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)

# Create test session factory
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh schema for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield TestSessionLocal

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ===========================================
# DATA FIXTURES
# ===========================================

class Seeder:
    """Builds tenants, clients, documents, filings and rules for a test."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._roles: Dict[str, Role] = {}
        self._document_types: Dict[Tuple, DocumentType] = {}
        self._filing_types: Dict[Tuple, FilingType] = {}

    async def _save(self, *rows):
        self.db.add_all(rows)
        await self.db.commit()
        return rows[0] if len(rows) == 1 else rows

    async def tenant(self, name: str = "Acme Accounting", is_active: bool = True) -> Tenant:
        return await self._save(Tenant(id=uuid4(), name=name, slug=f"t-{uuid4().hex[:8]}", is_active=is_active))

    async def user(self, name: str = "Ada Staff", email: Optional[str] = None, is_active: bool = True) -> User:
        email = email or f"{uuid4().hex[:8]}@example.com"
        return await self._save(User(id=uuid4(), name=name, email=email, is_active=is_active))

    async def role(self, name: str) -> Role:
        if name not in self._roles:
            self._roles[name] = await self._save(Role(id=uuid4(), name=name))
        return self._roles[name]

    async def member(self, tenant: Tenant, role_name: str, **user_kwargs) -> User:
        user = await self.user(**user_kwargs)
        role = await self.role(role_name)
        await self._save(TenantUser(id=uuid4(), tenant_id=tenant.id, user_id=user.id, role_id=role.id))
        return user

    async def client(self, tenant: Tenant, name: str = "Globex Ltd", type: str = "company", sector: str = None) -> Client:
        return await self._save(Client(id=uuid4(), tenant_id=tenant.id, name=name, type=type, sector=sector))

    async def document_type(self, tenant: Tenant, name: str) -> DocumentType:
        key = (tenant.id, name)
        if key not in self._document_types:
            self._document_types[key] = await self._save(DocumentType(id=uuid4(), tenant_id=tenant.id, name=name))
        return self._document_types[key]

    async def document(
        self,
        tenant: Tenant,
        client: Client,
        type_name: str,
        expiry: Optional[datetime] = None,
        status: DocumentStatus = DocumentStatus.VALID,
        title: Optional[str] = None,
        with_version: bool = True,
        earlier_expiries: Iterable[Optional[datetime]] = (),
    ) -> Document:
        """A document whose latest version expires at ``expiry``."""
        doc_type = await self.document_type(tenant, type_name)
        document = Document(
            id=uuid4(),
            tenant_id=tenant.id,
            client_id=client.id,
            document_type_id=doc_type.id,
            title=title or type_name,
            status=status,
        )
        rows = [document]
        if with_version:
            expiries = list(earlier_expiries) + [expiry]
            for number, version_expiry in enumerate(expiries, start=1):
                rows.append(DocumentVersion(
                    id=uuid4(),
                    document_id=document.id,
                    version_number=number,
                    expiry_date=version_expiry,
                ))
        await self._save(*rows)
        return document

    async def filing_type(self, tenant: Tenant, name: str, frequency: Optional[str] = None) -> FilingType:
        key = (tenant.id, name, frequency)
        if key not in self._filing_types:
            self._filing_types[key] = await self._save(
                FilingType(id=uuid4(), tenant_id=tenant.id, name=name, frequency=frequency)
            )
        return self._filing_types[key]

    async def filing(
        self,
        tenant: Tenant,
        client: Client,
        type_name: str,
        period_end: Optional[datetime],
        status: FilingStatus = FilingStatus.DRAFT,
        period_label: Optional[str] = None,
        frequency: Optional[str] = None,
        internal_notes: Optional[str] = None,
    ) -> Filing:
        filing_type = await self.filing_type(tenant, type_name, frequency)
        return await self._save(Filing(
            id=uuid4(),
            tenant_id=tenant.id,
            client_id=client.id,
            filing_type_id=filing_type.id,
            status=status,
            period_end=period_end,
            period_label=period_label,
            internal_notes=internal_notes,
        ))

    async def rule_set(
        self,
        tenant: Tenant,
        rules: Iterable[Tuple[RuleType, Optional[dict], float]],
        applies_to: Optional[dict] = None,
        active: bool = True,
    ) -> ComplianceRuleSet:
        rule_set = ComplianceRuleSet(
            id=uuid4(),
            tenant_id=tenant.id,
            name="Default rules",
            applies_to=applies_to,
            active=active,
        )
        rows = [rule_set] + [
            ComplianceRule(id=uuid4(), rule_set_id=rule_set.id, rule_type=rule_type, condition=condition, weight=weight)
            for rule_type, condition, weight in rules
        ]
        await self._save(*rows)
        return rule_set

    async def task(
        self,
        tenant: Tenant,
        assignee: User,
        filing: Optional[Filing] = None,
        document: Optional[Document] = None,
    ) -> Task:
        return await self._save(Task(
            id=uuid4(),
            tenant_id=tenant.id,
            title="Prepare",
            assigned_to_id=assignee.id,
            filing_id=filing.id if filing else None,
            document_id=document.id if document else None,
        ))


@pytest_asyncio.fixture
async def seed(db_session: AsyncSession) -> Seeder:
    return Seeder(db_session)


@pytest_asyncio.fixture
async def test_tenant(seed: Seeder) -> Tenant:
    return await seed.tenant()


@pytest_asyncio.fixture
async def test_client_record(seed: Seeder, test_tenant: Tenant) -> Client:
    return await seed.client(test_tenant)


class RecordingSink:
    """Email sink that keeps the jobs it receives."""

    def __init__(self, fail_on: Optional[int] = None):
        self.jobs = []
        self.fail_on = fail_on

    async def __call__(self, job: EmailJob) -> None:
        if self.fail_on is not None and len(self.jobs) == self.fail_on:
            raise RuntimeError("email queue rejected job")
        self.jobs.append(job)


@pytest.fixture
def email_sink() -> RecordingSink:
    return RecordingSink()


def days(n: float) -> timedelta:
    return timedelta(days=n)


# ===========================================
# API FIXTURES
# ===========================================

ADMIN_TOKEN = "test-admin-token"


@pytest_asyncio.fixture
async def api_app(session_factory, monkeypatch):
    """The FastAPI app bound to the test database, without its lifespan."""
    from compliance_cloud.config import settings
    from compliance_cloud.database import get_async_session
    from compliance_cloud.queue.registry import QUEUES, QueueRegistry
    from fixtures.celery_fake import FakeCeleryApp
    from main import app

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    monkeypatch.setattr(settings, "admin_api_token", ADMIN_TOKEN)
    app.dependency_overrides[get_async_session] = override_get_session
    app.state.queue_registry = QueueRegistry(FakeCeleryApp(workers={"worker@test": list(QUEUES)}))

    yield app

    app.dependency_overrides.clear()
    app.state.queue_registry = None


@pytest_asyncio.fixture
async def client(api_app) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client authenticated with the admin token."""
    async with AsyncClient(
        transport=ASGITransport(app=api_app),
        base_url="http://test",
        headers={"X-Admin-Token": ADMIN_TOKEN},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def anonymous_client(api_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=api_app), base_url="http://test") as ac:
        yield ac
