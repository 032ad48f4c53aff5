"""
Compliance Cloud - Threshold Scanner

Finds outstanding filings and valid documents whose deadline is exactly a
reminder threshold away, per tenant.

Firing rules:
- An entity fires when its whole days until due equals a configured
  threshold. Each entity lands in at most one bucket per run.
- A ``ReminderMarker`` records the last threshold fired for the entity's
  current deadline. The same (or a less urgent) threshold never fires twice
  for that deadline, so rerunning a scan is harmless.
- Once an entity has fired for a deadline, a scan that finds it past a more
  urgent threshold (because a daily run was missed) fires that threshold.
- Filings due within the urgent window get an ``[URGENT]`` note appended
  to ``internal_notes`` once.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from compliance_cloud.config import settings
from compliance_cloud.database import async_session_maker
from compliance_cloud.models.client import (
    OUTSTANDING_FILING_STATUSES,
    Document,
    DocumentStatus,
    DocumentVersion,
    Filing,
)
from compliance_cloud.models.notification import EntityKind, ReminderMarker
from compliance_cloud.models.tenant import Tenant
from compliance_cloud.utils.dates import as_utc, days_until, utcnow
from compliance_cloud.utils.error_handling import PartialBatchFailure, is_transient_error

logger = logging.getLogger(__name__)


URGENT_MARKER = "[URGENT]"


def urgent_note(days: int) -> str:
    return f"{URGENT_MARKER} Due in {days} days - automated flag"


@dataclass(frozen=True)
class ReminderCandidate:
    """An entity that crossed a reminder threshold in this run."""
    kind: EntityKind
    entity_id: uuid.UUID
    tenant_id: uuid.UUID
    client_id: uuid.UUID
    client_name: str
    due_at: datetime
    days_until_due: int
    threshold: int
    title: str
    type_name: str
    period_label: Optional[str] = None
    status: Optional[str] = None


@dataclass
class TenantScan:
    """Result of scanning one entity kind of one tenant."""
    tenant_id: uuid.UUID
    kind: EntityKind
    entities_checked: int = 0
    buckets: Dict[int, List[ReminderCandidate]] = field(default_factory=dict)
    urgent_flagged: int = 0
    skipped_already_notified: int = 0

    def candidates(self) -> List[ReminderCandidate]:
        """Bucketed entities, most urgent threshold first."""
        return [c for threshold in sorted(self.buckets) for c in self.buckets[threshold]]


@dataclass
class ScanResult:
    tenants_processed: int = 0
    entities_checked: int = 0
    buckets_by_threshold: Dict[int, List[ReminderCandidate]] = field(default_factory=dict)
    urgent_flagged: int = 0
    skipped_already_notified: int = 0
    errors: List[Dict] = field(default_factory=list)

    def add(self, scan: TenantScan) -> None:
        self.entities_checked += scan.entities_checked
        self.urgent_flagged += scan.urgent_flagged
        self.skipped_already_notified += scan.skipped_already_notified
        for threshold, candidates in scan.buckets.items():
            self.buckets_by_threshold.setdefault(threshold, []).extend(candidates)

    def bucket_counts(self) -> Dict[int, int]:
        return {t: len(c) for t, c in sorted(self.buckets_by_threshold.items())}


def select_threshold(
    days: int,
    thresholds: Sequence[int],
    marker_threshold: Optional[int] = None,
) -> Optional[int]:
    """
    Threshold an entity ``days`` away from its deadline fires for, if any.

    ``marker_threshold`` is the last threshold already fired for the same
    deadline.
    """
    if days in thresholds:
        return days
    if marker_threshold is None:
        return None
    crossed = [t for t in thresholds if t >= days]
    if crossed and min(crossed) < marker_threshold:
        return min(crossed)
    return None


class ThresholdScanner:
    """Scans tenants for entities crossing reminder thresholds."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session_maker,
        filing_thresholds: Optional[Iterable[int]] = None,
        document_thresholds: Optional[Iterable[int]] = None,
        urgent_threshold_days: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.thresholds = {
            EntityKind.FILING: sorted(set(
                settings.filing_reminder_thresholds if filing_thresholds is None else filing_thresholds
            )),
            EntityKind.DOCUMENT: sorted(set(
                settings.document_expiry_thresholds if document_thresholds is None else document_thresholds
            )),
        }
        self.urgent_threshold_days = (
            settings.urgent_threshold_days if urgent_threshold_days is None else urgent_threshold_days
        )

    async def list_tenant_ids(self, db: AsyncSession, tenant_ids: Optional[Iterable[uuid.UUID]] = None) -> List[uuid.UUID]:
        """Active tenants, optionally restricted to ``tenant_ids``."""
        query = select(Tenant.id).where(Tenant.is_active == True)  # noqa: E712
        if tenant_ids is not None:
            query = query.where(Tenant.id.in_(list(tenant_ids)))
        result = await db.execute(query.order_by(Tenant.created_at))
        return list(result.scalars().all())

    async def scan(
        self,
        tenant_ids: Optional[Iterable[uuid.UUID]] = None,
        kinds: Sequence[EntityKind] = (EntityKind.FILING, EntityKind.DOCUMENT),
        now: Optional[datetime] = None,
    ) -> ScanResult:
        """
        Scan every requested tenant in its own session.

        A failing tenant is recorded in ``errors`` and the others continue.
        Connection-level errors abort the scan.
        """
        now = as_utc(now) or utcnow()
        async with self.session_factory() as db:
            ids = await self.list_tenant_ids(db, tenant_ids)

        result = ScanResult()
        for tenant_id in ids:
            try:
                async with self.session_factory() as db:
                    scans = [await self.scan_tenant(db, tenant_id, kind, now=now) for kind in kinds]
                for scan in scans:
                    result.add(scan)
                result.tenants_processed += 1
            except Exception as e:
                if is_transient_error(e):
                    raise
                logger.error(f"Threshold scan failed for tenant {tenant_id}: {e}", exc_info=True)
                result.errors.append(PartialBatchFailure(tenant_id, e, stage="scan").to_dict())

        logger.info(
            f"Threshold scan finished: {result.tenants_processed} tenant(s), "
            f"{result.entities_checked} checked, buckets={result.bucket_counts()}, "
            f"{result.urgent_flagged} flagged urgent, {len(result.errors)} error(s)"
        )
        return result

    async def scan_tenant(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        kind: EntityKind,
        now: Optional[datetime] = None,
    ) -> TenantScan:
        """Bucket one kind of entity of one tenant; commits urgent flags."""
        now = as_utc(now) or utcnow()
        thresholds = self.thresholds[kind]
        scan = TenantScan(tenant_id=tenant_id, kind=kind)
        if not thresholds:
            return scan
        window_end = now + timedelta(days=max(thresholds))

        if kind == EntityKind.FILING:
            entities = await self._load_filings(db, tenant_id, now, window_end)
        else:
            entities = await self._load_documents(db, tenant_id, now, window_end)
        scan.entities_checked = len(entities)

        markers = await self._load_markers(db, kind, [c.entity_id for c, _ in entities])
        seen: Dict[int, set] = defaultdict(set)

        for candidate, filing in entities:
            days = candidate.days_until_due

            if filing is not None and 0 <= days <= self.urgent_threshold_days:
                if self._flag_urgent(filing, days):
                    scan.urgent_flagged += 1

            marker = markers.get(candidate.entity_id)
            same_deadline = marker is not None and as_utc(marker.due_at) == candidate.due_at
            marker_threshold = marker.last_threshold_days if same_deadline else None

            threshold = select_threshold(days, thresholds, marker_threshold)
            if threshold is None:
                continue
            if marker_threshold is not None and marker_threshold <= threshold:
                scan.skipped_already_notified += 1
                continue
            if candidate.entity_id in seen[threshold]:
                continue
            seen[threshold].add(candidate.entity_id)

            scan.buckets.setdefault(threshold, []).append(
                replace(candidate, threshold=threshold)
            )

        if scan.urgent_flagged:
            await db.commit()

        counts = {t: len(c) for t, c in sorted(scan.buckets.items())}
        logger.info(
            f"Tenant {tenant_id} {kind.value} scan: {scan.entities_checked} checked, "
            f"buckets={counts}, "
            f"{scan.urgent_flagged} flagged urgent, {scan.skipped_already_notified} already notified"
        )
        return scan

    def _flag_urgent(self, filing: Filing, days: int) -> bool:
        notes = filing.internal_notes or ""
        if URGENT_MARKER in notes:
            return False
        note = urgent_note(days)
        filing.internal_notes = f"{notes}\n{note}" if notes else note
        return True

    async def _load_filings(self, db: AsyncSession, tenant_id, now, window_end):
        result = await db.execute(
            select(Filing)
            .where(Filing.tenant_id == tenant_id)
            .where(Filing.status.in_(OUTSTANDING_FILING_STATUSES))
            .where(Filing.period_end.is_not(None))
            .where(Filing.period_end >= now)
            .where(Filing.period_end <= window_end)
            .options(selectinload(Filing.client))
            .order_by(Filing.period_end, Filing.id)
            .execution_options(populate_existing=True)
        )
        entities = []
        for filing in result.scalars().unique().all():
            due_at = as_utc(filing.period_end)
            entities.append((
                ReminderCandidate(
                    kind=EntityKind.FILING,
                    entity_id=filing.id,
                    tenant_id=tenant_id,
                    client_id=filing.client_id,
                    client_name=filing.client.name,
                    due_at=due_at,
                    days_until_due=days_until(due_at, now),
                    threshold=0,
                    title=filing.period_label or filing.filing_type.name,
                    type_name=filing.filing_type.name,
                    period_label=filing.period_label,
                    status=filing.status.value,
                ),
                filing,
            ))
        return entities

    async def _load_documents(self, db: AsyncSession, tenant_id, now, window_end):
        in_window = (
            select(DocumentVersion.document_id)
            .where(DocumentVersion.expiry_date >= now)
            .where(DocumentVersion.expiry_date <= window_end)
        )
        result = await db.execute(
            select(Document)
            .where(Document.tenant_id == tenant_id)
            .where(Document.status == DocumentStatus.VALID)
            .where(Document.id.in_(in_window))
            .options(selectinload(Document.versions), selectinload(Document.client))
            .order_by(Document.id)
            .execution_options(populate_existing=True)
        )
        entities = []
        for document in result.scalars().unique().all():
            latest = document.latest_version
            due_at = as_utc(latest.expiry_date) if latest else None
            # Only the latest version's expiry counts
            if due_at is None or not now <= due_at <= window_end:
                continue
            entities.append((
                ReminderCandidate(
                    kind=EntityKind.DOCUMENT,
                    entity_id=document.id,
                    tenant_id=tenant_id,
                    client_id=document.client_id,
                    client_name=document.client.name,
                    due_at=due_at,
                    days_until_due=days_until(due_at, now),
                    threshold=0,
                    title=document.title,
                    type_name=document.document_type.name,
                    status=document.status.value,
                ),
                None,
            ))
        return entities

    async def _load_markers(self, db: AsyncSession, kind: EntityKind, entity_ids: List[uuid.UUID]) -> Dict[uuid.UUID, ReminderMarker]:
        if not entity_ids:
            return {}
        result = await db.execute(
            select(ReminderMarker)
            .where(ReminderMarker.entity_kind == kind)
            .where(ReminderMarker.entity_id.in_(entity_ids))
            .execution_options(populate_existing=True)
        )
        return {m.entity_id: m for m in result.scalars().all()}
