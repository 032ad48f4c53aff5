"""
Compliance Cloud - Recipient Resolver

Who to notify about a filing or document: every active tenant member holding
a notifying role, plus the active assignees of tasks linked to the entity.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_cloud.config import settings
from compliance_cloud.models.client import Task
from compliance_cloud.models.notification import EntityKind
from compliance_cloud.models.tenant import Role, TenantUser, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    """A user to notify. Equality is by user id only."""
    user_id: uuid.UUID
    email: str = field(compare=False)
    name: str = field(compare=False)


@dataclass(frozen=True)
class EntityRef:
    kind: EntityKind
    id: uuid.UUID


class RecipientResolver:
    """Merges role-based and assignment-based audiences."""

    def __init__(
        self,
        db: AsyncSession,
        filing_roles: Optional[Sequence[str]] = None,
        document_roles: Optional[Sequence[str]] = None,
    ):
        self.db = db
        self.roles_by_kind = {
            EntityKind.FILING: list(settings.filing_notify_roles if filing_roles is None else filing_roles),
            EntityKind.DOCUMENT: list(settings.document_notify_roles if document_roles is None else document_roles),
        }

    async def resolve(self, tenant_id: uuid.UUID, entity: EntityRef) -> Set[Recipient]:
        resolved = await self.resolve_many(tenant_id, entity.kind, [entity.id])
        return resolved.get(entity.id, set())

    async def resolve_many(
        self,
        tenant_id: uuid.UUID,
        kind: EntityKind,
        entity_ids: Iterable[uuid.UUID],
    ) -> Dict[uuid.UUID, Set[Recipient]]:
        """
        Recipients for several entities of one kind, with one role query and
        one assignment query.
        """
        entity_ids = list(entity_ids)
        if not entity_ids:
            return {}

        role_members = await self.get_role_recipients(tenant_id, self.roles_by_kind[kind])
        assignees = await self.get_assignees(tenant_id, kind, entity_ids)

        return {
            entity_id: set(role_members) | assignees.get(entity_id, set())
            for entity_id in entity_ids
        }

    async def get_role_recipients(self, tenant_id: uuid.UUID, role_names: Sequence[str]) -> Set[Recipient]:
        if not role_names:
            return set()
        result = await self.db.execute(
            select(User.id, User.email, User.name)
            .join(TenantUser, TenantUser.user_id == User.id)
            .join(Role, Role.id == TenantUser.role_id)
            .where(TenantUser.tenant_id == tenant_id)
            .where(Role.name.in_(list(role_names)))
            .where(User.is_active == True)  # noqa: E712
        )
        return {Recipient(user_id=row.id, email=row.email, name=row.name) for row in result.all()}

    async def get_assignees(
        self,
        tenant_id: uuid.UUID,
        kind: EntityKind,
        entity_ids: List[uuid.UUID],
    ) -> Dict[uuid.UUID, Set[Recipient]]:
        link = Task.filing_id if kind == EntityKind.FILING else Task.document_id
        result = await self.db.execute(
            select(link.label("entity_id"), User.id, User.email, User.name)
            .join(User, User.id == Task.assigned_to_id)
            .where(Task.tenant_id == tenant_id)
            .where(link.in_(entity_ids))
            .where(User.is_active == True)  # noqa: E712
        )
        assignees: Dict[uuid.UUID, Set[Recipient]] = defaultdict(set)
        for row in result.all():
            assignees[row.entity_id].add(Recipient(user_id=row.id, email=row.email, name=row.name))
        return assignees
