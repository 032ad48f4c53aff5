"""
Compliance Cloud - Shared Job Helpers

Tenant selection, progress reporting and database error translation used by
every batch job.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_cloud.models.tenant import Tenant
from compliance_cloud.utils.error_handling import TRANSIENT_DB_ERRORS, TransientIOError

logger = logging.getLogger(__name__)


# Receives {"current", "total", "tenant_id"} while a job iterates tenants
ProgressReporter = Callable[[Dict[str, Any]], Awaitable[None]]


async def noop_progress(progress: Dict[str, Any]) -> None:
    return None


@asynccontextmanager
async def transient_io(context: str):
    """Re-raise connection-level database errors as ``TransientIOError``."""
    try:
        yield
    except TransientIOError:
        raise
    except TRANSIENT_DB_ERRORS as e:
        logger.error(f"{context}: storage unavailable: {e}")
        raise TransientIOError(f"{context}: storage unavailable", original_error=e) from e


async def list_tenant_ids(db: AsyncSession, tenant_id: Optional[uuid.UUID] = None) -> List[uuid.UUID]:
    """The requested tenant, or every active tenant when none is given."""
    query = select(Tenant.id)
    if tenant_id is not None:
        query = query.where(Tenant.id == tenant_id)
    else:
        query = query.where(Tenant.is_active == True)  # noqa: E712
    result = await db.execute(query.order_by(Tenant.created_at))
    return list(result.scalars().all())


class Stopwatch:
    def __init__(self):
        self.started = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)
