"""
Compliance Cloud - Maintenance Jobs
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from compliance_cloud.database import async_session_maker
from compliance_cloud.schemas.jobs import CleanupResult
from compliance_cloud.services.notification_service import NotificationService
from compliance_cloud.tasks.common import transient_io

logger = logging.getLogger(__name__)


async def run_notification_cleanup(
    days_old: Optional[int] = None,
    session_factory: async_sessionmaker = async_session_maker,
) -> CleanupResult:
    """Delete notifications past the retention window."""
    async with transient_io("notification-cleanup"):
        async with session_factory() as db:
            deleted = await NotificationService(db).delete_old_notifications(days_old=days_old)
    return CleanupResult(notifications_deleted=deleted)
