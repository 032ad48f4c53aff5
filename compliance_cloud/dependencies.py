"""
Compliance Cloud - FastAPI Dependencies

Shared dependencies for database sessions, admin authentication and the
Celery queue registry.
"""

import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_cloud.config import settings
from compliance_cloud.database import get_async_session
from compliance_cloud.queue.registry import QueueRegistry


async def get_db(db: AsyncSession = Depends(get_async_session)) -> AsyncSession:
    return db


async def require_admin_token(
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
) -> None:
    """
    Check the ``X-Admin-Token`` header against ``ADMIN_API_TOKEN``.

    Every request is refused while no token is configured.
    """
    expected = settings.admin_api_token
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token",
        )


def get_queue_registry(request: Request) -> QueueRegistry:
    registry = getattr(request.app.state, "queue_registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queues are not running",
        )
    return registry
