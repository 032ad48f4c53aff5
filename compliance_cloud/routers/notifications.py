"""
Compliance Cloud - Notifications Router

API endpoints for reading a user's in-app notifications.

Features:
- List notifications with unread filter
- Mark as read (single/all)
- Unread count
"""

import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_cloud.dependencies import get_db, require_admin_token
from compliance_cloud.schemas.notification import NotificationListResponse, NotificationResponse
from compliance_cloud.services.notification_service import NotificationService
from compliance_cloud.utils.error_handling import NotFoundError


router = APIRouter(
    prefix="/tenants/{tenant_id}/users/{user_id}/notifications",
    tags=["Notifications"],
    dependencies=[Depends(require_admin_token)],
)


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkAllReadResponse(BaseModel):
    marked_read: int


# ===========================================
# ENDPOINTS
# ===========================================

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Get a user's notifications, newest first."""
    service = NotificationService(db)
    notifications, total = await service.get_user_notifications(
        tenant_id, user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    unread_count = await service.get_unread_count(tenant_id, user_id)
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
        unread_count=unread_count,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return UnreadCountResponse(unread_count=await NotificationService(db).get_unread_count(tenant_id, user_id))


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_as_read(
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Mark all of a user's notifications as read."""
    count = await NotificationService(db).mark_all_as_read(tenant_id, user_id)
    return MarkAllReadResponse(marked_read=count)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_as_read(
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Mark one notification as read."""
    service = NotificationService(db)
    notification = await service.get_notification_by_id(notification_id, user_id)
    if notification is None or notification.tenant_id != tenant_id:
        raise NotFoundError("Notification", notification_id, tenant_id=tenant_id)
    await service.mark_as_read(notification_id, user_id)
    return NotificationResponse.model_validate(notification)
