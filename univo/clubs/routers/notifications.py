from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.database import get_session
from univo.core.dependencies import get_current_user
from univo.core.schemas import Page
from univo.accounts.models.users import User
from univo.clubs.crud import notifications as crud_notifications
from univo.clubs.schemas.notifications import (
    NotificationRead,
    NotificationUpdate,
    UnreadCount,
    MarkAllReadResult,
)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=Page[NotificationRead])
async def get_notifications(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False, alias="unreadOnly"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    items, total = await crud_notifications.get_my_notifications(
        db, current_user.id, unread_only, skip=(page - 1) * size, limit=size
    )
    return Page[NotificationRead].build(items, total, page, size)


@router.get("/unread-count", response_model=UnreadCount)
async def get_unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    count = await crud_notifications.get_unread_count(db, current_user.id)
    return UnreadCount(count=count)


@router.post("/mark-all-read", response_model=MarkAllReadResult)
async def mark_all_as_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Mark every unread notification as read. Safe to repeat."""
    updated = await crud_notifications.mark_all_as_read(db, current_user.id)
    return MarkAllReadResult(updated=updated)


@router.get("/{notification_id}", response_model=NotificationRead)
async def get_notification(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await crud_notifications.get_notification(db, notification_id, current_user.id)


@router.patch("/{notification_id}", response_model=NotificationRead)
async def mark_as_read(
    notification_id: int,
    update: NotificationUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Mark one notification as read. Safe to repeat."""
    return await crud_notifications.mark_notification_as_read(
        db, notification_id, current_user.id
    )
