from typing import List, Optional, Tuple

from sqlalchemy import desc, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.core.database import db_operation, with_db_transaction
from univo.core.exceptions import NotFoundError
from univo.clubs.models.notifications import Notification, NotificationType


async def create_notification(
    session: AsyncSession,
    user_id: int,
    type: NotificationType,
    title: str,
    message: str,
    related_id: Optional[int] = None,
) -> Notification:
    """Добавить уведомление в текущую транзакцию (без commit)"""
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title[:255],
        message=message[:2048],
        related_id=related_id,
        is_read=False,
    )
    session.add(notification)
    await session.flush()
    return notification


@db_operation
async def get_my_notifications(
    session: AsyncSession,
    user_id: int,
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[Notification], int]:
    conditions = [Notification.user_id == user_id]
    if unread_only:
        conditions.append(Notification.is_read.is_(False))

    total = (
        await session.execute(select(func.count(Notification.id)).where(*conditions))
    ).scalar() or 0

    result = await session.execute(
        select(Notification)
        .where(*conditions)
        .order_by(desc(Notification.created_at), desc(Notification.id))
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


@db_operation
async def get_notification(
    session: AsyncSession, notification_id: int, user_id: int
) -> Notification:
    """Чужие уведомления не раскрываются: для них тоже NotFoundError"""
    result = await session.execute(
        select(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise NotFoundError("Notification", str(notification_id))
    return notification


@db_operation
async def get_unread_count(session: AsyncSession, user_id: int) -> int:
    result = await session.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
    )
    return result.scalar() or 0


async def mark_notification_as_read(
    session: AsyncSession, notification_id: int, user_id: int
) -> Notification:
    """Идемпотентно: повторная отметка ничего не меняет"""

    async def _mark_read_operation(session: AsyncSession):
        notification = await get_notification(session, notification_id, user_id)
        if not notification.is_read:
            notification.is_read = True
            await session.flush()
        return notification

    return await with_db_transaction(session, _mark_read_operation)


async def mark_all_as_read(session: AsyncSession, user_id: int) -> int:
    """Отметить все непрочитанные; возвращает число изменённых строк"""

    async def _mark_all_operation(session: AsyncSession):
        result = await session.execute(
            update(Notification)
            .where(Notification.user_id == user_id)
            .where(Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    return await with_db_transaction(session, _mark_all_operation)
