"""
Notification Service - in-app inbox rows created as side effects of
workflow events.

Every function here writes inside the caller's transaction and never
commits, so a failed review or announcement leaves no stray notifications.
"""

import logging
from typing import Optional, Set

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.accounts.models.users import User
from univo.clubs.models.announcements import Announcement, TargetGroup
from univo.clubs.models.club_applications import ClubApplication, ApplicationStatus
from univo.clubs.models.club_members import ClubMember, MemberRole, MemberStatus
from univo.clubs.models.notifications import Notification, NotificationType
from univo.clubs.crud.notifications import create_notification

logger = logging.getLogger(__name__)

TARGET_ROLES = {
    TargetGroup.all: None,
    TargetGroup.members: [MemberRole.member],
    TargetGroup.officers: [MemberRole.officer, MemberRole.admin],
}


async def notify(
    session: AsyncSession,
    user_id: int,
    type: NotificationType,
    title: str,
    message: str,
    related_id: Optional[int] = None,
) -> Notification:
    notification = await create_notification(
        session, user_id, type, title, message, related_id
    )
    logger.debug(
        f"Notification queued for user {user_id}",
        extra={"user_id": user_id, "notification_type": type.value},
    )
    return notification


async def notify_application_decision(
    session: AsyncSession,
    application: ClubApplication,
    decision: ApplicationStatus,
    club_name: str,
) -> Notification:
    """Уведомить заявителя о решении по заявке"""
    if decision == ApplicationStatus.accepted:
        title = f"Welcome to {club_name}!"
        message = f"Your application to join {club_name} has been accepted."
    else:
        title = f"Application to {club_name}"
        message = f"Your application to join {club_name} was not accepted."

    return await notify(
        session,
        application.user_id,
        NotificationType.application,
        title,
        message,
        application.id,
    )


async def get_announcement_recipients(
    session: AsyncSession, announcement: Announcement
) -> Set[int]:
    """
    Get set of user IDs who should receive an announcement.

    Club announcements go to active members of the target group,
    platform announcements (club_id is None) go to every user.
    The author is never notified about their own post.
    """
    if announcement.club_id is None:
        result = await session.execute(select(User.id))
    else:
        query = select(ClubMember.user_id).where(
            ClubMember.club_id == announcement.club_id,
            ClubMember.status == MemberStatus.active,
        )
        roles = TARGET_ROLES[announcement.target_group]
        if roles is not None:
            query = query.where(ClubMember.role.in_(roles))
        result = await session.execute(query)

    recipients = set(result.scalars().all())
    recipients.discard(announcement.created_by)
    return recipients


async def fan_out_announcement(session: AsyncSession, announcement: Announcement) -> int:
    """Создать по уведомлению на каждого получателя; возвращает их число"""
    recipients = await get_announcement_recipients(session, announcement)
    if not recipients:
        return 0

    await session.execute(
        insert(Notification),
        [
            {
                "user_id": user_id,
                "type": NotificationType.announcement,
                "title": announcement.title[:255],
                "message": announcement.content[:2048],
                "related_id": announcement.id,
                "is_read": False,
            }
            for user_id in sorted(recipients)
        ],
    )

    logger.info(
        f"Announcement {announcement.id} fanned out to {len(recipients)} users",
        extra={
            "announcement_id": announcement.id,
            "club_id": announcement.club_id,
            "recipients": len(recipients),
        },
    )
    return len(recipients)
