from typing import List, Optional, Tuple

from sqlalchemy import and_, desc, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.core.database import db_operation, with_db_transaction
from univo.core.exceptions import PermissionDeniedError, NotFoundError
from univo.core.logging_utils import log_business_event
from univo.clubs.models.announcements import Announcement, TargetGroup
from univo.clubs.models.club_members import ClubMember, MemberRole, MemberStatus
from univo.clubs.schemas.announcements import AnnouncementCreate
from univo.clubs.crud.clubs import get_club_by_id
from univo.clubs.crud.members import require_club_role, MANAGER_ROLES
from univo.clubs.services.notification_service import fan_out_announcement


async def create_announcement(
    session: AsyncSession,
    data: AnnouncementCreate,
    author_id: int,
    is_platform_admin: bool = False,
) -> Tuple[Announcement, int]:
    """
    Опубликовать объявление и разослать уведомления в одной транзакции.

    Объявление клуба публикует officer/admin клуба, объявление платформы
    (без club_id) - только администратор платформы.
    """

    async def _create_announcement_operation(session: AsyncSession):
        if data.club_id is not None:
            await get_club_by_id(session, data.club_id)
            await require_club_role(
                session, data.club_id, author_id, MANAGER_ROLES, "post announcements to"
            )
        elif not is_platform_admin:
            raise PermissionDeniedError(
                "post", "platform announcements", "platform admins only"
            )

        announcement = Announcement(
            club_id=data.club_id,
            title=data.title,
            content=data.content,
            target_group=data.target_group,
            created_by=author_id,
        )
        session.add(announcement)
        await session.flush()

        recipients = await fan_out_announcement(session, announcement)
        return announcement, recipients

    announcement, recipients = await with_db_transaction(
        session, _create_announcement_operation
    )
    await session.refresh(announcement)

    log_business_event(
        "announcement_posted",
        "announcement",
        announcement.id,
        {
            "club_id": announcement.club_id,
            "target_group": announcement.target_group.value,
            "recipients": recipients,
        },
    )
    return announcement, recipients


def _visible_to_member():
    """Условие видимости объявления клуба для роли участника"""
    return or_(
        Announcement.target_group == TargetGroup.all,
        and_(
            Announcement.target_group == TargetGroup.members,
            ClubMember.role == MemberRole.member,
        ),
        and_(
            Announcement.target_group == TargetGroup.officers,
            ClubMember.role.in_([MemberRole.officer, MemberRole.admin]),
        ),
        ClubMember.role == MemberRole.admin,
        Announcement.created_by == ClubMember.user_id,
    )


@db_operation
async def get_announcements(
    session: AsyncSession,
    user_id: int,
    club_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[Announcement], int]:
    """
    Объявления, видимые пользователю: платформенные и объявления клубов,
    где он активный участник, с учётом целевой группы.
    """
    if club_id is not None:
        await get_club_by_id(session, club_id)

    query = select(Announcement).outerjoin(
        ClubMember,
        and_(
            ClubMember.club_id == Announcement.club_id,
            ClubMember.user_id == user_id,
            ClubMember.status == MemberStatus.active,
        ),
    )

    if club_id is not None:
        condition = and_(
            Announcement.club_id == club_id,
            ClubMember.id.is_not(None),
            _visible_to_member(),
        )
    else:
        condition = or_(
            Announcement.club_id.is_(None),
            and_(ClubMember.id.is_not(None), _visible_to_member()),
        )

    total = (
        await session.execute(
            select(func.count()).select_from(query.where(condition).subquery())
        )
    ).scalar() or 0

    result = await session.execute(
        query.where(condition)
        .order_by(desc(Announcement.created_at), desc(Announcement.id))
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


@db_operation
async def get_announcement(
    session: AsyncSession, announcement_id: int, user_id: int
) -> Announcement:
    """Объявление, если оно видно пользователю, иначе NotFoundError"""
    result = await session.execute(
        select(Announcement)
        .outerjoin(
            ClubMember,
            and_(
                ClubMember.club_id == Announcement.club_id,
                ClubMember.user_id == user_id,
                ClubMember.status == MemberStatus.active,
            ),
        )
        .where(
            Announcement.id == announcement_id,
            or_(
                Announcement.club_id.is_(None),
                and_(ClubMember.id.is_not(None), _visible_to_member()),
            ),
        )
    )
    announcement = result.scalar_one_or_none()
    if not announcement:
        raise NotFoundError("Announcement", str(announcement_id))
    return announcement
