"""
Membership Manager: roles and statuses of club members.

Authorization is checked inside every mutating operation, not by callers.
Role policy: officers manage (applications, announcements, events),
admins configure (club settings, membership, dues).
"""

from typing import Iterable, List, Optional, Tuple

from sqlalchemy import and_, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from univo.core.database import db_operation, with_db_transaction
from univo.core.exceptions import (
    NotFoundError,
    ValidationError,
    PermissionDeniedError,
    AlreadyMemberError,
    LastAdminError,
    LimitExceededError,
)
from univo.core.logging_utils import log_business_event
from univo.core.validations import utcnow
from univo.accounts.models.users import User
from univo.clubs.models.clubs import Club
from univo.clubs.models.club_members import ClubMember, MemberRole, MemberStatus
from univo.clubs.crud.clubs import (
    get_club_by_id,
    get_club_for_update,
    count_active_members,
)

MANAGER_ROLES = frozenset({MemberRole.officer, MemberRole.admin})
ADMIN_ROLES = frozenset({MemberRole.admin})


@db_operation
async def get_role(
    session: AsyncSession, club_id: int, user_id: int
) -> Optional[ClubMember]:
    """Запись участника для пары (клуб, пользователь) или None"""
    if not user_id:
        return None

    result = await session.execute(
        select(ClubMember).where(
            ClubMember.club_id == club_id,
            ClubMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def has_club_role(
    session: AsyncSession, club_id: int, user_id: int, roles: Iterable[MemberRole]
) -> bool:
    member = await get_role(session, club_id, user_id)
    return bool(
        member and member.status == MemberStatus.active and member.role in roles
    )


async def require_club_role(
    session: AsyncSession,
    club_id: int,
    user_id: int,
    roles: Iterable[MemberRole],
    action: str = "manage",
) -> ClubMember:
    """
    Проверить, что пользователь - активный участник клуба с одной из ролей.

    Raises:
        PermissionDeniedError: нет активного членства с нужной ролью
    """
    member = await get_role(session, club_id, user_id)
    if not member or member.status != MemberStatus.active or member.role not in roles:
        required = ", ".join(sorted(role.value for role in roles))
        raise PermissionDeniedError(action, "club", f"requires role: {required}")
    return member


@db_operation
async def get_member_by_id(session: AsyncSession, member_id: int) -> ClubMember:
    if not member_id or member_id <= 0:
        raise ValidationError("Member ID must be positive")

    result = await session.execute(
        select(ClubMember)
        .where(ClubMember.id == member_id)
        .execution_options(populate_existing=True)
    )
    member = result.scalar_one_or_none()
    if not member:
        raise NotFoundError("Club member", str(member_id))
    return member


async def _other_active_admins(
    session: AsyncSession, club_id: int, exclude_member_id: int
) -> int:
    # FOR UPDATE: два администратора не могут одновременно разжаловать друг друга
    result = await session.execute(
        select(ClubMember.id)
        .where(
            ClubMember.club_id == club_id,
            ClubMember.role == MemberRole.admin,
            ClubMember.status == MemberStatus.active,
            ClubMember.id != exclude_member_id,
        )
        .with_for_update()
    )
    return len(result.scalars().all())


async def _ensure_admin_remains(session: AsyncSession, member: ClubMember) -> None:
    if await _other_active_admins(session, member.club_id, member.id) == 0:
        raise LastAdminError(member.club_id)


async def _ensure_capacity(session: AsyncSession, club: Club) -> None:
    if club.max_members is None:
        return
    current = await count_active_members(session, club.id)
    if current >= club.max_members:
        raise LimitExceededError("Club members", club.max_members, current)


async def upsert_membership(
    session: AsyncSession,
    club: Club,
    user_id: int,
    role: MemberRole = MemberRole.member,
    status: MemberStatus = MemberStatus.active,
) -> ClubMember:
    """
    Вставить участника или реактивировать существующую запись.

    Не делает commit: вызывается внутри транзакции add_member или
    review_application.
    """
    existing = await get_role(session, club.id, user_id)
    if existing and existing.status == MemberStatus.active:
        raise AlreadyMemberError(club.id, user_id)

    if status == MemberStatus.active:
        await _ensure_capacity(session, club)

    if existing:
        # UNIQUE(club_id, user_id): строка одна, меняем её на месте
        existing.role = role
        existing.status = status
        existing.joined_at = utcnow()
        await session.flush()
        return existing

    member = ClubMember(club_id=club.id, user_id=user_id, role=role, status=status)
    session.add(member)
    await session.flush()
    return member


async def add_member(
    session: AsyncSession,
    club_id: int,
    user_id: int,
    actor_id: int,
    role: MemberRole = MemberRole.member,
    status: MemberStatus = MemberStatus.active,
) -> ClubMember:
    """Добавить участника напрямую (только администратор клуба)"""

    async def _add_member_operation(session: AsyncSession):
        club = await get_club_for_update(session, club_id)
        await require_club_role(session, club_id, actor_id, ADMIN_ROLES, "add members to")

        user = await session.execute(select(User.id).where(User.id == user_id))
        if not user.scalar_one_or_none():
            raise NotFoundError("User", str(user_id))

        return await upsert_membership(session, club, user_id, role, status)

    try:
        member = await with_db_transaction(session, _add_member_operation)
    except IntegrityError:
        # Параллельная вставка той же пары (клуб, пользователь)
        raise AlreadyMemberError(club_id, user_id)

    await session.refresh(member)
    log_business_event(
        "member_added",
        "club_member",
        member.id,
        {"club_id": club_id, "user_id": user_id, "role": role.value, "by": actor_id},
    )
    return member


async def update_member(
    session: AsyncSession,
    member_id: int,
    actor_id: int,
    role: Optional[MemberRole] = None,
    status: Optional[MemberStatus] = None,
) -> ClubMember:
    """
    Сменить роль и/или статус участника (только администратор клуба).

    Изменение, после которого в клубе не останется активного администратора,
    отклоняется с LastAdminError.
    """
    if role is None and status is None:
        raise ValidationError("Either role or status must be provided")

    async def _update_member_operation(session: AsyncSession):
        member = await get_member_by_id(session, member_id)
        club = await get_club_for_update(session, member.club_id)
        await require_club_role(
            session, member.club_id, actor_id, ADMIN_ROLES, "change members of"
        )

        new_role = role or member.role
        new_status = status or member.status
        previous = {"role": member.role.value, "status": member.status.value}

        loses_admin = (
            member.role == MemberRole.admin
            and member.status == MemberStatus.active
            and (new_role != MemberRole.admin or new_status != MemberStatus.active)
        )
        if loses_admin:
            await _ensure_admin_remains(session, member)

        if new_status == MemberStatus.active and member.status != MemberStatus.active:
            await _ensure_capacity(session, club)

        member.role = new_role
        member.status = new_status
        await session.flush()
        return member, previous

    member, previous = await with_db_transaction(session, _update_member_operation)
    await session.refresh(member)

    log_business_event(
        "member_role_changed",
        "club_member",
        member.id,
        {
            "club_id": member.club_id,
            "from": previous,
            "to": {"role": member.role.value, "status": member.status.value},
            "by": actor_id,
        },
    )
    return member


async def remove_member(session: AsyncSession, member_id: int, actor_id: int) -> None:
    """
    Удалить участника. Администратор может удалить любого, участник - себя.
    Последнего активного администратора удалить нельзя.
    """

    async def _remove_member_operation(session: AsyncSession):
        member = await get_member_by_id(session, member_id)
        await get_club_for_update(session, member.club_id)

        if member.user_id != actor_id:
            await require_club_role(
                session, member.club_id, actor_id, ADMIN_ROLES, "remove members from"
            )

        if member.role == MemberRole.admin and member.status == MemberStatus.active:
            await _ensure_admin_remains(session, member)

        club_id, user_id = member.club_id, member.user_id
        await session.execute(
            delete(ClubMember)
            .where(ClubMember.id == member_id)
            .execution_options(synchronize_session=False)
        )
        session.expunge(member)
        return club_id, user_id

    club_id, user_id = await with_db_transaction(session, _remove_member_operation)
    log_business_event(
        "member_removed",
        "club_member",
        member_id,
        {"club_id": club_id, "user_id": user_id, "by": actor_id},
    )


@db_operation
async def list_members(
    session: AsyncSession,
    club_id: int,
    status: Optional[MemberStatus] = None,
    role: Optional[MemberRole] = None,
    skip: int = 0,
    limit: int = 50,
) -> Tuple[List[ClubMember], int]:
    """Участники клуба вместе с публичными данными пользователя"""
    await get_club_by_id(session, club_id)

    conditions = [ClubMember.club_id == club_id]
    if status is not None:
        conditions.append(ClubMember.status == status)
    if role is not None:
        conditions.append(ClubMember.role == role)

    total = (
        await session.execute(select(func.count(ClubMember.id)).where(and_(*conditions)))
    ).scalar() or 0

    result = await session.execute(
        select(ClubMember)
        .options(selectinload(ClubMember.user))
        .where(and_(*conditions))
        .order_by(ClubMember.joined_at, ClubMember.id)
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


@db_operation
async def list_user_clubs(
    session: AsyncSession, user_id: int
) -> List[Tuple[Club, ClubMember]]:
    """Клубы, где пользователь - активный участник, с его ролью"""
    result = await session.execute(
        select(Club, ClubMember)
        .join(ClubMember, ClubMember.club_id == Club.id)
        .where(
            ClubMember.user_id == user_id,
            ClubMember.status == MemberStatus.active,
        )
        .order_by(Club.name)
    )
    return result.all()
