from typing import List, Optional, Tuple

from sqlalchemy import and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.core.database import db_operation, with_db_transaction
from univo.core.exceptions import (
    NotFoundError,
    DuplicateError,
    ValidationError,
    BusinessLogicError,
)
from univo.core.logging_utils import log_business_event
from univo.core.validations import utcnow
from univo.clubs.models.clubs import Club
from univo.clubs.models.club_members import ClubMember, MemberRole, MemberStatus
from univo.clubs.models.club_applications import ClubApplication, ApplicationStatus
from univo.clubs.schemas.clubs import ClubCreate, ClubUpdate, ClubStats


@db_operation
async def get_club_by_id(session: AsyncSession, club_id: int) -> Club:
    """Получить клуб по ID или NotFoundError"""
    if not club_id or club_id <= 0:
        raise ValidationError("Club ID must be positive")

    result = await session.execute(select(Club).where(Club.id == club_id))
    club = result.scalar_one_or_none()
    if not club:
        raise NotFoundError("Club", str(club_id))
    return club


@db_operation
async def get_club_for_update(session: AsyncSession, club_id: int) -> Club:
    """То же, но с блокировкой строки клуба до конца транзакции"""
    result = await session.execute(
        select(Club)
        .where(Club.id == club_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    club = result.scalar_one_or_none()
    if not club:
        raise NotFoundError("Club", str(club_id))
    return club


@db_operation
async def get_clubs_paginated(
    session: AsyncSession,
    skip: int = 0,
    limit: int = 20,
    name: Optional[str] = None,
    category: Optional[str] = None,
    include_inactive: bool = False,
) -> Tuple[List[Club], int]:
    """Получить клубы с пагинацией и фильтрами"""
    conditions = []
    if not include_inactive:
        conditions.append(Club.is_active.is_(True))
    if name:
        conditions.append(Club.name.ilike(f"%{name.strip()}%"))
    if category:
        conditions.append(Club.category == category.strip())

    query = select(Club)
    count_query = select(func.count(Club.id))
    if conditions:
        query = query.where(and_(*conditions))
        count_query = count_query.where(and_(*conditions))

    total = (await session.execute(count_query)).scalar() or 0
    result = await session.execute(
        query.order_by(Club.name).offset(skip).limit(limit)
    )
    return result.scalars().all(), total


@db_operation
async def count_active_members(session: AsyncSession, club_id: int) -> int:
    result = await session.execute(
        select(func.count(ClubMember.id)).where(
            ClubMember.club_id == club_id,
            ClubMember.status == MemberStatus.active,
        )
    )
    return result.scalar() or 0


async def create_club(session: AsyncSession, club_data: ClubCreate, user_id: int) -> Club:
    """
    Создать клуб. Создатель становится его первым администратором
    в той же транзакции.
    """

    async def _create_club_operation(session: AsyncSession):
        existing = await session.execute(select(Club.id).where(Club.name == club_data.name))
        if existing.scalar_one_or_none():
            raise DuplicateError("Club", "name", club_data.name)

        club = Club(**club_data.model_dump(), created_by=user_id, is_active=True)
        session.add(club)
        await session.flush()

        session.add(
            ClubMember(
                club_id=club.id,
                user_id=user_id,
                role=MemberRole.admin,
                status=MemberStatus.active,
            )
        )
        await session.flush()
        return club

    try:
        club = await with_db_transaction(session, _create_club_operation)
    except IntegrityError:
        raise DuplicateError("Club", "name", club_data.name)

    await session.refresh(club)
    log_business_event("club_created", "club", club.id, {"created_by": user_id})
    return club


async def update_club(
    session: AsyncSession, club_id: int, club_data: ClubUpdate, actor_id: int
) -> Club:
    """Изменить клуб (только администратор клуба)"""
    # Локальный импорт: members импортирует этот модуль
    from univo.clubs.crud.members import require_club_role, ADMIN_ROLES

    update_data = club_data.model_dump(exclude_unset=True)

    async def _update_club_operation(session: AsyncSession):
        club = await get_club_by_id(session, club_id)
        await require_club_role(session, club_id, actor_id, ADMIN_ROLES, "update")

        new_name = update_data.get("name")
        if new_name and new_name != club.name:
            existing = await session.execute(
                select(Club.id).where(Club.name == new_name, Club.id != club_id)
            )
            if existing.scalar_one_or_none():
                raise DuplicateError("Club", "name", new_name)

        new_limit = update_data.get("max_members")
        if new_limit is not None:
            current = await count_active_members(session, club_id)
            if new_limit < current:
                raise BusinessLogicError(
                    "Member limit cannot be lower than the current member count",
                    {"max_members": new_limit, "active_members": current},
                )

        for field, value in update_data.items():
            if field in ("name", "description", "is_active") and value is None:
                continue
            setattr(club, field, value)

        await session.flush()
        return club

    try:
        club = await with_db_transaction(session, _update_club_operation)
    except IntegrityError:
        raise DuplicateError("Club", "name", update_data.get("name") or "")

    await session.refresh(club)
    return club


async def get_club_stats(session: AsyncSession, club_id: int, actor_id: int) -> ClubStats:
    """Сводка для панели клуба (officer/admin)"""
    from univo.clubs.crud.members import require_club_role, MANAGER_ROLES
    from univo.activities.models.events import Event
    from univo.activities.models.campaigns import Campaign

    await get_club_by_id(session, club_id)
    await require_club_role(session, club_id, actor_id, MANAGER_ROLES, "view statistics of")

    active_members = await count_active_members(session, club_id)

    officers = (
        await session.execute(
            select(func.count(ClubMember.id)).where(
                ClubMember.club_id == club_id,
                ClubMember.status == MemberStatus.active,
                ClubMember.role.in_([MemberRole.officer, MemberRole.admin]),
            )
        )
    ).scalar() or 0

    pending_applications = (
        await session.execute(
            select(func.count(ClubApplication.id)).where(
                ClubApplication.club_id == club_id,
                ClubApplication.status == ApplicationStatus.pending,
            )
        )
    ).scalar() or 0

    upcoming_events = (
        await session.execute(
            select(func.count(Event.id)).where(
                Event.club_id == club_id, Event.date >= utcnow()
            )
        )
    ).scalar() or 0

    active_campaigns = (
        await session.execute(
            select(func.count(Campaign.id)).where(
                Campaign.club_id == club_id, Campaign.is_active.is_(True)
            )
        )
    ).scalar() or 0

    total_raised = (
        await session.execute(
            select(func.coalesce(func.sum(Campaign.current_amount), 0)).where(
                Campaign.club_id == club_id
            )
        )
    ).scalar() or 0

    return ClubStats(
        club_id=club_id,
        active_members=active_members,
        officers=officers,
        pending_applications=pending_applications,
        upcoming_events=upcoming_events,
        active_campaigns=active_campaigns,
        total_raised=int(total_raised),
    )
