from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.database import get_session
from univo.core.dependencies import get_current_user
from univo.core.limits import limiter
from univo.core.schemas import Page
from univo.accounts.models.users import User
from univo.clubs.crud.clubs import (
    get_club_by_id,
    get_clubs_paginated,
    create_club,
    update_club,
    get_club_stats,
)
from univo.clubs.crud.members import (
    add_member,
    list_members,
    has_club_role,
    MANAGER_ROLES,
)
from univo.clubs.crud.applications import apply_to_club, list_club_applications
from univo.clubs.models.club_applications import ApplicationStatus
from univo.clubs.models.club_members import MemberRole, MemberStatus
from univo.clubs.schemas.clubs import ClubCreate, ClubUpdate, ClubRead, ClubStats
from univo.clubs.schemas.members import MemberAdd, MemberRead, MemberWithUser
from univo.clubs.schemas.applications import ApplicationCreate, ApplicationRead
from univo.core.exceptions import PermissionDeniedError

router = APIRouter(prefix="/clubs", tags=["Clubs"])


@router.get("", response_model=Page[ClubRead])
@limiter.limit("60/minute")
async def get_clubs_list(
    request: Request,
    page: int = Query(1, ge=1, description="Page number starting from 1"),
    size: int = Query(20, ge=1, le=100, description="Number of items per page"),
    name: Optional[str] = Query(None, description="Filter by club name (partial match)"),
    category: Optional[str] = Query(None, description="Filter by category"),
    db: AsyncSession = Depends(get_session),
):
    """
    Get paginated list of active clubs with optional filters.

    - **page**: Page number (starts from 1)
    - **size**: Number of clubs per page (max 100)
    - **name**: Filter by club name (partial match)
    - **category**: Filter by category (exact match)
    """
    skip = (page - 1) * size
    clubs, total = await get_clubs_paginated(
        db, skip=skip, limit=size, name=name, category=category
    )
    return Page[ClubRead].build(clubs, total, page, size)


@router.post("", response_model=ClubRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def create_new_club(
    request: Request,
    club: ClubCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Create a new club. The authenticated user becomes its first admin.

    - **name**: Unique club name (required)
    - **description**: Club description (required)
    - **category**, **logo**, **banner**: optional
    - **maxMembers**: member limit, empty for unlimited
    """
    return await create_club(db, club, current_user.id)


@router.get("/{club_id}", response_model=ClubRead)
async def get_club(club_id: int, db: AsyncSession = Depends(get_session)):
    return await get_club_by_id(db, club_id)


@router.patch("/{club_id}", response_model=ClubRead)
@limiter.limit("20/minute")
async def update_existing_club(
    request: Request,
    club_id: int,
    club_update: ClubUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Update club settings. Only club admins can do this."""
    return await update_club(db, club_id, club_update, current_user.id)


@router.get("/{club_id}/stats", response_model=ClubStats)
async def get_club_dashboard_stats(
    club_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Dashboard numbers for club officers and admins."""
    return await get_club_stats(db, club_id, current_user.id)


@router.get("/{club_id}/members", response_model=Page[MemberWithUser])
async def get_club_members(
    club_id: int,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=100),
    member_status: MemberStatus = Query(MemberStatus.active, alias="status"),
    role: Optional[MemberRole] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    List club members. Anyone signed in sees active members;
    inactive and pending members are visible to officers and admins only.
    """
    if member_status != MemberStatus.active and not await has_club_role(
        db, club_id, current_user.id, MANAGER_ROLES
    ):
        raise PermissionDeniedError("view", "club members", "officers and admins only")

    members, total = await list_members(
        db,
        club_id,
        status=member_status,
        role=role,
        skip=(page - 1) * size,
        limit=size,
    )
    return Page[MemberWithUser].build(members, total, page, size)


@router.post(
    "/{club_id}/members", response_model=MemberRead, status_code=status.HTTP_201_CREATED
)
@limiter.limit("30/minute")
async def add_club_member(
    request: Request,
    club_id: int,
    member: MemberAdd,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Add a user to the club directly. Admin only."""
    return await add_member(
        db, club_id, member.user_id, current_user.id, member.role, member.status
    )


@router.post(
    "/{club_id}/apply", response_model=ApplicationRead, status_code=status.HTTP_201_CREATED
)
@limiter.limit("10/minute")
async def apply(
    request: Request,
    club_id: int,
    application: ApplicationCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Apply to join a club.

    Fails with 409 when the user is already an active member
    (`ALREADY_MEMBER`) or has a pending application (`DUPLICATE_PENDING_APPLICATION`).
    """
    return await apply_to_club(db, club_id, current_user.id, application.cover_letter)


@router.get("/{club_id}/applications", response_model=Page[ApplicationRead])
async def get_club_applications(
    club_id: int,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    application_status: Optional[ApplicationStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Applications to the club. Officers and admins only."""
    applications, total = await list_club_applications(
        db,
        club_id,
        current_user.id,
        status=application_status,
        skip=(page - 1) * size,
        limit=size,
    )
    return Page[ApplicationRead].build(applications, total, page, size)
