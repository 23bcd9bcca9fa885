from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.database import get_session
from univo.core.dependencies import get_current_user
from univo.core.exceptions import NotFoundError
from univo.core.limits import limiter
from univo.accounts.crud.users import get_user_by_id, update_user_profile
from univo.accounts.models.users import User
from univo.accounts.schemas.users import UserRead, UserPublic, UserUpdate
from univo.clubs.crud.members import list_user_clubs
from univo.clubs.crud.applications import list_user_applications
from univo.clubs.schemas.clubs import ClubWithRole, ClubRead
from univo.clubs.schemas.applications import ApplicationRead

router = APIRouter(prefix="/users", tags=["Users"])


@router.patch("/me", response_model=UserRead)
@limiter.limit("20/minute")
async def update_me(
    request: Request,
    user_data: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Update the current user's profile (names, email, bio, avatar)."""
    return await update_user_profile(db, current_user.id, user_data)


@router.get("/me/clubs", response_model=List[ClubWithRole])
async def get_my_clubs(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Clubs where the current user is an active member, with the role held."""
    rows = await list_user_clubs(db, current_user.id)
    return [
        ClubWithRole(
            **ClubRead.model_validate(club).model_dump(),
            role=member.role,
            membership_status=member.status,
            joined_at=member.joined_at,
        )
        for club, member in rows
    ]


@router.get("/me/applications", response_model=List[ApplicationRead])
async def get_my_applications(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await list_user_applications(db, current_user.id)


@router.get("/{user_id}", response_model=UserPublic)
async def get_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    user = await get_user_by_id(db, user_id)
    if not user:
        raise NotFoundError("User", str(user_id))
    return user
