from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.database import get_session
from univo.core.dependencies import get_current_user
from univo.core.limits import limiter
from univo.core.schemas import Page
from univo.accounts.models.users import User
from univo.clubs.crud.announcements import (
    create_announcement,
    get_announcement,
    get_announcements,
)
from univo.clubs.schemas.announcements import (
    AnnouncementCreate,
    AnnouncementCreated,
    AnnouncementRead,
)

router = APIRouter(prefix="/announcements", tags=["Announcements"])


@router.get("", response_model=Page[AnnouncementRead])
async def get_announcements_list(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    club_id: Optional[int] = Query(None, alias="clubId", ge=1),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Platform announcements plus announcements of the user's clubs."""
    items, total = await get_announcements(
        db, current_user.id, club_id, skip=(page - 1) * size, limit=size
    )
    return Page[AnnouncementRead].build(items, total, page, size)


@router.post("", response_model=AnnouncementCreated, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def post_announcement(
    request: Request,
    data: AnnouncementCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Post an announcement and notify its audience.

    - with **clubId**: club officers/admins; recipients are active members
      of the **targetGroup** (`all`, `members`, `officers`)
    - without **clubId**: platform admins only; every user is notified
    """
    announcement, recipients = await create_announcement(
        db, data, current_user.id, current_user.is_platform_admin
    )
    return AnnouncementCreated(
        **AnnouncementRead.model_validate(announcement).model_dump(),
        recipients=recipients,
    )


@router.get("/{announcement_id}", response_model=AnnouncementRead)
async def get_single_announcement(
    announcement_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_announcement(db, announcement_id, current_user.id)
