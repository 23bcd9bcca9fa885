from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.database import get_session
from univo.core.dependencies import get_current_user
from univo.core.limits import limiter
from univo.accounts.models.users import User
from univo.clubs.crud.applications import (
    get_application,
    review_application,
    withdraw_application,
)
from univo.clubs.schemas.applications import ApplicationRead, ApplicationReview

router = APIRouter(prefix="/club-applications", tags=["Club Applications"])


@router.get("/{application_id}", response_model=ApplicationRead)
async def get_club_application(
    application_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Visible to the applicant and to the club's officers and admins."""
    return await get_application(db, application_id, current_user.id)


@router.patch("/{application_id}", response_model=ApplicationRead)
@limiter.limit("30/minute")
async def review_club_application(
    request: Request,
    application_id: int,
    review: ApplicationReview,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Accept or reject a pending application (officers and admins).

    Accepting makes the applicant an active member. The applicant is
    notified either way. A second review fails with 409 `ALREADY_REVIEWED`.
    """
    return await review_application(db, application_id, review.status, current_user.id)


@router.delete("/{application_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
async def withdraw_club_application(
    request: Request,
    application_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Withdraw your own application while it is still pending."""
    await withdraw_application(db, application_id, current_user.id)
