from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.database import get_session
from univo.core.dependencies import get_current_user
from univo.core.limits import limiter
from univo.accounts.models.users import User
from univo.clubs.crud.members import update_member, remove_member
from univo.clubs.schemas.members import MemberUpdate, MemberRead

router = APIRouter(prefix="/club-members", tags=["Club Members"])


@router.patch("/{member_id}", response_model=MemberRead)
@limiter.limit("30/minute")
async def update_club_member(
    request: Request,
    member_id: int,
    member_update: MemberUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Change a member's role and/or status. Admin only.

    A change that would leave the club without an active admin
    fails with 409 `LAST_ADMIN`.
    """
    return await update_member(
        db,
        member_id,
        current_user.id,
        role=member_update.role,
        status=member_update.status,
    )


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
async def delete_club_member(
    request: Request,
    member_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Remove a member (admin), or leave the club (the member themself)."""
    await remove_member(db, member_id, current_user.id)
