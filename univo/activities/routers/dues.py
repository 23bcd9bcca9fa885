from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.database import get_session
from univo.core.dependencies import get_current_user
from univo.core.limits import limiter
from univo.accounts.models.users import User
from univo.activities.crud.dues import (
    get_club_dues,
    get_dues_for_member,
    create_dues,
    update_dues,
    create_dues_payment,
    get_dues_payments,
    get_user_dues_payments,
)
from univo.activities.schemas.dues import (
    DuesCreate,
    DuesUpdate,
    DuesRead,
    DuesPaymentCreate,
    DuesPaymentRead,
)

router = APIRouter(tags=["Dues"])


@router.get("/clubs/{club_id}/dues", response_model=List[DuesRead])
async def get_dues_of_club(
    club_id: int,
    include_inactive: bool = Query(False, alias="includeInactive"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Dues of a club for its active members. Officers and admins may include inactive dues."""
    return await get_club_dues(db, club_id, current_user.id, include_inactive)


@router.post(
    "/clubs/{club_id}/dues", response_model=DuesRead, status_code=status.HTTP_201_CREATED
)
@limiter.limit("20/minute")
async def create_club_dues(
    request: Request,
    club_id: int,
    dues: DuesCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Define dues for the club. Admin only."""
    return await create_dues(db, club_id, dues, current_user.id)


@router.patch("/clubs/{club_id}/dues/{dues_id}", response_model=DuesRead)
@limiter.limit("20/minute")
async def update_club_dues(
    request: Request,
    club_id: int,
    dues_id: int,
    dues_update: DuesUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await update_dues(db, club_id, dues_id, dues_update, current_user.id)


@router.get("/clubs/{club_id}/dues/{dues_id}/payments", response_model=List[DuesPaymentRead])
async def get_payments_for_dues(
    club_id: int,
    dues_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Payments made against a dues definition. Officers and admins only."""
    return await get_dues_payments(db, club_id, dues_id, current_user.id)


@router.get("/dues/{dues_id}", response_model=DuesRead)
async def get_dues(
    dues_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_dues_for_member(db, dues_id, current_user.id)


@router.post(
    "/dues-payments", response_model=DuesPaymentRead, status_code=status.HTTP_201_CREATED
)
@limiter.limit("20/minute")
async def pay_dues(
    request: Request,
    payment: DuesPaymentCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Start paying dues. The amount is taken from the dues definition.
    One-off dues cannot be paid twice.
    """
    return await create_dues_payment(db, payment.dues_id, current_user.id)


@router.get("/dues-payments/my", response_model=List[DuesPaymentRead])
async def get_my_dues_payments(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_user_dues_payments(db, current_user.id)
