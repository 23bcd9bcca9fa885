from typing import List

from sqlalchemy import desc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.core.database import db_operation, with_db_transaction
from univo.core.exceptions import (
    NotFoundError,
    ValidationError,
    BusinessLogicError,
    ConflictError,
)
from univo.core.validations import utcnow
from univo.clubs.models.club_members import MemberRole
from univo.clubs.crud.clubs import get_club_by_id
from univo.clubs.crud.members import (
    has_club_role,
    require_club_role,
    ADMIN_ROLES,
    MANAGER_ROLES,
)
from univo.activities.models.dues import ClubDues, DuesPayment
from univo.activities.models.payment_status import PaymentStatus, initial_payment_status
from univo.activities.schemas.dues import DuesCreate, DuesUpdate

ALL_ROLES = frozenset(MemberRole)


@db_operation
async def get_dues_by_id(session: AsyncSession, dues_id: int) -> ClubDues:
    if not dues_id or dues_id <= 0:
        raise ValidationError("Dues ID must be positive")

    result = await session.execute(
        select(ClubDues)
        .where(ClubDues.id == dues_id)
        .execution_options(populate_existing=True)
    )
    dues = result.scalar_one_or_none()
    if not dues:
        raise NotFoundError("Dues", str(dues_id))
    return dues


async def get_dues_for_member(
    session: AsyncSession, dues_id: int, actor_id: int
) -> ClubDues:
    """Взносы видят только активные участники клуба"""
    dues = await get_dues_by_id(session, dues_id)
    await require_club_role(session, dues.club_id, actor_id, ALL_ROLES, "view dues of")
    return dues


async def get_club_dues(
    session: AsyncSession, club_id: int, actor_id: int, include_inactive: bool = False
) -> List[ClubDues]:
    await get_club_by_id(session, club_id)
    await require_club_role(session, club_id, actor_id, ALL_ROLES, "view dues of")

    query = select(ClubDues).where(ClubDues.club_id == club_id)
    # Неактивные взносы видят только officer/admin
    if not include_inactive or not await has_club_role(
        session, club_id, actor_id, MANAGER_ROLES
    ):
        query = query.where(ClubDues.is_active.is_(True))

    result = await session.execute(query.order_by(desc(ClubDues.created_at), desc(ClubDues.id)))
    return result.scalars().all()


async def create_dues(
    session: AsyncSession, club_id: int, dues_data: DuesCreate, actor_id: int
) -> ClubDues:

    async def _create_dues_operation(session: AsyncSession):
        await get_club_by_id(session, club_id)
        await require_club_role(session, club_id, actor_id, ADMIN_ROLES, "create dues for")

        dues = ClubDues(
            **dues_data.model_dump(), club_id=club_id, created_by=actor_id, is_active=True
        )
        session.add(dues)
        await session.flush()
        return dues

    dues = await with_db_transaction(session, _create_dues_operation)
    await session.refresh(dues)
    return dues


async def update_dues(
    session: AsyncSession,
    club_id: int,
    dues_id: int,
    dues_data: DuesUpdate,
    actor_id: int,
) -> ClubDues:
    update_data = dues_data.model_dump(exclude_unset=True)

    async def _update_dues_operation(session: AsyncSession):
        dues = await get_dues_by_id(session, dues_id)
        if dues.club_id != club_id:
            raise NotFoundError("Dues", str(dues_id))
        await require_club_role(session, club_id, actor_id, ADMIN_ROLES, "update dues of")

        for field, value in update_data.items():
            if value is None and field not in ("description", "due_date", "frequency"):
                continue
            setattr(dues, field, value)

        if dues.is_recurring and dues.frequency is None:
            raise ValidationError("Recurring dues require a frequency")
        if not dues.is_recurring:
            dues.frequency = None

        await session.flush()
        return dues

    dues = await with_db_transaction(session, _update_dues_operation)
    await session.refresh(dues)
    return dues


async def create_dues_payment(
    session: AsyncSession, dues_id: int, user_id: int
) -> DuesPayment:
    """
    Создать платёж по взносу. Сумма берётся из определения взноса;
    разовый взнос нельзя оплатить дважды.
    """

    async def _create_payment_operation(session: AsyncSession):
        dues = await get_dues_by_id(session, dues_id)
        await require_club_role(session, dues.club_id, user_id, ALL_ROLES, "pay dues of")

        if not dues.is_active:
            raise BusinessLogicError("Dues are no longer active", {"dues_id": dues_id})

        if not dues.is_recurring:
            existing = await session.execute(
                select(DuesPayment.id).where(
                    DuesPayment.dues_id == dues_id,
                    DuesPayment.user_id == user_id,
                    DuesPayment.payment_status != PaymentStatus.failed,
                )
            )
            if existing.scalars().first():
                raise ConflictError(
                    "These dues have already been paid",
                    {"dues_id": dues_id},
                    "DUES_ALREADY_PAID",
                )

        status = initial_payment_status(dues.amount)
        payment = DuesPayment(
            dues_id=dues_id,
            user_id=user_id,
            amount=dues.amount,
            payment_status=status,
            paid_at=utcnow() if status == PaymentStatus.completed else None,
        )
        session.add(payment)
        await session.flush()
        return payment

    payment = await with_db_transaction(session, _create_payment_operation)
    await session.refresh(payment)
    return payment


async def get_dues_payments(
    session: AsyncSession, club_id: int, dues_id: int, actor_id: int
) -> List[DuesPayment]:
    dues = await get_dues_by_id(session, dues_id)
    if dues.club_id != club_id:
        raise NotFoundError("Dues", str(dues_id))
    await require_club_role(session, club_id, actor_id, MANAGER_ROLES, "view dues payments of")

    result = await session.execute(
        select(DuesPayment)
        .where(DuesPayment.dues_id == dues_id)
        .order_by(desc(DuesPayment.created_at), desc(DuesPayment.id))
    )
    return result.scalars().all()


@db_operation
async def get_user_dues_payments(session: AsyncSession, user_id: int) -> List[DuesPayment]:
    result = await session.execute(
        select(DuesPayment)
        .where(DuesPayment.user_id == user_id)
        .order_by(desc(DuesPayment.created_at), desc(DuesPayment.id))
    )
    return result.scalars().all()
