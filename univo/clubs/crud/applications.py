"""
Application Workflow: join requests for clubs.

States: pending -> accepted | rejected. A withdrawn application is deleted.
"""

from typing import List, Optional, Tuple

from sqlalchemy import delete, desc, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.core.database import db_operation, with_db_transaction
from univo.core.exceptions import (
    NotFoundError,
    ValidationError,
    ForbiddenError,
    BusinessLogicError,
    AlreadyMemberError,
    AlreadyReviewedError,
    DuplicatePendingError,
    InvalidStateError,
    LimitExceededError,
)
from univo.core.logging_utils import log_business_event
from univo.core.validations import utcnow
from univo.clubs.models.club_applications import ClubApplication, ApplicationStatus
from univo.clubs.models.club_members import MemberRole, MemberStatus
from univo.clubs.crud.clubs import get_club_by_id, count_active_members
from univo.clubs.crud.members import (
    get_role,
    has_club_role,
    require_club_role,
    upsert_membership,
    MANAGER_ROLES,
)
from univo.clubs.services.notification_service import notify_application_decision

DECISIONS = (ApplicationStatus.accepted, ApplicationStatus.rejected)


@db_operation
async def get_application_by_id(
    session: AsyncSession, application_id: int
) -> ClubApplication:
    if not application_id or application_id <= 0:
        raise ValidationError("Application ID must be positive")

    result = await session.execute(
        select(ClubApplication)
        .where(ClubApplication.id == application_id)
        .execution_options(populate_existing=True)
    )
    application = result.scalar_one_or_none()
    if not application:
        raise NotFoundError("Club application", str(application_id))
    return application


@db_operation
async def get_pending_application(
    session: AsyncSession, club_id: int, user_id: int
) -> Optional[ClubApplication]:
    result = await session.execute(
        select(ClubApplication).where(
            ClubApplication.club_id == club_id,
            ClubApplication.user_id == user_id,
            ClubApplication.status == ApplicationStatus.pending,
        )
    )
    return result.scalar_one_or_none()


async def apply_to_club(
    session: AsyncSession, club_id: int, user_id: int, cover_letter: str
) -> ClubApplication:
    """
    Подать заявку на вступление.

    Проверки и вставка идут в одной транзакции; гонку двух одновременных
    заявок закрывает частичный уникальный индекс по pending-заявкам.
    """

    async def _apply_operation(session: AsyncSession):
        club = await get_club_by_id(session, club_id)
        if not club.is_active:
            raise BusinessLogicError(
                "Club is not accepting applications", {"club_id": club_id}
            )

        member = await get_role(session, club_id, user_id)
        if member and member.status == MemberStatus.active:
            raise AlreadyMemberError(club_id, user_id)

        if await get_pending_application(session, club_id, user_id):
            raise DuplicatePendingError(club_id, user_id)

        if club.max_members is not None:
            current = await count_active_members(session, club_id)
            if current >= club.max_members:
                raise LimitExceededError("Club members", club.max_members, current)

        application = ClubApplication(
            club_id=club_id,
            user_id=user_id,
            cover_letter=cover_letter,
            status=ApplicationStatus.pending,
        )
        session.add(application)
        await session.flush()
        return application

    try:
        application = await with_db_transaction(session, _apply_operation)
    except IntegrityError:
        raise DuplicatePendingError(club_id, user_id)

    await session.refresh(application)
    log_business_event(
        "application_submitted",
        "club_application",
        application.id,
        {"club_id": club_id, "user_id": user_id},
    )
    return application


async def review_application(
    session: AsyncSession,
    application_id: int,
    decision: ApplicationStatus,
    reviewer_id: int,
) -> ClubApplication:
    """
    Принять или отклонить заявку (officer/admin клуба).

    Переход из pending однократный: статус меняется условным UPDATE ... WHERE
    status = 'pending'. Членство (при принятии) и уведомление заявителю
    пишутся в той же транзакции; любая ошибка откатывает всё решение.
    """
    decision = ApplicationStatus(decision)
    if decision not in DECISIONS:
        raise ValidationError(
            "Decision must be 'accepted' or 'rejected'", {"status": decision.value}
        )

    async def _review_operation(session: AsyncSession):
        application = await get_application_by_id(session, application_id)
        await require_club_role(
            session, application.club_id, reviewer_id, MANAGER_ROLES, "review applications for"
        )

        if application.status != ApplicationStatus.pending:
            raise AlreadyReviewedError(application.id, application.status.value)

        result = await session.execute(
            update(ClubApplication)
            .where(
                ClubApplication.id == application_id,
                ClubApplication.status == ApplicationStatus.pending,
            )
            .values(status=decision, reviewed_at=utcnow(), reviewed_by=reviewer_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Другой рецензент успел раньше
            raise AlreadyReviewedError(application_id, "reviewed")

        club = await get_club_by_id(session, application.club_id)
        if decision == ApplicationStatus.accepted:
            await upsert_membership(
                session, club, application.user_id, MemberRole.member, MemberStatus.active
            )

        await notify_application_decision(session, application, decision, club.name)
        return application

    application = await with_db_transaction(session, _review_operation)
    await session.refresh(application)

    log_business_event(
        "application_reviewed",
        "club_application",
        application.id,
        {
            "club_id": application.club_id,
            "user_id": application.user_id,
            "decision": decision.value,
            "reviewer_id": reviewer_id,
        },
    )
    return application


async def withdraw_application(
    session: AsyncSession, application_id: int, requester_id: int
) -> None:
    """Отозвать свою заявку, пока она в статусе pending (строка удаляется)"""

    async def _withdraw_operation(session: AsyncSession):
        application = await get_application_by_id(session, application_id)
        if application.user_id != requester_id:
            raise ForbiddenError(
                "Only the applicant can withdraw an application",
                {"application_id": application_id},
            )

        if application.status != ApplicationStatus.pending:
            raise InvalidStateError(
                "Only pending applications can be withdrawn",
                {"application_id": application_id, "status": application.status.value},
            )

        result = await session.execute(
            delete(ClubApplication)
            .where(
                ClubApplication.id == application_id,
                ClubApplication.status == ApplicationStatus.pending,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError(
                "Only pending applications can be withdrawn",
                {"application_id": application_id},
            )

        club_id = application.club_id
        session.expunge(application)
        return club_id

    club_id = await with_db_transaction(session, _withdraw_operation)
    log_business_event(
        "application_withdrawn",
        "club_application",
        application_id,
        {"club_id": club_id, "user_id": requester_id},
    )


async def get_application(
    session: AsyncSession, application_id: int, requester_id: int
) -> ClubApplication:
    """Заявку видят её автор и officer/admin клуба"""
    application = await get_application_by_id(session, application_id)
    if application.user_id != requester_id and not await has_club_role(
        session, application.club_id, requester_id, MANAGER_ROLES
    ):
        raise ForbiddenError(
            "Access denied to this application", {"application_id": application_id}
        )
    return application


async def list_club_applications(
    session: AsyncSession,
    club_id: int,
    actor_id: int,
    status: Optional[ApplicationStatus] = None,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[ClubApplication], int]:
    await get_club_by_id(session, club_id)
    await require_club_role(session, club_id, actor_id, MANAGER_ROLES, "view applications of")

    conditions = [ClubApplication.club_id == club_id]
    if status is not None:
        conditions.append(ClubApplication.status == status)

    total = (
        await session.execute(select(func.count(ClubApplication.id)).where(*conditions))
    ).scalar() or 0

    result = await session.execute(
        select(ClubApplication)
        .where(*conditions)
        .order_by(desc(ClubApplication.submitted_at), desc(ClubApplication.id))
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


@db_operation
async def list_user_applications(
    session: AsyncSession, user_id: int, status: Optional[ApplicationStatus] = None
) -> List[ClubApplication]:
    conditions = [ClubApplication.user_id == user_id]
    if status is not None:
        conditions.append(ClubApplication.status == status)

    result = await session.execute(
        select(ClubApplication)
        .where(*conditions)
        .order_by(desc(ClubApplication.submitted_at), desc(ClubApplication.id))
    )
    return result.scalars().all()
