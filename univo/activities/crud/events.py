from typing import List, Optional, Tuple

from sqlalchemy import and_, delete, desc, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.core.database import db_operation, with_db_transaction
from univo.core.exceptions import (
    NotFoundError,
    ValidationError,
    PermissionDeniedError,
    BusinessLogicError,
    LimitExceededError,
)
from univo.core.validations import as_utc, utcnow
from univo.accounts.models.users import User
from univo.clubs.crud.clubs import get_club_by_id
from univo.clubs.crud.members import has_club_role, require_club_role, MANAGER_ROLES
from univo.activities.models.events import Event, Rsvp
from univo.activities.models.payment_status import PaymentStatus, initial_payment_status
from univo.activities.schemas.events import EventCreate, EventUpdate, RsvpCreate


@db_operation
async def get_event_by_id(
    session: AsyncSession, event_id: int, for_update: bool = False
) -> Event:
    if not event_id or event_id <= 0:
        raise ValidationError("Event ID must be positive")

    query = select(Event).where(Event.id == event_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    event = (await session.execute(query)).scalar_one_or_none()
    if not event:
        raise NotFoundError("Event", str(event_id))
    return event


@db_operation
async def get_events_paginated(
    session: AsyncSession,
    skip: int = 0,
    limit: int = 20,
    club_id: Optional[int] = None,
    upcoming_only: bool = False,
) -> Tuple[List[Event], int]:
    conditions = []
    if club_id is not None:
        conditions.append(Event.club_id == club_id)
    if upcoming_only:
        conditions.append(Event.date >= utcnow())

    query = select(Event)
    count_query = select(func.count(Event.id))
    if conditions:
        query = query.where(and_(*conditions))
        count_query = count_query.where(and_(*conditions))

    total = (await session.execute(count_query)).scalar() or 0
    result = await session.execute(
        query.order_by(Event.date, Event.id).offset(skip).limit(limit)
    )
    return result.scalars().all(), total


async def _require_event_editor(session: AsyncSession, event: Event, actor_id: int):
    """Событие меняет автор или officer/admin клуба"""
    if event.created_by == actor_id:
        return
    if event.club_id is not None and await has_club_role(
        session, event.club_id, actor_id, MANAGER_ROLES
    ):
        return
    raise PermissionDeniedError("manage", "event", "only the creator or club officers")


async def create_event(session: AsyncSession, event_data: EventCreate, user_id: int) -> Event:

    async def _create_event_operation(session: AsyncSession):
        if event_data.club_id is not None:
            await get_club_by_id(session, event_data.club_id)
            await require_club_role(
                session, event_data.club_id, user_id, MANAGER_ROLES, "create events for"
            )

        event = Event(**event_data.model_dump(), created_by=user_id)
        session.add(event)
        await session.flush()
        return event

    event = await with_db_transaction(session, _create_event_operation)
    await session.refresh(event)
    return event


async def update_event(
    session: AsyncSession, event_id: int, event_data: EventUpdate, actor_id: int
) -> Event:
    update_data = event_data.model_dump(exclude_unset=True)

    async def _update_event_operation(session: AsyncSession):
        event = await get_event_by_id(session, event_id, for_update=True)
        await _require_event_editor(session, event, actor_id)

        for field, value in update_data.items():
            if value is None and field not in ("banner", "location", "capacity"):
                continue
            setattr(event, field, value)

        if event.requires_payment and event.price <= 0:
            raise ValidationError("Paid events must have a positive price")

        await session.flush()
        return event

    event = await with_db_transaction(session, _update_event_operation)
    await session.refresh(event)
    return event


async def delete_event(session: AsyncSession, event_id: int, actor_id: int) -> None:

    async def _delete_event_operation(session: AsyncSession):
        event = await get_event_by_id(session, event_id)
        await _require_event_editor(session, event, actor_id)
        await session.execute(
            delete(Event)
            .where(Event.id == event_id)
            .execution_options(synchronize_session=False)
        )
        session.expunge(event)

    await with_db_transaction(session, _delete_event_operation)


@db_operation
async def count_tickets(session: AsyncSession, event_id: int) -> int:
    """Проданные и ожидающие оплаты билеты; failed не занимают места"""
    result = await session.execute(
        select(func.coalesce(func.sum(Rsvp.tickets_purchased), 0)).where(
            Rsvp.event_id == event_id,
            Rsvp.payment_status != PaymentStatus.failed,
        )
    )
    return int(result.scalar() or 0)


async def create_rsvp(
    session: AsyncSession, rsvp_data: RsvpCreate, user: Optional[User] = None
) -> Rsvp:
    """
    Зарегистрировать участника события.

    Сумма считается на сервере: price * tickets для платных событий, иначе 0.
    Бесплатная запись сразу completed, платная ждёт вебхука провайдера.
    """
    user_id = user.id if user else None

    async def _create_rsvp_operation(session: AsyncSession):
        # Блокируем строку события, чтобы проверка вместимости была честной
        event = await get_event_by_id(session, rsvp_data.event_id, for_update=True)

        if as_utc(event.date) < utcnow():
            raise BusinessLogicError("Event has already taken place", {"event_id": event.id})

        if event.capacity is not None:
            sold = await count_tickets(session, event.id)
            if sold + rsvp_data.tickets_purchased > event.capacity:
                raise LimitExceededError("Event tickets", event.capacity, sold)

        total = event.price * rsvp_data.tickets_purchased if event.requires_payment else 0
        rsvp = Rsvp(
            event_id=event.id,
            user_id=user_id,
            attendee_name=rsvp_data.attendee_name,
            attendee_email=rsvp_data.attendee_email,
            tickets_purchased=rsvp_data.tickets_purchased,
            total_amount=total,
            payment_status=initial_payment_status(total),
        )
        session.add(rsvp)
        await session.flush()
        return rsvp

    rsvp = await with_db_transaction(session, _create_rsvp_operation)
    await session.refresh(rsvp)
    return rsvp


async def get_event_rsvps(
    session: AsyncSession, event_id: int, actor_id: int
) -> List[Rsvp]:
    event = await get_event_by_id(session, event_id)
    await _require_event_editor(session, event, actor_id)

    result = await session.execute(
        select(Rsvp).where(Rsvp.event_id == event_id).order_by(Rsvp.created_at, Rsvp.id)
    )
    return result.scalars().all()


@db_operation
async def get_user_rsvps(session: AsyncSession, user_id: int) -> List[Rsvp]:
    result = await session.execute(
        select(Rsvp)
        .where(Rsvp.user_id == user_id)
        .order_by(desc(Rsvp.created_at), desc(Rsvp.id))
    )
    return result.scalars().all()
