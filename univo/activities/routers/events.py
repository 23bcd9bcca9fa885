from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.database import get_session
from univo.core.dependencies import get_current_user, get_optional_user
from univo.core.limits import limiter
from univo.core.schemas import Page
from univo.accounts.models.users import User
from univo.activities.crud.events import (
    get_event_by_id,
    get_events_paginated,
    create_event,
    update_event,
    delete_event,
    create_rsvp,
    get_event_rsvps,
    get_user_rsvps,
)
from univo.activities.schemas.events import (
    EventCreate,
    EventUpdate,
    EventRead,
    RsvpCreate,
    RsvpRead,
)

router = APIRouter(tags=["Events"])


@router.get("/events", response_model=Page[EventRead])
@limiter.limit("60/minute")
async def get_events_list(
    request: Request,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    club_id: Optional[int] = Query(None, alias="clubId", ge=1),
    upcoming: bool = Query(False, description="Only events that have not started"),
    db: AsyncSession = Depends(get_session),
):
    events, total = await get_events_paginated(
        db, skip=(page - 1) * size, limit=size, club_id=club_id, upcoming_only=upcoming
    )
    return Page[EventRead].build(events, total, page, size)


@router.post("/events", response_model=EventRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_new_event(
    request: Request,
    event: EventCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Create an event. Club events (**clubId** set) require an officer or admin role.

    - **price**: ticket price in cents, must be positive when **requiresPayment**
    """
    return await create_event(db, event, current_user.id)


@router.get("/events/{event_id}", response_model=EventRead)
async def get_event(event_id: int, db: AsyncSession = Depends(get_session)):
    return await get_event_by_id(db, event_id)


@router.patch("/events/{event_id}", response_model=EventRead)
@limiter.limit("20/minute")
async def update_existing_event(
    request: Request,
    event_id: int,
    event_update: EventUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Update an event (its creator or the club's officers and admins)."""
    return await update_event(db, event_id, event_update, current_user.id)


@router.delete("/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
async def delete_existing_event(
    request: Request,
    event_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    await delete_event(db, event_id, current_user.id)


@router.get("/events/{event_id}/rsvps", response_model=List[RsvpRead])
async def get_rsvps_for_event(
    event_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Attendee list for the event creator and club officers/admins."""
    return await get_event_rsvps(db, event_id, current_user.id)


@router.post("/rsvps", response_model=RsvpRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_new_rsvp(
    request: Request,
    rsvp: RsvpCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Get tickets for an event. A session is optional.

    The total is computed by the server. Free tickets are `completed`
    immediately; paid tickets stay `pending` until the payment provider
    confirms them.
    """
    return await create_rsvp(db, rsvp, current_user)


@router.get("/rsvps/my", response_model=List[RsvpRead])
async def get_my_rsvps(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_user_rsvps(db, current_user.id)
