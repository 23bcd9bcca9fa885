from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.database import get_session
from univo.core.dependencies import get_current_user, get_optional_user
from univo.core.limits import limiter
from univo.core.schemas import Page
from univo.accounts.models.users import User
from univo.activities.crud.campaigns import (
    get_campaign_by_id,
    get_campaigns_paginated,
    create_campaign,
    update_campaign,
    create_donation,
    get_campaign_donations,
)
from univo.activities.schemas.campaigns import (
    CampaignCreate,
    CampaignUpdate,
    CampaignRead,
    DonationCreate,
    DonationRead,
    DonationPublic,
)

router = APIRouter(tags=["Campaigns"])

ANONYMOUS_DONOR = "Anonymous"


@router.get("/campaigns", response_model=Page[CampaignRead])
@limiter.limit("60/minute")
async def get_campaigns_list(
    request: Request,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    club_id: Optional[int] = Query(None, alias="clubId", ge=1),
    include_inactive: bool = Query(False, alias="includeInactive"),
    db: AsyncSession = Depends(get_session),
):
    campaigns, total = await get_campaigns_paginated(
        db,
        skip=(page - 1) * size,
        limit=size,
        club_id=club_id,
        active_only=not include_inactive,
    )
    return Page[CampaignRead].build(campaigns, total, page, size)


@router.post("/campaigns", response_model=CampaignRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_new_campaign(
    request: Request,
    campaign: CampaignCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Start a fundraising campaign. Club campaigns require an officer or admin role.

    - **goalAmount**: goal in cents
    - **tiers**: optional `{"version": 1, "tiers": [...]}` document
    """
    return await create_campaign(db, campaign, current_user.id)


@router.get("/campaigns/{campaign_id}", response_model=CampaignRead)
async def get_campaign(campaign_id: int, db: AsyncSession = Depends(get_session)):
    return await get_campaign_by_id(db, campaign_id)


@router.patch("/campaigns/{campaign_id}", response_model=CampaignRead)
@limiter.limit("20/minute")
async def update_existing_campaign(
    request: Request,
    campaign_id: int,
    campaign_update: CampaignUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Update a campaign. The raised amount only changes through donations."""
    return await update_campaign(db, campaign_id, campaign_update, current_user.id)


@router.get("/campaigns/{campaign_id}/donations", response_model=Page[DonationPublic])
async def get_donations_for_campaign(
    campaign_id: int,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """Public donor list; anonymous donors are shown without a name."""
    donations, total = await get_campaign_donations(
        db, campaign_id, skip=(page - 1) * size, limit=size
    )
    items = [
        DonationPublic(
            id=donation.id,
            donor_name=ANONYMOUS_DONOR if donation.is_anonymous else donation.donor_name,
            amount=donation.amount,
            tier_id=donation.tier_id,
            message=donation.message,
            payment_status=donation.payment_status,
            created_at=donation.created_at,
        )
        for donation in donations
    ]
    return Page[DonationPublic].build(items, total, page, size)


@router.post("/donations", response_model=DonationRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_new_donation(
    request: Request,
    donation: DonationCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Donate to a campaign. A session is optional.

    The campaign's raised amount grows atomically with the donation.
    The payment status stays `pending` until the provider confirms it.
    """
    return await create_donation(db, donation, current_user)
