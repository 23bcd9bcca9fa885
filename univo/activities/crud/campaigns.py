from typing import List, Optional, Tuple

from sqlalchemy import and_, desc, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.core.database import db_operation, with_db_transaction
from univo.core.exceptions import (
    NotFoundError,
    ValidationError,
    PermissionDeniedError,
    BusinessLogicError,
)
from univo.core.logging_utils import log_business_event
from univo.core.validations import as_utc, utcnow
from univo.accounts.models.users import User
from univo.clubs.crud.clubs import get_club_by_id
from univo.clubs.crud.members import has_club_role, require_club_role, MANAGER_ROLES
from univo.activities.models.campaigns import Campaign, Donation
from univo.activities.models.payment_status import PaymentStatus, initial_payment_status
from univo.activities.schemas.campaigns import (
    CampaignCreate,
    CampaignUpdate,
    CampaignTiersDocument,
    DonationCreate,
)


def load_tiers(campaign: Campaign) -> Optional[CampaignTiersDocument]:
    """Разобрать сохранённый JSON уровней; неизвестная версия - ошибка"""
    if not campaign.tiers:
        return None
    return CampaignTiersDocument.model_validate(campaign.tiers)


def dump_tiers(tiers: Optional[CampaignTiersDocument]) -> Optional[dict]:
    if tiers is None:
        return None
    return tiers.model_dump(mode="json")


@db_operation
async def get_campaign_by_id(session: AsyncSession, campaign_id: int) -> Campaign:
    if not campaign_id or campaign_id <= 0:
        raise ValidationError("Campaign ID must be positive")

    result = await session.execute(
        select(Campaign)
        .where(Campaign.id == campaign_id)
        .execution_options(populate_existing=True)
    )
    campaign = result.scalar_one_or_none()
    if not campaign:
        raise NotFoundError("Campaign", str(campaign_id))
    return campaign


@db_operation
async def get_campaigns_paginated(
    session: AsyncSession,
    skip: int = 0,
    limit: int = 20,
    club_id: Optional[int] = None,
    active_only: bool = True,
) -> Tuple[List[Campaign], int]:
    conditions = []
    if club_id is not None:
        conditions.append(Campaign.club_id == club_id)
    if active_only:
        conditions.append(Campaign.is_active.is_(True))

    query = select(Campaign)
    count_query = select(func.count(Campaign.id))
    if conditions:
        query = query.where(and_(*conditions))
        count_query = count_query.where(and_(*conditions))

    total = (await session.execute(count_query)).scalar() or 0
    result = await session.execute(
        query.order_by(desc(Campaign.created_at), desc(Campaign.id)).offset(skip).limit(limit)
    )
    return result.scalars().all(), total


async def create_campaign(
    session: AsyncSession, campaign_data: CampaignCreate, user_id: int
) -> Campaign:

    async def _create_campaign_operation(session: AsyncSession):
        if campaign_data.club_id is not None:
            await get_club_by_id(session, campaign_data.club_id)
            await require_club_role(
                session, campaign_data.club_id, user_id, MANAGER_ROLES, "create campaigns for"
            )

        data = campaign_data.model_dump(exclude={"tiers"})
        campaign = Campaign(
            **data,
            tiers=dump_tiers(campaign_data.tiers),
            current_amount=0,
            is_active=True,
            created_by=user_id,
        )
        session.add(campaign)
        await session.flush()
        return campaign

    campaign = await with_db_transaction(session, _create_campaign_operation)
    await session.refresh(campaign)
    return campaign


async def update_campaign(
    session: AsyncSession, campaign_id: int, campaign_data: CampaignUpdate, actor_id: int
) -> Campaign:
    """Изменить кампанию (автор или officer/admin клуба); current_amount не меняется"""
    update_data = campaign_data.model_dump(exclude_unset=True, exclude={"tiers"})

    async def _update_campaign_operation(session: AsyncSession):
        campaign = await get_campaign_by_id(session, campaign_id)
        if campaign.created_by != actor_id and not (
            campaign.club_id is not None
            and await has_club_role(session, campaign.club_id, actor_id, MANAGER_ROLES)
        ):
            raise PermissionDeniedError(
                "update", "campaign", "only the creator or club officers"
            )

        for field, value in update_data.items():
            if value is None and field not in ("image", "deadline"):
                continue
            setattr(campaign, field, value)

        if "tiers" in campaign_data.model_fields_set:
            campaign.tiers = dump_tiers(campaign_data.tiers)

        await session.flush()
        return campaign

    campaign = await with_db_transaction(session, _update_campaign_operation)
    await session.refresh(campaign)
    return campaign


async def adjust_campaign_amount(
    session: AsyncSession, campaign_id: int, delta: int
) -> None:
    """Атомарный UPDATE campaigns SET current_amount = current_amount + :delta"""
    await session.execute(
        update(Campaign)
        .where(Campaign.id == campaign_id)
        .values(current_amount=Campaign.current_amount + delta)
        .execution_options(synchronize_session=False)
    )


async def create_donation(
    session: AsyncSession, donation_data: DonationCreate, user: Optional[User] = None
) -> Donation:
    """
    Создать пожертвование и увеличить сумму кампании.

    Вставка и инкремент идут в одной транзакции, инкремент выполняется
    в SQL, поэтому параллельные пожертвования не теряют обновления.
    """
    user_id = user.id if user else None

    async def _create_donation_operation(session: AsyncSession):
        campaign = await get_campaign_by_id(session, donation_data.campaign_id)
        if not campaign.is_active:
            raise BusinessLogicError(
                "Campaign is not accepting donations", {"campaign_id": campaign.id}
            )
        if campaign.deadline is not None and as_utc(campaign.deadline) < utcnow():
            raise BusinessLogicError("Campaign has ended", {"campaign_id": campaign.id})

        if donation_data.tier_id is not None:
            tiers = load_tiers(campaign)
            tier = tiers.find(donation_data.tier_id) if tiers else None
            if tier is None:
                raise ValidationError(
                    "Unknown donation tier", {"tier_id": donation_data.tier_id}
                )
            if donation_data.amount < tier.amount:
                raise ValidationError(
                    "Donation amount is below the tier minimum",
                    {"tier_id": tier.id, "minimum": tier.amount},
                )

        donation = Donation(
            **donation_data.model_dump(),
            user_id=user_id,
            payment_status=initial_payment_status(donation_data.amount),
        )
        session.add(donation)
        await session.flush()

        await adjust_campaign_amount(session, campaign.id, donation.amount)
        return donation

    donation = await with_db_transaction(session, _create_donation_operation)
    await session.refresh(donation)

    log_business_event(
        "donation_created",
        "donation",
        donation.id,
        {"campaign_id": donation.campaign_id, "amount": donation.amount},
    )
    return donation


@db_operation
async def get_campaign_donations(
    session: AsyncSession, campaign_id: int, skip: int = 0, limit: int = 50
) -> Tuple[List[Donation], int]:
    """Пожертвования кампании, кроме неудавшихся"""
    await get_campaign_by_id(session, campaign_id)

    conditions = [
        Donation.campaign_id == campaign_id,
        Donation.payment_status != PaymentStatus.failed,
    ]
    total = (
        await session.execute(select(func.count(Donation.id)).where(*conditions))
    ).scalar() or 0

    result = await session.execute(
        select(Donation)
        .where(*conditions)
        .order_by(desc(Donation.created_at), desc(Donation.id))
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total
