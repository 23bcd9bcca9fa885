from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, field_validator

from univo.core.schemas import ApiModel
from univo.core.validations import as_utc, clean_email
from univo.activities.models.payment_status import PaymentStatus

TIERS_SCHEMA_VERSION = 1


class CampaignTier(ApiModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=100)
    amount: int = Field(..., ge=1, description="Minimum donation for the tier, in cents")
    description: Optional[str] = Field(None, max_length=1000)
    perks: List[str] = Field(default_factory=list)


class CampaignTiersDocument(ApiModel):
    """
    Donation tiers stored in ``campaigns.tiers``.

    The document is versioned; a payload with an unknown ``version`` is
    rejected instead of being stored as opaque JSON.
    """

    version: Literal[1] = TIERS_SCHEMA_VERSION
    tiers: List[CampaignTier] = Field(default_factory=list, max_length=50)

    @field_validator("tiers")
    @classmethod
    def unique_ids(cls, v):
        ids = [tier.id for tier in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Tier ids must be unique")
        return v

    def find(self, tier_id: str) -> Optional[CampaignTier]:
        for tier in self.tiers:
            if tier.id == tier_id:
                return tier
        return None


class CampaignCreate(ApiModel):
    club_id: Optional[int] = Field(None, ge=1)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=10000)
    image: Optional[str] = Field(None, max_length=512)
    goal_amount: int = Field(..., ge=1, description="Goal in cents")
    deadline: Optional[datetime] = None
    tiers: Optional[CampaignTiersDocument] = None

    @field_validator("deadline")
    @classmethod
    def normalize_deadline(cls, v):
        return as_utc(v)


class CampaignUpdate(ApiModel):
    """currentAmount is not part of this schema: it only moves with donations."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=10000)
    image: Optional[str] = Field(None, max_length=512)
    goal_amount: Optional[int] = Field(None, ge=1)
    deadline: Optional[datetime] = None
    tiers: Optional[CampaignTiersDocument] = None
    is_active: Optional[bool] = None

    @field_validator("deadline")
    @classmethod
    def normalize_deadline(cls, v):
        return as_utc(v)


class CampaignRead(ApiModel):
    id: int
    club_id: Optional[int] = None
    title: str
    description: str
    image: Optional[str] = None
    goal_amount: int
    current_amount: int
    deadline: Optional[datetime] = None
    tiers: Optional[CampaignTiersDocument] = None
    is_active: bool
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class DonationCreate(ApiModel):
    campaign_id: int = Field(..., ge=1)
    donor_name: str = Field(..., min_length=1, max_length=100)
    donor_email: str = Field(..., max_length=255)
    amount: int = Field(..., ge=1, description="Amount in cents")
    tier_id: Optional[str] = Field(None, max_length=64)
    is_anonymous: bool = False
    message: Optional[str] = Field(None, max_length=2000)

    @field_validator("donor_email")
    @classmethod
    def validate_email(cls, v):
        return clean_email(v)


class DonationRead(ApiModel):
    id: int
    campaign_id: int
    user_id: Optional[int] = None
    donor_name: str
    donor_email: str
    amount: int
    tier_id: Optional[str] = None
    is_anonymous: bool
    message: Optional[str] = None
    payment_status: PaymentStatus
    created_at: Optional[datetime] = None


class DonationPublic(ApiModel):
    """Donation as listed on a campaign page; anonymous donors are masked."""

    id: int
    donor_name: str
    amount: int
    tier_id: Optional[str] = None
    message: Optional[str] = None
    payment_status: PaymentStatus
    created_at: Optional[datetime] = None
