from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from univo.core.schemas import ApiModel
from univo.clubs.models.club_members import MemberRole, MemberStatus


class ClubBase(ApiModel):
    """Base club schema with common fields."""

    name: str = Field(
        ..., min_length=2, max_length=100, description="Club name (2-100 characters)"
    )
    description: str = Field(..., min_length=1, max_length=5000)
    category: Optional[str] = Field(None, max_length=50)
    logo: Optional[str] = Field(None, max_length=512, description="Logo image URL")
    banner: Optional[str] = Field(None, max_length=512, description="Banner image URL")
    max_members: Optional[int] = Field(
        None, ge=1, description="Member limit, empty for unlimited"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Club name cannot be empty")
        return v.strip()


class ClubCreate(ClubBase):
    pass


class ClubUpdate(ApiModel):
    """Partial update; only provided fields change."""

    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    category: Optional[str] = Field(None, max_length=50)
    logo: Optional[str] = Field(None, max_length=512)
    banner: Optional[str] = Field(None, max_length=512)
    max_members: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


class ClubRead(ClubBase):
    id: int
    is_active: bool
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ClubWithRole(ClubRead):
    """Club together with the caller's membership in it."""

    role: MemberRole
    membership_status: MemberStatus
    joined_at: Optional[datetime] = None


class ClubStats(ApiModel):
    club_id: int
    active_members: int
    officers: int
    pending_applications: int
    upcoming_events: int
    active_campaigns: int
    total_raised: int
