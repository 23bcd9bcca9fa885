from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from univo.core.schemas import ApiModel
from univo.clubs.models.club_applications import ApplicationStatus


class ApplicationCreate(ApiModel):
    cover_letter: str = Field(..., min_length=1, max_length=5000)


class ApplicationReview(ApiModel):
    """Decision on a pending application. ``pending`` is not a decision."""

    status: Literal["accepted", "rejected"]


class ApplicationRead(ApiModel):
    id: int
    club_id: int
    user_id: int
    cover_letter: str
    status: ApplicationStatus
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
