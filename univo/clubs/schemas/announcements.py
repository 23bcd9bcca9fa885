from datetime import datetime
from typing import Optional

from pydantic import Field

from univo.core.schemas import ApiModel
from univo.clubs.models.announcements import TargetGroup


class AnnouncementCreate(ApiModel):
    club_id: Optional[int] = Field(
        None, ge=1, description="Club to post to; empty for a platform-wide announcement"
    )
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=10000)
    target_group: TargetGroup = TargetGroup.all


class AnnouncementRead(ApiModel):
    id: int
    club_id: Optional[int] = None
    title: str
    content: str
    target_group: TargetGroup
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class AnnouncementCreated(AnnouncementRead):
    recipients: int = 0
