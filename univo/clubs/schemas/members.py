from datetime import datetime
from typing import Optional

from pydantic import Field, model_validator

from univo.core.schemas import ApiModel
from univo.accounts.schemas.users import UserPublic
from univo.clubs.models.club_members import MemberRole, MemberStatus


class MemberAdd(ApiModel):
    user_id: int = Field(..., ge=1)
    role: MemberRole = MemberRole.member
    status: MemberStatus = MemberStatus.active


class MemberUpdate(ApiModel):
    role: Optional[MemberRole] = None
    status: Optional[MemberStatus] = None

    @model_validator(mode="after")
    def check_not_empty(self):
        if self.role is None and self.status is None:
            raise ValueError("Either role or status must be provided")
        return self


class MemberRead(ApiModel):
    id: int
    club_id: int
    user_id: int
    role: MemberRole
    status: MemberStatus
    joined_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MemberWithUser(MemberRead):
    user: UserPublic
