from datetime import datetime
from typing import Optional

from pydantic import field_validator

from univo.core.schemas import ApiModel
from univo.clubs.models.notifications import NotificationType


class NotificationRead(ApiModel):
    id: int
    user_id: int
    type: NotificationType
    title: str
    message: str
    related_id: Optional[int] = None
    is_read: bool
    created_at: Optional[datetime] = None


class NotificationUpdate(ApiModel):
    is_read: bool = True

    @field_validator("is_read")
    @classmethod
    def only_mark_read(cls, v):
        # Прочтение необратимо
        if not v:
            raise ValueError("Notifications can only be marked as read")
        return v


class UnreadCount(ApiModel):
    count: int


class MarkAllReadResult(ApiModel):
    updated: int
