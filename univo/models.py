"""Import every model module so the metadata and mappers are complete."""

from univo.core.database import Base
from univo.accounts.models import User, UserSession
from univo.clubs.models import (
    Club,
    ClubMember,
    ClubApplication,
    Announcement,
    Notification,
)
from univo.activities.models import (
    Event,
    Rsvp,
    Campaign,
    Donation,
    ClubDues,
    DuesPayment,
)

__all__ = [
    "Base",
    "User",
    "UserSession",
    "Club",
    "ClubMember",
    "ClubApplication",
    "Announcement",
    "Notification",
    "Event",
    "Rsvp",
    "Campaign",
    "Donation",
    "ClubDues",
    "DuesPayment",
]
