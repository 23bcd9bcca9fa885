from univo.core.database import Base
from .clubs import Club
from .club_members import ClubMember, MemberRole, MemberStatus
from .club_applications import ClubApplication, ApplicationStatus
from .announcements import Announcement, TargetGroup
from .notifications import Notification, NotificationType

__all__ = [
    "Base",
    "Club",
    "ClubMember",
    "MemberRole",
    "MemberStatus",
    "ClubApplication",
    "ApplicationStatus",
    "Announcement",
    "TargetGroup",
    "Notification",
    "NotificationType",
]
