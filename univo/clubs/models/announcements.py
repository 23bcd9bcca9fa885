import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from univo.core.database import Base


class TargetGroup(str, enum.Enum):
    all = "all"
    members = "members"
    officers = "officers"


class Announcement(Base):
    __tablename__ = "announcements"

    id = Column(Integer, primary_key=True)
    # None - объявление для всей платформы
    club_id = Column(
        Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=True, index=True
    )
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    target_group = Column(
        Enum(TargetGroup, name="announcement_target"),
        nullable=False,
        default=TargetGroup.all,
    )
    created_by = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
