import enum
from sqlalchemy import (
    Column,
    Integer,
    DateTime,
    ForeignKey,
    Enum,
    Index,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from univo.core.database import Base


class MemberRole(str, enum.Enum):
    member = "member"
    officer = "officer"
    admin = "admin"


class MemberStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    pending = "pending"


class ClubMember(Base):
    __tablename__ = "club_members"

    id = Column(Integer, primary_key=True, autoincrement=True)

    club_id = Column(
        Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    role = Column(
        Enum(MemberRole, name="member_role"), nullable=False, default=MemberRole.member
    )
    status = Column(
        Enum(MemberStatus, name="member_status"),
        nullable=False,
        default=MemberStatus.active,
    )

    joined_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user = relationship("User", lazy="raise")
    club = relationship("Club", lazy="raise")

    # Одна строка на пару (клуб, пользователь): повторное вступление
    # реактивирует существующую запись
    __table_args__ = (
        UniqueConstraint("club_id", "user_id", name="uq_club_members_club_user"),
        Index("ix_club_members_user", "user_id"),
        Index("ix_club_members_club_status", "club_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.active

    def __repr__(self):
        return f"<ClubMember(id={self.id}, club_id={self.club_id}, user_id={self.user_id}, role={self.role}, status={self.status})>"
