import enum
from sqlalchemy import (
    Column,
    Integer,
    Text,
    DateTime,
    ForeignKey,
    Enum,
    Index,
    text,
)
from sqlalchemy.sql import func
from univo.core.database import Base


class ApplicationStatus(str, enum.Enum):
    pending = "pending"  # Ожидает решения (по умолчанию)
    accepted = "accepted"
    rejected = "rejected"


class ClubApplication(Base):
    __tablename__ = "club_applications"

    id = Column(Integer, primary_key=True)

    club_id = Column(
        Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    cover_letter = Column(Text, nullable=False)

    status = Column(
        Enum(ApplicationStatus, name="application_status"),
        nullable=False,
        default=ApplicationStatus.pending,
        index=True,
    )

    submitted_at = Column(DateTime(timezone=True), server_default=func.now())
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        # Не более одной ожидающей заявки на пару (клуб, пользователь)
        Index(
            "uq_club_applications_pending",
            "club_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_club_applications_user", "user_id"),
        Index("ix_club_applications_club_status", "club_id", "status"),
    )

    def __repr__(self):
        return f"<ClubApplication(id={self.id}, club_id={self.club_id}, user_id={self.user_id}, status={self.status})>"
