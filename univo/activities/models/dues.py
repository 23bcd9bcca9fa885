import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    Enum,
    Index,
)
from sqlalchemy.sql import func
from univo.core.database import Base
from univo.activities.models.payment_status import PaymentStatus


class DuesFrequency(str, enum.Enum):
    monthly = "monthly"
    semester = "semester"
    yearly = "yearly"


class ClubDues(Base):
    __tablename__ = "club_dues"

    id = Column(Integer, primary_key=True)
    club_id = Column(
        Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Integer, nullable=False)  # в центах
    due_date = Column(DateTime(timezone=True), nullable=True)

    is_recurring = Column(Boolean, nullable=False, default=False)
    frequency = Column(Enum(DuesFrequency, name="dues_frequency"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_by = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DuesPayment(Base):
    __tablename__ = "dues_payments"

    id = Column(Integer, primary_key=True)
    dues_id = Column(
        Integer, ForeignKey("club_dues.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount = Column(Integer, nullable=False)

    payment_status = Column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.pending,
    )
    provider_payment_id = Column(String(255), nullable=True, unique=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_dues_payments_dues_user", "dues_id", "user_id"),
        Index("ix_dues_payments_user", "user_id"),
    )
