from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    Enum,
    JSON,
    CheckConstraint,
)
from sqlalchemy.sql import func
from univo.core.database import Base
from univo.activities.models.payment_status import PaymentStatus


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True)
    club_id = Column(
        Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=True, index=True
    )
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    image = Column(String(512), nullable=True)

    goal_amount = Column(Integer, nullable=False)  # в центах
    # Меняется только атомарным UPDATE ... SET current_amount = current_amount + :delta
    current_amount = Column(Integer, nullable=False, default=0)
    deadline = Column(DateTime(timezone=True), nullable=True)

    # {"version": 1, "tiers": [...]}, см. CampaignTiersDocument
    tiers = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_by = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("goal_amount > 0", name="ck_campaigns_goal_positive"),
    )


class Donation(Base):
    __tablename__ = "donations"

    id = Column(Integer, primary_key=True)
    campaign_id = Column(
        Integer, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    donor_name = Column(String(100), nullable=False)
    donor_email = Column(String(255), nullable=False)
    amount = Column(Integer, nullable=False)  # в центах
    tier_id = Column(String(64), nullable=True)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    message = Column(Text, nullable=True)

    payment_status = Column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.pending,
    )
    provider_payment_id = Column(String(255), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_donations_amount_positive"),
    )
