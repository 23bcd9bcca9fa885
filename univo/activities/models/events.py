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


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True)
    # None - событие вне клуба
    club_id = Column(
        Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=True, index=True
    )
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    banner = Column(String(512), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False, index=True)
    location = Column(String(255), nullable=True)
    capacity = Column(Integer, nullable=True)

    price = Column(Integer, nullable=False, default=0)  # в центах
    requires_payment = Column(Boolean, nullable=False, default=False)

    created_by = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Event(id={self.id}, title='{self.title}', date={self.date})>"


class Rsvp(Base):
    __tablename__ = "rsvps"

    id = Column(Integer, primary_key=True)
    event_id = Column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    attendee_name = Column(String(100), nullable=False)
    attendee_email = Column(String(255), nullable=False)
    tickets_purchased = Column(Integer, nullable=False, default=1)
    total_amount = Column(Integer, nullable=False, default=0)  # в центах

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

    __table_args__ = (Index("ix_rsvps_event_status", "event_id", "payment_status"),)
