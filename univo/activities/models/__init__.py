from univo.core.database import Base
from .payment_status import PaymentStatus, initial_payment_status
from .events import Event, Rsvp
from .campaigns import Campaign, Donation
from .dues import ClubDues, DuesPayment, DuesFrequency

__all__ = [
    "Base",
    "PaymentStatus",
    "initial_payment_status",
    "Event",
    "Rsvp",
    "Campaign",
    "Donation",
    "ClubDues",
    "DuesPayment",
    "DuesFrequency",
]
