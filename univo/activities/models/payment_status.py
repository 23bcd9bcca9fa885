import enum


class PaymentStatus(str, enum.Enum):
    """Payment status shared by RSVPs, donations and dues payments"""

    pending = "pending"
    completed = "completed"
    failed = "failed"


def initial_payment_status(amount: int) -> PaymentStatus:
    """Free records are settled immediately; paid ones wait for the provider"""
    return PaymentStatus.completed if amount == 0 else PaymentStatus.pending
