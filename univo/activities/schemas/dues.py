from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator, model_validator

from univo.core.schemas import ApiModel
from univo.core.validations import as_utc
from univo.activities.models.dues import DuesFrequency
from univo.activities.models.payment_status import PaymentStatus


class DuesCreate(ApiModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    amount: int = Field(..., ge=0, description="Amount in cents")
    due_date: Optional[datetime] = None
    is_recurring: bool = False
    frequency: Optional[DuesFrequency] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v):
        return as_utc(v)

    @model_validator(mode="after")
    def check_frequency(self):
        if self.is_recurring and self.frequency is None:
            raise ValueError("Recurring dues require a frequency")
        if not self.is_recurring and self.frequency is not None:
            raise ValueError("One-off dues cannot have a frequency")
        return self


class DuesUpdate(ApiModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    amount: Optional[int] = Field(None, ge=0)
    due_date: Optional[datetime] = None
    is_recurring: Optional[bool] = None
    frequency: Optional[DuesFrequency] = None
    is_active: Optional[bool] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v):
        return as_utc(v)


class DuesRead(ApiModel):
    id: int
    club_id: int
    title: str
    description: Optional[str] = None
    amount: int
    due_date: Optional[datetime] = None
    is_recurring: bool
    frequency: Optional[DuesFrequency] = None
    is_active: bool
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class DuesPaymentCreate(ApiModel):
    """The amount is copied from the dues definition, not taken from the client."""

    dues_id: int = Field(..., ge=1)


class DuesPaymentRead(ApiModel):
    id: int
    dues_id: int
    user_id: int
    amount: int
    payment_status: PaymentStatus
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
