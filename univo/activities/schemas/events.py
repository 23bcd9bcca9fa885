from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator, model_validator

from univo.core.schemas import ApiModel
from univo.core.validations import as_utc, clean_email
from univo.activities.models.payment_status import PaymentStatus


class EventCreate(ApiModel):
    club_id: Optional[int] = Field(None, ge=1)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=10000)
    banner: Optional[str] = Field(None, max_length=512)
    date: datetime
    location: Optional[str] = Field(None, max_length=255)
    capacity: Optional[int] = Field(None, ge=1)
    price: int = Field(0, ge=0, description="Ticket price in cents")
    requires_payment: bool = False

    @field_validator("date")
    @classmethod
    def normalize_date(cls, v):
        return as_utc(v)

    @model_validator(mode="after")
    def check_price(self):
        if self.requires_payment and self.price <= 0:
            raise ValueError("Paid events must have a positive price")
        return self


class EventUpdate(ApiModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=10000)
    banner: Optional[str] = Field(None, max_length=512)
    date: Optional[datetime] = None
    location: Optional[str] = Field(None, max_length=255)
    capacity: Optional[int] = Field(None, ge=1)
    price: Optional[int] = Field(None, ge=0)
    requires_payment: Optional[bool] = None

    @field_validator("date")
    @classmethod
    def normalize_date(cls, v):
        return as_utc(v)


class EventRead(ApiModel):
    id: int
    club_id: Optional[int] = None
    title: str
    description: str
    banner: Optional[str] = None
    date: datetime
    location: Optional[str] = None
    capacity: Optional[int] = None
    price: int
    requires_payment: bool
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class RsvpCreate(ApiModel):
    """
    Ticket request. The total and the payment status are computed by the
    server; any such fields sent by the client are ignored.
    """

    event_id: int = Field(..., ge=1)
    attendee_name: str = Field(..., min_length=1, max_length=100)
    attendee_email: str = Field(..., max_length=255)
    tickets_purchased: int = Field(1, ge=1, le=20)

    @field_validator("attendee_email")
    @classmethod
    def validate_email(cls, v):
        return clean_email(v)


class RsvpRead(ApiModel):
    id: int
    event_id: int
    user_id: Optional[int] = None
    attendee_name: str
    attendee_email: str
    tickets_purchased: int
    total_amount: int
    payment_status: PaymentStatus
    created_at: Optional[datetime] = None
