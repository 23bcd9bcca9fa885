from typing import Literal, Optional

from pydantic import Field

from univo.core.schemas import ApiModel

PaymentRecordKind = Literal["rsvp", "donation", "dues_payment"]


class PaymentMetadata(ApiModel):
    """Reference to the record an intent pays for."""

    kind: PaymentRecordKind
    record_id: int = Field(..., ge=1)


class PaymentIntentCreate(ApiModel):
    amount: int = Field(..., ge=1, description="Amount in cents")
    description: Optional[str] = Field(None, max_length=500)
    metadata: Optional[PaymentMetadata] = None


class PaymentIntentResponse(ApiModel):
    client_secret: str
    payment_intent_id: str


class WebhookAck(ApiModel):
    received: bool = True
    handled: bool = False
    kind: Optional[str] = None
    record_id: Optional[int] = None
    status: Optional[str] = None
