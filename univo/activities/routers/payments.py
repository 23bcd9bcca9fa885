from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core import payment_gateway
from univo.core.database import get_session
from univo.core.dependencies import get_optional_user
from univo.core.limits import limiter
from univo.accounts.models.users import User
from univo.activities.crud.payments import (
    get_payable_record,
    attach_payment_intent,
    apply_webhook_event,
)
from univo.activities.schemas.payments import (
    PaymentIntentCreate,
    PaymentIntentResponse,
    WebhookAck,
)

router = APIRouter(tags=["Payments"])


@router.post("/create-payment-intent", response_model=PaymentIntentResponse)
@limiter.limit("20/minute")
async def create_payment_intent(
    request: Request,
    payment: PaymentIntentCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Create a Stripe PaymentIntent and return its client secret.

    When **metadata** names a record (`kind` + `recordId`), the amount must
    match the record and the intent id is stored on it so the webhook can
    settle the record later. A record owned by a user can only be paid by
    that user. Returns 503 when payments are not configured.
    """
    metadata = {}
    if payment.metadata is not None:
        await get_payable_record(
            db,
            payment.metadata.kind,
            payment.metadata.record_id,
            payment.amount,
            current_user.id if current_user else None,
        )
        metadata = {
            "kind": payment.metadata.kind,
            "recordId": payment.metadata.record_id,
        }
    if current_user is not None:
        metadata["userId"] = current_user.id

    intent = await payment_gateway.create_payment_intent(
        payment.amount, payment.description, metadata
    )

    if payment.metadata is not None:
        await attach_payment_intent(
            db, payment.metadata.kind, payment.metadata.record_id, intent["id"]
        )

    return PaymentIntentResponse(
        client_secret=intent["client_secret"], payment_intent_id=intent["id"]
    )


@router.post("/stripe-webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_session),
):
    """
    Stripe webhook endpoint. The `Stripe-Signature` header is verified
    before anything else; unsigned or tampered payloads get 400.
    """
    payload = await request.body()
    event = payment_gateway.verify_webhook_signature(payload, stripe_signature)
    result = await apply_webhook_event(db, event)
    return WebhookAck(received=True, **result)
