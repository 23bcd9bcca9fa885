"""
Stripe integration: payment intent creation and webhook signature checks.

Only the pieces of the Stripe API the platform needs are wrapped here; the
payment status of a record is decided by verified webhook events, never by
what the client reports.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from univo.core import config
from univo.core.exceptions import (
    ProviderError,
    ProviderUnavailableError,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)

PROVIDER = "stripe"


def _flatten_form(data: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """Stripe accepts nested params as form fields: metadata[kind]=rsvp"""
    flat = {}
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else key
        if isinstance(value, dict):
            flat.update(_flatten_form(value, name))
        elif isinstance(value, bool):
            flat[name] = "true" if value else "false"
        elif value is not None:
            flat[name] = str(value)
    return flat


async def create_payment_intent(
    amount: int,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    currency: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a Stripe PaymentIntent.

    Args:
        amount: Amount in cents, must be positive
        description: Human readable description shown in the Stripe dashboard
        metadata: Flat key/value pairs stored on the intent (record references)
        currency: ISO currency code, defaults to PAYMENT_CURRENCY

    Returns:
        dict with ``id`` and ``client_secret`` of the created intent

    Raises:
        ProviderUnavailableError: Stripe is not configured
        ProviderError: transport failure or a non-2xx answer
    """
    if not config.STRIPE_SECRET_KEY:
        raise ProviderUnavailableError(PROVIDER)

    payload = _flatten_form(
        {
            "amount": amount,
            "currency": currency or config.PAYMENT_CURRENCY,
            "description": description,
            "metadata": metadata or {},
            "automatic_payment_methods": {"enabled": True},
        }
    )

    try:
        async with httpx.AsyncClient(
            base_url=config.STRIPE_API_BASE,
            timeout=config.PAYMENT_PROVIDER_TIMEOUT,
        ) as client:
            response = await client.post(
                "/payment_intents",
                data=payload,
                headers={"Authorization": f"Bearer {config.STRIPE_SECRET_KEY}"},
            )
    except httpx.HTTPError as e:
        logger.error(
            f"Stripe request failed: {type(e).__name__}",
            extra={"provider": PROVIDER, "exception_type": type(e).__name__},
        )
        raise ProviderError(PROVIDER, "Payment provider is unreachable")

    if response.status_code >= 400:
        error = {}
        try:
            error = response.json().get("error", {})
        except ValueError:
            pass
        # В ответ клиенту уходит только тип и код ошибки провайдера
        details = {"type": error.get("type"), "code": error.get("code")}
        logger.error(
            f"Stripe rejected payment intent: HTTP {response.status_code}",
            extra={"provider": PROVIDER, "status_code": response.status_code, **details},
        )
        raise ProviderError(PROVIDER, "Payment provider rejected the request", details)

    body = response.json()
    return {"id": body["id"], "client_secret": body["client_secret"]}


def verify_webhook_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: Optional[str] = None,
    tolerance: Optional[int] = None,
    now: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Verify a ``Stripe-Signature`` header and return the decoded event.

    The header looks like ``t=1700000000,v1=<hex>,v1=<hex>``; the signed
    string is ``"{t}.{payload}"`` with HMAC-SHA256 keyed by the endpoint secret.
    """
    secret = secret or config.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise ProviderUnavailableError(PROVIDER)

    if tolerance is None:
        tolerance = config.STRIPE_WEBHOOK_TOLERANCE

    if not signature_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")

    timestamp = None
    signatures = []
    for item in signature_header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if not timestamp or not signatures:
        raise WebhookSignatureError("Malformed Stripe-Signature header")

    try:
        timestamp_value = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("Malformed Stripe-Signature timestamp")

    signed_payload = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()

    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("Stripe signature mismatch")

    current = int(time.time()) if now is None else now
    if tolerance > 0 and abs(current - timestamp_value) > tolerance:
        raise WebhookSignatureError("Stripe signature timestamp outside tolerance")

    try:
        return json.loads(payload)
    except ValueError:
        raise WebhookSignatureError("Webhook payload is not valid JSON")

