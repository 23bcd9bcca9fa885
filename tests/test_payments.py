import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from univo.core import config, payment_gateway
from univo.activities.models.events import Rsvp
from univo.core.exceptions import (
    ProviderError,
    ProviderUnavailableError,
    WebhookSignatureError,
)

SECRET = "whsec_test_secret"


def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    """Stripe-Signature для payload, как его строит Stripe"""
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


# === Подпись вебхука ===


def test_signature_roundtrip_returns_event():
    payload = b'{"type": "payment_intent.succeeded"}'
    header = sign_payload(payload, SECRET, 1700000000)

    event = payment_gateway.verify_webhook_signature(
        payload, header, secret=SECRET, now=1700000010
    )
    assert event == {"type": "payment_intent.succeeded"}


def test_tampered_payload_is_rejected():
    header = sign_payload(b'{"amount": 1}', SECRET, 1700000000)
    with pytest.raises(WebhookSignatureError):
        payment_gateway.verify_webhook_signature(
            b'{"amount": 999}', header, secret=SECRET, now=1700000000
        )


def test_wrong_secret_is_rejected():
    payload = b"{}"
    header = sign_payload(payload, "whsec_other", 1700000000)
    with pytest.raises(WebhookSignatureError):
        payment_gateway.verify_webhook_signature(payload, header, secret=SECRET, now=1700000000)


def test_stale_timestamp_is_rejected():
    payload = b"{}"
    header = sign_payload(payload, SECRET, 1700000000)
    with pytest.raises(WebhookSignatureError):
        payment_gateway.verify_webhook_signature(
            payload, header, secret=SECRET, tolerance=300, now=1700000000 + 301
        )


@pytest.mark.parametrize("header", [None, "", "v1=abc", "t=1700000000", "t=soon,v1=abc"])
def test_malformed_headers_are_rejected(header):
    with pytest.raises(WebhookSignatureError):
        payment_gateway.verify_webhook_signature(b"{}", header, secret=SECRET)


def test_verification_requires_configured_secret(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", None)
    with pytest.raises(ProviderUnavailableError):
        payment_gateway.verify_webhook_signature(b"{}", "t=1,v1=abc")


# === Создание PaymentIntent ===


def _mock_stripe(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def _client(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(payment_gateway.httpx, "AsyncClient", _client)


@pytest.mark.asyncio
async def test_create_intent_without_key_is_unavailable(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", None)
    with pytest.raises(ProviderUnavailableError):
        await payment_gateway.create_payment_intent(1000)


@pytest.mark.asyncio
async def test_create_intent_posts_form_to_stripe(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_123")
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"id": "pi_1", "client_secret": "pi_1_secret_x"})

    _mock_stripe(monkeypatch, handler)

    intent = await payment_gateway.create_payment_intent(
        4500, "Tickets", {"kind": "rsvp", "recordId": 7}
    )

    assert intent == {"id": "pi_1", "client_secret": "pi_1_secret_x"}
    assert seen["path"] == "/v1/payment_intents"
    assert seen["auth"] == "Bearer sk_test_123"
    assert seen["form"]["amount"] == ["4500"]
    assert seen["form"]["currency"] == ["usd"]
    assert seen["form"]["metadata[kind]"] == ["rsvp"]
    assert seen["form"]["metadata[recordId]"] == ["7"]
    assert seen["form"]["automatic_payment_methods[enabled]"] == ["true"]


@pytest.mark.asyncio
async def test_stripe_rejection_is_a_provider_error(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_123")

    def handler(request):
        return httpx.Response(
            402,
            json={"error": {"type": "card_error", "code": "card_declined", "message": "secret"}},
        )

    _mock_stripe(monkeypatch, handler)

    with pytest.raises(ProviderError) as exc_info:
        await payment_gateway.create_payment_intent(1000)
    assert exc_info.value.details["code"] == "card_declined"
    assert "message" not in exc_info.value.details


@pytest.mark.asyncio
async def test_create_payment_intent_endpoint_without_key(api_client, monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", None)
    response = await api_client.post("/api/create-payment-intent", json={"amount": 1000})
    assert response.status_code == 503
    assert response.json()["error"] == "PROVIDER_UNAVAILABLE"


# === Поток оплаты через API ===


def _future():
    return (datetime.now(timezone.utc) + timedelta(days=7)).isoformat()


async def _paid_rsvp(signup, tickets=2, price=1500):
    host_client, _ = await signup("hank")
    guest_client, guest = await signup("gina")
    response = await host_client.post(
        "/api/events",
        json={
            "title": "Gala",
            "description": "Dinner",
            "date": _future(),
            "price": price,
            "requiresPayment": True,
        },
    )
    event = response.json()
    response = await guest_client.post(
        "/api/rsvps",
        json={
            "eventId": event["id"],
            "attendeeName": "Gina",
            "attendeeEmail": "gina@campus.edu",
            "ticketsPurchased": tickets,
        },
    )
    assert response.status_code == 201, response.text
    return guest_client, guest, response.json()


async def _donation(signup, api_client, amount=500):
    owner_client, _ = await signup("olive")
    response = await owner_client.post(
        "/api/campaigns",
        json={"title": "Boards", "description": "Sets", "goalAmount": 100000},
    )
    campaign = response.json()
    response = await api_client.post(
        "/api/donations",
        json={
            "campaignId": campaign["id"],
            "donorName": "Dana",
            "donorEmail": "dana@example.com",
            "amount": amount,
        },
    )
    assert response.status_code == 201, response.text
    return campaign, response.json()


async def _send_webhook(client, event_type, intent, secret=SECRET):
    payload = json.dumps(
        {"id": "evt_1", "type": event_type, "data": {"object": intent}}
    ).encode()
    header = sign_payload(payload, secret, int(time.time()))
    return await client.post(
        "/api/stripe-webhook",
        content=payload,
        headers={"Stripe-Signature": header, "Content-Type": "application/json"},
    )


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", SECRET)
    return SECRET


@pytest.fixture
def fake_intents(monkeypatch):
    calls = []

    async def _create(amount, description=None, metadata=None, currency=None):
        calls.append({"amount": amount, "metadata": metadata})
        intent_id = f"pi_{len(calls)}"
        return {"id": intent_id, "client_secret": f"{intent_id}_secret"}

    monkeypatch.setattr(payment_gateway, "create_payment_intent", _create)
    return calls


@pytest.mark.asyncio
async def test_intent_is_stored_on_record(signup, fake_intents, db_session):
    guest_client, guest, rsvp = await _paid_rsvp(signup)

    response = await guest_client.post(
        "/api/create-payment-intent",
        json={"amount": 3000, "metadata": {"kind": "rsvp", "recordId": rsvp["id"]}},
    )
    assert response.status_code == 200
    assert response.json() == {"clientSecret": "pi_1_secret", "paymentIntentId": "pi_1"}
    assert fake_intents[0]["metadata"] == {
        "kind": "rsvp",
        "recordId": rsvp["id"],
        "userId": guest["id"],
    }

    stored = await db_session.get(Rsvp, rsvp["id"])
    assert stored.provider_payment_id == "pi_1"


@pytest.mark.asyncio
async def test_intent_amount_must_match_record(signup, fake_intents):
    guest_client, _, rsvp = await _paid_rsvp(signup)

    response = await guest_client.post(
        "/api/create-payment-intent",
        json={"amount": 1, "metadata": {"kind": "rsvp", "recordId": rsvp["id"]}},
    )
    assert response.status_code == 400
    assert response.json()["details"]["expected"] == 3000
    assert fake_intents == []


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(api_client, webhook_secret):
    response = await _send_webhook(
        api_client, "payment_intent.succeeded", {"id": "pi_x"}, secret="whsec_wrong"
    )
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_WEBHOOK_SIGNATURE"

    response = await api_client.post("/api/stripe-webhook", content=b"{}")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_completes_rsvp_and_notifies(signup, api_client, webhook_secret):
    guest_client, _, rsvp = await _paid_rsvp(signup)
    intent = {"id": "pi_9", "metadata": {"kind": "rsvp", "recordId": str(rsvp["id"])}}

    response = await _send_webhook(api_client, "payment_intent.succeeded", intent)
    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "handled": True,
        "kind": "rsvp",
        "recordId": rsvp["id"],
        "status": "completed",
    }

    rsvps = (await guest_client.get("/api/rsvps/my")).json()
    assert rsvps[0]["paymentStatus"] == "completed"

    notifications = (await guest_client.get("/api/notifications")).json()["items"]
    assert [item["type"] for item in notifications] == ["payment"]

    # Повтор того же события ничего не меняет
    response = await _send_webhook(api_client, "payment_intent.succeeded", intent)
    assert response.status_code == 200
    assert response.json()["handled"] is True
    assert (await guest_client.get("/api/notifications")).json()["total"] == 1


@pytest.mark.asyncio
async def test_completed_payment_is_terminal(signup, api_client, webhook_secret):
    guest_client, _, rsvp = await _paid_rsvp(signup)
    intent = {"id": "pi_9", "metadata": {"kind": "rsvp", "recordId": rsvp["id"]}}

    await _send_webhook(api_client, "payment_intent.succeeded", intent)
    response = await _send_webhook(api_client, "payment_intent.payment_failed", intent)
    assert response.status_code == 200
    assert response.json()["handled"] is False

    rsvps = (await guest_client.get("/api/rsvps/my")).json()
    assert rsvps[0]["paymentStatus"] == "completed"


@pytest.mark.asyncio
async def test_failed_donation_leaves_campaign_total(signup, api_client, webhook_secret):
    campaign, donation = await _donation(signup, api_client, amount=500)
    intent = {"id": "pi_d", "metadata": {"kind": "donation", "recordId": donation["id"]}}
    url = f"/api/campaigns/{campaign['id']}"

    assert (await api_client.get(url)).json()["currentAmount"] == 500

    response = await _send_webhook(api_client, "payment_intent.payment_failed", intent)
    assert response.json()["status"] == "failed"
    assert (await api_client.get(url)).json()["currentAmount"] == 0

    # Повторная попытка оплаты после отказа
    response = await _send_webhook(api_client, "payment_intent.succeeded", intent)
    assert response.json()["status"] == "completed"
    assert (await api_client.get(url)).json()["currentAmount"] == 500

    donations = (await api_client.get(f"{url}/donations")).json()
    assert donations["items"][0]["paymentStatus"] == "completed"


@pytest.mark.asyncio
async def test_webhook_locates_record_by_intent_id(signup, fake_intents, webhook_secret):
    guest_client, _, rsvp = await _paid_rsvp(signup)
    await guest_client.post(
        "/api/create-payment-intent",
        json={"amount": 3000, "metadata": {"kind": "rsvp", "recordId": rsvp["id"]}},
    )

    response = await _send_webhook(guest_client, "payment_intent.succeeded", {"id": "pi_1"})
    assert response.status_code == 200
    assert response.json()["recordId"] == rsvp["id"]

    # Оплаченную запись повторно оплатить нельзя
    response = await guest_client.post(
        "/api/create-payment-intent",
        json={"amount": 3000, "metadata": {"kind": "rsvp", "recordId": rsvp["id"]}},
    )
    assert response.status_code == 409
    assert response.json()["error"] == "INVALID_STATE"


@pytest.mark.asyncio
async def test_dues_payment_gets_paid_at(club_with_members, api_client, webhook_secret):
    ctx = await club_with_members()
    admin_client, _ = ctx["admin"]
    member_client, _ = ctx["member"]
    dues = (
        await admin_client.post(
            f"/api/clubs/{ctx['club']['id']}/dues", json={"title": "Fall", "amount": 2000}
        )
    ).json()
    payment = (
        await member_client.post("/api/dues-payments", json={"duesId": dues["id"]})
    ).json()

    intent = {"id": "pi_dues", "metadata": {"kind": "dues_payment", "recordId": payment["id"]}}
    response = await _send_webhook(api_client, "payment_intent.succeeded", intent)
    assert response.json()["handled"] is True

    payments = (await member_client.get("/api/dues-payments/my")).json()
    assert payments[0]["paymentStatus"] == "completed"
    assert payments[0]["paidAt"] is not None


@pytest.mark.asyncio
async def test_unknown_events_and_records_are_acknowledged(api_client, webhook_secret):
    response = await _send_webhook(api_client, "customer.created", {"id": "cus_1"})
    assert response.status_code == 200
    assert response.json()["handled"] is False

    response = await _send_webhook(api_client, "payment_intent.succeeded", {"id": "pi_nobody"})
    assert response.status_code == 200
    assert response.json()["handled"] is False

    response = await _send_webhook(
        api_client,
        "payment_intent.succeeded",
        {"id": "pi_gone", "metadata": {"kind": "rsvp", "recordId": "404"}},
    )
    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "handled": False,
        "kind": "rsvp",
        "recordId": 404,
        "status": None,
    }


# === Повторная оплата после отказа ===


async def _rsvp_for(client, event_id, name, tickets):
    response = await client.post(
        "/api/rsvps",
        json={
            "eventId": event_id,
            "attendeeName": name,
            "attendeeEmail": f"{name}@campus.edu",
            "ticketsPurchased": tickets,
        },
    )
    return response


@pytest.mark.asyncio
async def test_retried_payment_cannot_oversell_event(signup, api_client, webhook_secret, db_session):
    host_client, _ = await signup("hank")
    first_client, _ = await signup("fay")
    second_client, _ = await signup("sam")
    event = (
        await host_client.post(
            "/api/events",
            json={
                "title": "Gala",
                "description": "Dinner",
                "date": _future(),
                "price": 1000,
                "requiresPayment": True,
                "capacity": 2,
            },
        )
    ).json()

    first = (await _rsvp_for(first_client, event["id"], "fay", 2)).json()
    intent = {"id": "pi_first", "metadata": {"kind": "rsvp", "recordId": first["id"]}}
    response = await _send_webhook(api_client, "payment_intent.payment_failed", intent)
    assert response.json()["status"] == "failed"

    # Места освободились и проданы другому
    response = await _rsvp_for(second_client, event["id"], "sam", 2)
    assert response.status_code == 201

    response = await _send_webhook(api_client, "payment_intent.succeeded", intent)
    assert response.status_code == 200
    assert response.json()["handled"] is False

    rsvps = (await first_client.get("/api/rsvps/my")).json()
    assert rsvps[0]["paymentStatus"] == "failed"

    stored = await db_session.get(Rsvp, first["id"])
    assert stored.payment_status.value == "failed"


@pytest.mark.asyncio
async def test_retried_payment_succeeds_when_seats_are_free(signup, api_client, webhook_secret):
    host_client, _ = await signup("hank")
    guest_client, _ = await signup("fay")
    event = (
        await host_client.post(
            "/api/events",
            json={
                "title": "Gala",
                "description": "Dinner",
                "date": _future(),
                "price": 1000,
                "requiresPayment": True,
                "capacity": 2,
            },
        )
    ).json()
    rsvp = (await _rsvp_for(guest_client, event["id"], "fay", 2)).json()
    intent = {"id": "pi_retry", "metadata": {"kind": "rsvp", "recordId": rsvp["id"]}}

    await _send_webhook(api_client, "payment_intent.payment_failed", intent)
    response = await _send_webhook(api_client, "payment_intent.succeeded", intent)
    assert response.json()["status"] == "completed"


@pytest.mark.asyncio
async def test_one_off_dues_are_not_completed_twice(club_with_members, api_client, webhook_secret):
    ctx = await club_with_members()
    admin_client, _ = ctx["admin"]
    member_client, _ = ctx["member"]
    dues = (
        await admin_client.post(
            f"/api/clubs/{ctx['club']['id']}/dues", json={"title": "Fall", "amount": 2000}
        )
    ).json()

    first = (
        await member_client.post("/api/dues-payments", json={"duesId": dues["id"]})
    ).json()
    first_intent = {"id": "pi_a", "metadata": {"kind": "dues_payment", "recordId": first["id"]}}
    await _send_webhook(api_client, "payment_intent.payment_failed", first_intent)

    response = await member_client.post("/api/dues-payments", json={"duesId": dues["id"]})
    assert response.status_code == 201
    second = response.json()
    second_intent = {"id": "pi_b", "metadata": {"kind": "dues_payment", "recordId": second["id"]}}
    response = await _send_webhook(api_client, "payment_intent.succeeded", second_intent)
    assert response.json()["status"] == "completed"

    response = await _send_webhook(api_client, "payment_intent.succeeded", first_intent)
    assert response.json()["handled"] is False

    payments = (await member_client.get("/api/dues-payments/my")).json()
    statuses = {item["id"]: item["paymentStatus"] for item in payments}
    assert statuses == {first["id"]: "failed", second["id"]: "completed"}


# === Чужие записи ===


@pytest.mark.asyncio
async def test_only_owner_creates_intent_for_record(signup, api_client, fake_intents):
    _, _, rsvp = await _paid_rsvp(signup)
    other_client, _ = await signup("mallory")
    body = {"amount": 3000, "metadata": {"kind": "rsvp", "recordId": rsvp["id"]}}

    response = await other_client.post("/api/create-payment-intent", json=body)
    assert response.status_code == 403
    assert response.json()["error"] == "PERMISSION_DENIED"

    response = await api_client.post("/api/create-payment-intent", json=body)
    assert response.status_code == 403
    assert fake_intents == []


@pytest.mark.asyncio
async def test_failure_of_superseded_intent_is_ignored(signup, api_client, fake_intents, webhook_secret):
    guest_client, _, rsvp = await _paid_rsvp(signup)
    await guest_client.post(
        "/api/create-payment-intent",
        json={"amount": 3000, "metadata": {"kind": "rsvp", "recordId": rsvp["id"]}},
    )

    stale = {"id": "pi_other", "metadata": {"kind": "rsvp", "recordId": rsvp["id"]}}
    response = await _send_webhook(api_client, "payment_intent.payment_failed", stale)
    assert response.json()["handled"] is False
    rsvps = (await guest_client.get("/api/rsvps/my")).json()
    assert rsvps[0]["paymentStatus"] == "pending"

    current = {"id": "pi_1", "metadata": {"kind": "rsvp", "recordId": rsvp["id"]}}
    response = await _send_webhook(api_client, "payment_intent.payment_failed", current)
    assert response.json()["status"] == "failed"
