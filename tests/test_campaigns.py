import asyncio
from datetime import datetime, timedelta, timezone

import pytest

TIERS = {
    "version": 1,
    "tiers": [
        {"id": "bronze", "name": "Bronze", "amount": 1000},
        {"id": "gold", "name": "Gold", "amount": 5000, "perks": ["T-shirt"]},
    ],
}


async def _create_campaign(client, **extra):
    payload = {
        "title": "New chess boards",
        "description": "Twenty tournament sets",
        "goalAmount": 100000,
        **extra,
    }
    response = await client.post("/api/campaigns", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _donation(campaign_id, amount, **extra):
    return {
        "campaignId": campaign_id,
        "donorName": "Dana Donor",
        "donorEmail": "dana@example.com",
        "amount": amount,
        **extra,
    }


@pytest.mark.asyncio
async def test_donation_raises_current_amount(signup, api_client):
    owner_client, _ = await signup("olive")
    campaign = await _create_campaign(owner_client)
    assert campaign["currentAmount"] == 0

    response = await api_client.post("/api/donations", json=_donation(campaign["id"], 500))
    assert response.status_code == 201
    assert response.json()["paymentStatus"] == "pending"

    response = await api_client.get(f"/api/campaigns/{campaign['id']}")
    assert response.json()["currentAmount"] == 500


@pytest.mark.asyncio
async def test_concurrent_donations_are_all_counted(signup, api_client):
    owner_client, _ = await signup("olive")
    campaign = await _create_campaign(owner_client)

    responses = await asyncio.gather(
        *[
            api_client.post("/api/donations", json=_donation(campaign["id"], 100))
            for _ in range(10)
        ]
    )
    assert [response.status_code for response in responses] == [201] * 10

    response = await api_client.get(f"/api/campaigns/{campaign['id']}")
    assert response.json()["currentAmount"] == 1000


@pytest.mark.asyncio
async def test_current_amount_is_not_writable(signup, api_client):
    owner_client, _ = await signup("olive")
    campaign = await _create_campaign(owner_client, currentAmount=99999)
    assert campaign["currentAmount"] == 0

    await api_client.post("/api/donations", json=_donation(campaign["id"], 700))

    response = await owner_client.patch(
        f"/api/campaigns/{campaign['id']}",
        json={"currentAmount": 1, "title": "Boards and clocks"},
    )
    assert response.status_code == 200
    assert response.json()["title"] == "Boards and clocks"
    assert response.json()["currentAmount"] == 700


@pytest.mark.asyncio
async def test_tier_minimum_is_enforced(signup, api_client):
    owner_client, _ = await signup("olive")
    campaign = await _create_campaign(owner_client, tiers=TIERS)
    assert [tier["id"] for tier in campaign["tiers"]["tiers"]] == ["bronze", "gold"]

    response = await api_client.post(
        "/api/donations", json=_donation(campaign["id"], 4000, tierId="gold")
    )
    assert response.status_code == 400
    assert response.json()["details"]["minimum"] == 5000

    response = await api_client.post(
        "/api/donations", json=_donation(campaign["id"], 100, tierId="platinum")
    )
    assert response.status_code == 400

    response = await api_client.post(
        "/api/donations", json=_donation(campaign["id"], 5000, tierId="gold")
    )
    assert response.status_code == 201

    response = await api_client.get(f"/api/campaigns/{campaign['id']}")
    assert response.json()["currentAmount"] == 5000


@pytest.mark.asyncio
async def test_unknown_tiers_version_is_rejected(signup):
    owner_client, _ = await signup("olive")
    response = await owner_client.post(
        "/api/campaigns",
        json={
            "title": "Boards",
            "description": "Sets",
            "goalAmount": 1000,
            "tiers": {"version": 2, "tiers": []},
        },
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_duplicate_tier_ids_are_rejected(signup):
    owner_client, _ = await signup("olive")
    tiers = {
        "version": 1,
        "tiers": [
            {"id": "a", "name": "A", "amount": 100},
            {"id": "a", "name": "B", "amount": 200},
        ],
    }
    response = await owner_client.post(
        "/api/campaigns",
        json={"title": "Boards", "description": "Sets", "goalAmount": 1000, "tiers": tiers},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_inactive_or_ended_campaign_rejects_donations(signup, api_client):
    owner_client, _ = await signup("olive")
    campaign = await _create_campaign(owner_client)
    await owner_client.patch(f"/api/campaigns/{campaign['id']}", json={"isActive": False})

    response = await api_client.post("/api/donations", json=_donation(campaign["id"], 100))
    assert response.status_code == 400

    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    ended = await _create_campaign(owner_client, deadline=past)
    response = await api_client.post("/api/donations", json=_donation(ended["id"], 100))
    assert response.status_code == 400

    response = await api_client.get(f"/api/campaigns/{campaign['id']}")
    assert response.json()["currentAmount"] == 0


@pytest.mark.asyncio
async def test_anonymous_donors_are_masked(signup, api_client):
    owner_client, _ = await signup("olive")
    campaign = await _create_campaign(owner_client)

    await api_client.post("/api/donations", json=_donation(campaign["id"], 100))
    await api_client.post(
        "/api/donations",
        json=_donation(campaign["id"], 200, donorName="Secret Sam", isAnonymous=True),
    )

    response = await api_client.get(f"/api/campaigns/{campaign['id']}/donations")
    assert response.status_code == 200
    items = response.json()["items"]
    names = sorted(item["donorName"] for item in items)
    assert names == ["Anonymous", "Dana Donor"]
    assert all("donorEmail" not in item for item in items)


@pytest.mark.asyncio
async def test_only_creator_or_officers_update(club_with_members):
    ctx = await club_with_members()
    officer_client, _ = ctx["officer"]
    member_client, _ = ctx["member"]
    admin_client, _ = ctx["admin"]

    campaign = await _create_campaign(officer_client, clubId=ctx["club"]["id"])

    response = await member_client.patch(
        f"/api/campaigns/{campaign['id']}", json={"title": "Mine now"}
    )
    assert response.status_code == 403

    response = await admin_client.patch(
        f"/api/campaigns/{campaign['id']}", json={"goalAmount": 5000}
    )
    assert response.status_code == 200
    assert response.json()["goalAmount"] == 5000

    response = await member_client.post(
        "/api/campaigns",
        json={"clubId": ctx["club"]["id"], "title": "x", "description": "y", "goalAmount": 10},
    )
    assert response.status_code == 403
