import asyncio

import pytest
from sqlalchemy import func, select

from univo.clubs.models.club_applications import ClubApplication, ApplicationStatus
from univo.clubs.models.notifications import Notification, NotificationType


async def _apply(client, club_id, letter="I would love to join"):
    return await client.post(f"/api/clubs/{club_id}/apply", json={"coverLetter": letter})


async def _notifications(db_session, user_id, type=NotificationType.application):
    result = await db_session.execute(
        select(Notification).where(Notification.user_id == user_id, Notification.type == type)
    )
    return result.scalars().all()


@pytest.mark.asyncio
async def test_apply_creates_pending_application(club_with_members, signup):
    ctx = await club_with_members()
    applicant_client, applicant = await signup("amy")

    response = await _apply(applicant_client, ctx["club"]["id"])
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["userId"] == applicant["id"]
    assert data["reviewedAt"] is None

    response = await applicant_client.get("/api/users/me/applications")
    assert [item["id"] for item in response.json()] == [data["id"]]


@pytest.mark.asyncio
async def test_duplicate_pending_application_conflicts(club_with_members, signup):
    ctx = await club_with_members()
    applicant_client, _ = await signup("amy")

    assert (await _apply(applicant_client, ctx["club"]["id"])).status_code == 201
    response = await _apply(applicant_client, ctx["club"]["id"])
    assert response.status_code == 409
    assert response.json()["error"] == "DUPLICATE_PENDING_APPLICATION"


@pytest.mark.asyncio
async def test_active_member_cannot_apply(club_with_members):
    ctx = await club_with_members()
    member_client, _ = ctx["member"]

    response = await _apply(member_client, ctx["club"]["id"])
    assert response.status_code == 409
    assert response.json()["error"] == "ALREADY_MEMBER"


@pytest.mark.asyncio
async def test_apply_to_full_club_is_rejected(club_with_members, signup):
    ctx = await club_with_members(max_members=3)
    applicant_client, _ = await signup("amy")

    response = await _apply(applicant_client, ctx["club"]["id"])
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_concurrent_applications_leave_one_pending(club_with_members, signup, db_session):
    ctx = await club_with_members()
    applicant_client, applicant = await signup("amy")

    responses = await asyncio.gather(
        _apply(applicant_client, ctx["club"]["id"], "first"),
        _apply(applicant_client, ctx["club"]["id"], "second"),
    )
    codes = sorted(response.status_code for response in responses)
    assert codes == [201, 409]

    count = await db_session.execute(
        select(func.count(ClubApplication.id)).where(
            ClubApplication.user_id == applicant["id"],
            ClubApplication.status == ApplicationStatus.pending,
        )
    )
    assert count.scalar() == 1


@pytest.mark.asyncio
async def test_accept_makes_member_and_notifies_once(club_with_members, signup, db_session):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    officer_client, officer = ctx["officer"]
    applicant_client, applicant = await signup("amy")

    application = (await _apply(applicant_client, club_id)).json()

    response = await officer_client.patch(
        f"/api/club-applications/{application['id']}", json={"status": "accepted"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "accepted"
    assert data["reviewedBy"] == officer["id"]
    assert data["reviewedAt"] is not None

    response = await applicant_client.get("/api/users/me/clubs")
    clubs = response.json()
    assert [(c["id"], c["role"]) for c in clubs] == [(club_id, "member")]

    notifications = await _notifications(db_session, applicant["id"])
    assert len(notifications) == 1
    assert notifications[0].related_id == application["id"]
    assert notifications[0].is_read is False


@pytest.mark.asyncio
async def test_reject_notifies_without_membership(club_with_members, signup, db_session):
    ctx = await club_with_members()
    admin_client, _ = ctx["admin"]
    applicant_client, applicant = await signup("amy")

    application = (await _apply(applicant_client, ctx["club"]["id"])).json()

    response = await admin_client.patch(
        f"/api/club-applications/{application['id']}", json={"status": "rejected"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"

    assert (await applicant_client.get("/api/users/me/clubs")).json() == []
    assert len(await _notifications(db_session, applicant["id"])) == 1

    # После отказа можно подать заново
    assert (await _apply(applicant_client, ctx["club"]["id"])).status_code == 201


@pytest.mark.asyncio
async def test_second_review_is_rejected(club_with_members, signup, db_session):
    ctx = await club_with_members()
    officer_client, _ = ctx["officer"]
    admin_client, _ = ctx["admin"]
    applicant_client, applicant = await signup("amy")

    application = (await _apply(applicant_client, ctx["club"]["id"])).json()
    url = f"/api/club-applications/{application['id']}"

    assert (await officer_client.patch(url, json={"status": "accepted"})).status_code == 200

    response = await admin_client.patch(url, json={"status": "rejected"})
    assert response.status_code == 409
    assert response.json()["error"] == "ALREADY_REVIEWED"

    assert (await applicant_client.get(url)).json()["status"] == "accepted"
    assert len(await _notifications(db_session, applicant["id"])) == 1


@pytest.mark.asyncio
async def test_pending_is_not_a_decision(club_with_members, signup):
    ctx = await club_with_members()
    officer_client, _ = ctx["officer"]
    applicant_client, _ = await signup("amy")

    application = (await _apply(applicant_client, ctx["club"]["id"])).json()
    response = await officer_client.patch(
        f"/api/club-applications/{application['id']}", json={"status": "pending"}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_plain_member_cannot_review(club_with_members, signup):
    ctx = await club_with_members()
    member_client, _ = ctx["member"]
    applicant_client, _ = await signup("amy")

    application = (await _apply(applicant_client, ctx["club"]["id"])).json()
    response = await member_client.patch(
        f"/api/club-applications/{application['id']}", json={"status": "accepted"}
    )
    assert response.status_code == 403

    response = await member_client.get(f"/api/club-applications/{application['id']}")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_accepting_existing_member_rolls_back(club_with_members, signup, db_session):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    admin_client, _ = ctx["admin"]
    applicant_client, applicant = await signup("amy")

    application = (await _apply(applicant_client, club_id)).json()

    # Пока заявка ждёт, администратор добавляет пользователя напрямую
    response = await admin_client.post(
        f"/api/clubs/{club_id}/members", json={"userId": applicant["id"]}
    )
    assert response.status_code == 201

    response = await admin_client.patch(
        f"/api/club-applications/{application['id']}", json={"status": "accepted"}
    )
    assert response.status_code == 409
    assert response.json()["error"] == "ALREADY_MEMBER"

    response = await applicant_client.get(f"/api/club-applications/{application['id']}")
    assert response.json()["status"] == "pending"
    assert await _notifications(db_session, applicant["id"]) == []


@pytest.mark.asyncio
async def test_withdraw_pending_application(club_with_members, signup):
    ctx = await club_with_members()
    officer_client, _ = ctx["officer"]
    applicant_client, _ = await signup("amy")

    application = (await _apply(applicant_client, ctx["club"]["id"])).json()
    url = f"/api/club-applications/{application['id']}"

    response = await applicant_client.delete(url)
    assert response.status_code == 204

    assert (await applicant_client.get(url)).status_code == 404
    response = await officer_client.get(f"/api/clubs/{ctx['club']['id']}/applications")
    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_only_applicant_can_withdraw(club_with_members, signup):
    ctx = await club_with_members()
    officer_client, _ = ctx["officer"]
    applicant_client, _ = await signup("amy")

    application = (await _apply(applicant_client, ctx["club"]["id"])).json()
    response = await officer_client.delete(f"/api/club-applications/{application['id']}")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_reviewed_application_cannot_be_withdrawn(club_with_members, signup):
    ctx = await club_with_members()
    officer_client, _ = ctx["officer"]
    applicant_client, _ = await signup("amy")

    application = (await _apply(applicant_client, ctx["club"]["id"])).json()
    url = f"/api/club-applications/{application['id']}"
    await officer_client.patch(url, json={"status": "rejected"})

    response = await applicant_client.delete(url)
    assert response.status_code == 409
    assert response.json()["error"] == "INVALID_STATE"

    response = await applicant_client.get(url)
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"


@pytest.mark.asyncio
async def test_club_applications_visible_to_managers_only(club_with_members, signup):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    officer_client, _ = ctx["officer"]
    member_client, _ = ctx["member"]
    applicant_client, _ = await signup("amy")
    await _apply(applicant_client, club_id)

    response = await officer_client.get(
        f"/api/clubs/{club_id}/applications", params={"status": "pending"}
    )
    assert response.status_code == 200
    assert response.json()["total"] == 1

    response = await member_client.get(f"/api/clubs/{club_id}/applications")
    assert response.status_code == 403
