import pytest
from sqlalchemy import func, select

from univo.clubs.models.club_members import ClubMember, MemberStatus


async def _active_rows(db_session, club_id, user_id):
    result = await db_session.execute(
        select(func.count(ClubMember.id)).where(
            ClubMember.club_id == club_id,
            ClubMember.user_id == user_id,
            ClubMember.status == MemberStatus.active,
        )
    )
    return result.scalar()


async def _member_id(client, club_id, user_id):
    response = await client.get(f"/api/clubs/{club_id}/members", params={"size": 100})
    for item in response.json()["items"]:
        if item["userId"] == user_id:
            return item["id"]
    return None


@pytest.mark.asyncio
async def test_list_members_includes_public_user(club_with_members):
    ctx = await club_with_members()
    member_client, _ = ctx["member"]

    response = await member_client.get(f"/api/clubs/{ctx['club']['id']}/members")
    assert response.status_code == 200
    page = response.json()
    assert page["total"] == 3
    roles = sorted(item["role"] for item in page["items"])
    assert roles == ["admin", "member", "officer"]
    assert all("email" not in item["user"] for item in page["items"])

    response = await member_client.get(
        f"/api/clubs/{ctx['club']['id']}/members", params={"status": "inactive"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_only_admin_adds_members(club_with_members, signup):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    officer_client, _ = ctx["officer"]
    _, newcomer = await signup("nina")

    response = await officer_client.post(
        f"/api/clubs/{club_id}/members", json={"userId": newcomer["id"]}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_add_existing_active_member_conflicts(club_with_members, db_session):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    admin_client, _ = ctx["admin"]
    _, member = ctx["member"]

    response = await admin_client.post(
        f"/api/clubs/{club_id}/members", json={"userId": member["id"]}
    )
    assert response.status_code == 409
    assert response.json()["error"] == "ALREADY_MEMBER"
    assert await _active_rows(db_session, club_id, member["id"]) == 1


@pytest.mark.asyncio
async def test_add_unknown_user_is_404(club_with_members):
    ctx = await club_with_members()
    admin_client, _ = ctx["admin"]

    response = await admin_client.post(
        f"/api/clubs/{ctx['club']['id']}/members", json={"userId": 4242}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_at_most_one_active_row_after_add_remove_cycles(club_with_members, db_session):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    admin_client, _ = ctx["admin"]
    _, member = ctx["member"]

    for _ in range(3):
        member_id = await _member_id(admin_client, club_id, member["id"])
        response = await admin_client.delete(f"/api/club-members/{member_id}")
        assert response.status_code == 204
        assert await _active_rows(db_session, club_id, member["id"]) == 0

        response = await admin_client.post(
            f"/api/clubs/{club_id}/members", json={"userId": member["id"]}
        )
        assert response.status_code == 201
        assert await _active_rows(db_session, club_id, member["id"]) == 1


@pytest.mark.asyncio
async def test_inactive_member_is_reactivated_in_place(club_with_members, db_session):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    admin_client, _ = ctx["admin"]
    _, member = ctx["member"]

    member_id = await _member_id(admin_client, club_id, member["id"])
    response = await admin_client.patch(
        f"/api/club-members/{member_id}", json={"status": "inactive"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "inactive"

    response = await admin_client.post(
        f"/api/clubs/{club_id}/members", json={"userId": member["id"], "role": "officer"}
    )
    assert response.status_code == 201
    assert response.json()["id"] == member_id
    assert response.json()["role"] == "officer"
    assert response.json()["status"] == "active"


@pytest.mark.asyncio
async def test_admin_promotes_member(club_with_members):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    admin_client, _ = ctx["admin"]
    member_client, member = ctx["member"]

    member_id = await _member_id(admin_client, club_id, member["id"])

    response = await member_client.patch(
        f"/api/club-members/{member_id}", json={"role": "admin"}
    )
    assert response.status_code == 403

    response = await admin_client.patch(
        f"/api/club-members/{member_id}", json={"role": "officer"}
    )
    assert response.status_code == 200
    assert response.json()["role"] == "officer"


@pytest.mark.asyncio
async def test_last_admin_cannot_demote_self(club_with_members):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    admin_client, admin = ctx["admin"]

    admin_member_id = await _member_id(admin_client, club_id, admin["id"])

    response = await admin_client.patch(
        f"/api/club-members/{admin_member_id}", json={"role": "member"}
    )
    assert response.status_code == 409
    assert response.json()["error"] == "LAST_ADMIN"

    response = await admin_client.patch(
        f"/api/club-members/{admin_member_id}", json={"status": "inactive"}
    )
    assert response.status_code == 409

    response = await admin_client.get("/api/users/me/clubs")
    assert response.json()[0]["role"] == "admin"


@pytest.mark.asyncio
async def test_last_admin_cannot_remove_self(club_with_members):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    admin_client, admin = ctx["admin"]

    admin_member_id = await _member_id(admin_client, club_id, admin["id"])
    response = await admin_client.delete(f"/api/club-members/{admin_member_id}")
    assert response.status_code == 409
    assert response.json()["error"] == "LAST_ADMIN"


@pytest.mark.asyncio
async def test_admin_can_step_down_when_another_admin_exists(club_with_members):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    admin_client, admin = ctx["admin"]
    officer_client, officer = ctx["officer"]

    officer_member_id = await _member_id(admin_client, club_id, officer["id"])
    response = await admin_client.patch(
        f"/api/club-members/{officer_member_id}", json={"role": "admin"}
    )
    assert response.status_code == 200

    admin_member_id = await _member_id(admin_client, club_id, admin["id"])
    response = await admin_client.patch(
        f"/api/club-members/{admin_member_id}", json={"role": "member"}
    )
    assert response.status_code == 200

    # Новый единственный администратор теперь защищён
    response = await officer_client.delete(f"/api/club-members/{officer_member_id}")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_member_can_leave(club_with_members):
    ctx = await club_with_members()
    club_id = ctx["club"]["id"]
    member_client, member = ctx["member"]
    officer_client, officer = ctx["officer"]

    member_id = await _member_id(member_client, club_id, member["id"])
    officer_member_id = await _member_id(member_client, club_id, officer["id"])

    # Чужую запись удалить нельзя
    response = await member_client.delete(f"/api/club-members/{officer_member_id}")
    assert response.status_code == 403

    response = await member_client.delete(f"/api/club-members/{member_id}")
    assert response.status_code == 204

    response = await member_client.get("/api/users/me/clubs")
    assert response.json() == []


@pytest.mark.asyncio
async def test_member_limit_is_enforced(club_with_members, signup):
    ctx = await club_with_members(max_members=3)
    admin_client, _ = ctx["admin"]
    _, newcomer = await signup("nina")

    response = await admin_client.post(
        f"/api/clubs/{ctx['club']['id']}/members", json={"userId": newcomer["id"]}
    )
    assert response.status_code == 400
    assert response.json()["details"]["limit"] == 3
