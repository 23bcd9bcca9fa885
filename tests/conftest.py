import os
import tempfile

# Окружение задаётся до импорта univo: config читается при импорте
_DB_DIR = tempfile.mkdtemp(prefix="univo-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/univo.db"
os.environ["ENVIRONMENT"] = "development"
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DB_RETRY_ATTEMPTS"] = "10"
os.environ["DB_RETRY_DELAY"] = "0.05"
os.environ["DB_RETRY_BACKOFF_FACTOR"] = "1.5"
os.environ["VALIDATE_CONFIG_ON_IMPORT"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("STRIPE_WEBHOOK_SECRET", None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update

from univo.main import app
from univo.core.database import Base, async_session, engine
from univo.accounts.models.users import User

PASSWORD = "correct-horse-battery"


@pytest_asyncio.fixture(autouse=True)
async def reset_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest_asyncio.fixture
async def db_session():
    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def client_factory():
    """Each client keeps its own cookie jar, i.e. its own login session."""
    clients = []

    async def _make() -> AsyncClient:
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def api_client(client_factory):
    return await client_factory()


@pytest.fixture
def signup(client_factory):
    """Register a user and return (client logged in as them, user json)."""

    async def _signup(username: str, **extra):
        client = await client_factory()
        payload = {
            "username": username,
            "email": f"{username}@campus.edu",
            "password": PASSWORD,
            "firstName": username.capitalize(),
            "lastName": "Tester",
            **extra,
        }
        response = await client.post("/api/auth/register", json=payload)
        assert response.status_code == 201, response.text
        return client, response.json()

    return _signup


@pytest.fixture
def make_platform_admin(db_session):
    async def _promote(user_id: int):
        await db_session.execute(
            update(User).where(User.id == user_id).values(is_platform_admin=True)
        )
        await db_session.commit()

    return _promote


@pytest.fixture
def create_club():
    async def _create(client: AsyncClient, name: str = "Chess Club", **extra):
        payload = {"name": name, "description": "We play chess", "category": "games", **extra}
        response = await client.post("/api/clubs", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def club_with_members(signup, create_club):
    """Club owned by an admin, with an officer and a plain member."""

    async def _build(max_members=None):
        admin_client, admin = await signup("alice")
        extra = {"maxMembers": max_members} if max_members else {}
        club = await create_club(admin_client, **extra)

        officer_client, officer = await signup("oscar")
        member_client, member = await signup("mike")

        response = await admin_client.post(
            f"/api/clubs/{club['id']}/members",
            json={"userId": officer["id"], "role": "officer"},
        )
        assert response.status_code == 201, response.text
        response = await admin_client.post(
            f"/api/clubs/{club['id']}/members", json={"userId": member["id"]}
        )
        assert response.status_code == 201, response.text

        return {
            "club": club,
            "admin": (admin_client, admin),
            "officer": (officer_client, officer),
            "member": (member_client, member),
        }

    return _build
