import pytest
from sqlalchemy import select, text

from univo.core import config, init_db
from univo.core.database import engine
from univo.core.exceptions import ConfigurationError, DatabaseError, NotFoundError
from univo.accounts.models.users import User


@pytest.mark.asyncio
async def test_verify_passes_on_complete_schema():
    assert await init_db.missing_tables() == []
    assert await init_db.verify_database_setup() is True


@pytest.mark.asyncio
async def test_verify_reports_missing_tables():
    async with engine.begin() as conn:
        await conn.execute(text("DROP TABLE notifications"))

    with pytest.raises(DatabaseError) as exc_info:
        await init_db.verify_database_setup()
    assert exc_info.value.details["missing_tables"] == ["notifications"]

    await init_db.init_database()
    assert await init_db.missing_tables() == []


@pytest.mark.asyncio
async def test_reset_drops_data(signup, db_session):
    await signup("alice")

    await init_db.reset_database()

    result = await db_session.execute(select(User))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_reset_refused_in_production(monkeypatch):
    monkeypatch.setattr(config, "DEBUG", False)
    monkeypatch.setattr(config, "ENVIRONMENT", "production")

    with pytest.raises(ConfigurationError):
        await init_db.reset_database()
    assert await init_db.missing_tables() == []


@pytest.mark.asyncio
async def test_grant_platform_admin(signup, db_session):
    _, user = await signup("alice")

    assert await init_db.main(["grant-admin", "alice"]) == 0

    stored = await db_session.get(User, user["id"])
    assert stored.is_platform_admin is True


@pytest.mark.asyncio
async def test_grant_platform_admin_unknown_user():
    with pytest.raises(NotFoundError):
        await init_db.grant_platform_admin("nobody")


@pytest.mark.asyncio
async def test_unknown_command_returns_error_code():
    assert await init_db.main(["migrate"]) == 1
