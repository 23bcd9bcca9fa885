import asyncio
import logging
import sys

from sqlalchemy import inspect, update

from univo.core import config
from univo.core.database import DatabaseManager, async_session, engine, Base
from univo.core.exceptions import DatabaseError, ConfigurationError, NotFoundError

# Регистрирует все модели в Base.metadata
import univo.models  # noqa: F401
from univo.accounts.models.users import User

logger = logging.getLogger(__name__)
db_manager = DatabaseManager()


async def init_database():
    """Create missing tables after checking the connection."""
    try:
        logger.info(
            "Starting database initialization",
            extra={"tables": len(Base.metadata.tables)},
        )
        await db_manager.check_connection()
        await db_manager.create_tables()
        logger.info("✅ Database ready")

    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during database initialization: {e}")
        raise DatabaseError(f"Database initialization failed: {str(e)}")


async def missing_tables():
    """Таблицы из метаданных, которых нет в базе"""
    async with engine.connect() as conn:
        existing = await conn.run_sync(
            lambda sync_conn: set(inspect(sync_conn).get_table_names())
        )
    return sorted(set(Base.metadata.tables) - existing)


async def verify_database_setup():
    missing = await missing_tables()
    if missing:
        raise DatabaseError(
            "Database schema is incomplete", {"missing_tables": missing}
        )
    logger.info(f"✅ Database verification passed: {len(Base.metadata.tables)} tables")
    return True


async def reset_database():
    """Drop and recreate every table. Development and test only."""
    if not config.DEBUG and config.ENVIRONMENT != "test":
        raise ConfigurationError(
            "ENVIRONMENT",
            "Database reset is only allowed in development or test environments",
        )

    logger.warning("🚨 RESETTING DATABASE - ALL DATA WILL BE LOST!")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    except Exception as e:
        logger.error(f"Database reset failed: {e}")
        raise DatabaseError(f"Database reset failed: {str(e)}")

    await init_database()


async def grant_platform_admin(username: str):
    """Выдать права администратора платформы (нужны для общих объявлений)"""
    async with async_session() as session:
        result = await session.execute(
            update(User)
            .where(User.username == username.strip())
            .values(is_platform_admin=True)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise NotFoundError("User", username)
        await session.commit()

    logger.info(
        "Platform admin granted",
        extra={"username": username, "event_type": "business_event"},
    )


COMMANDS = {
    "init": init_database,
    "verify": verify_database_setup,
    "reset": reset_database,
    "grant-admin": grant_platform_admin,
}


async def main(argv):
    command = argv[0] if argv else "init"
    handler = COMMANDS.get(command)
    if handler is None:
        print(f"Unknown command: {command}")
        print(f"Available commands: {', '.join(COMMANDS)}")
        return 1

    if command == "grant-admin":
        if len(argv) < 2:
            print("Usage: python -m univo.core.init_db grant-admin <username>")
            return 1
        await handler(argv[1])
    else:
        await handler()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main(sys.argv[1:])))
    except KeyboardInterrupt:
        logger.info("Database initialization cancelled by user")
    except Exception as e:
        logger.error(f"Database command failed: {e}")
        sys.exit(1)
