"""
Entity store plumbing: engine, sessions, retries and transactions.

CRUD modules never commit on their own. Reads are wrapped with
``@db_operation``; writes are an inner ``_x_operation(session)`` passed to
``with_db_transaction``, which commits once and rolls the whole unit back
on any error.
"""

import asyncio
import logging
from functools import wraps
from typing import Callable, TypeVar, Any, AsyncGenerator, Dict

from fastapi.exceptions import RequestValidationError
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy.sql import text
from sqlalchemy.exc import (
    SQLAlchemyError,
    OperationalError,
    DisconnectionError,
    TimeoutError,
)
from asyncpg.exceptions import (
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)
from starlette.exceptions import HTTPException

from .config import (
    DATABASE_URL,
    IS_SQLITE,
    DB_RETRY_ATTEMPTS,
    DB_RETRY_DELAY,
    DB_RETRY_BACKOFF_FACTOR,
)
from .exceptions import (
    BaseAppException,
    DatabaseConnectionError,
    DatabaseTimeoutError,
)

logger = logging.getLogger(__name__)


def _engine_options() -> Dict[str, Any]:
    if IS_SQLITE:
        # Локальный запуск и тесты: соединение на сессию, ждём блокировку записи
        return {"poolclass": NullPool, "connect_args": {"timeout": 30}}
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


engine = create_async_engine(DATABASE_URL, echo=False, **_engine_options())

if IS_SQLITE:

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # ON DELETE CASCADE / SET NULL работают только с этим pragma
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async_session = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()

F = TypeVar("F", bound=Callable[..., Any])

RETRYABLE_EXCEPTIONS = (
    OperationalError,
    DisconnectionError,
    TimeoutError,
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)


def db_retry(
    max_attempts: int = None,
    delay: float = None,
    backoff_factor: float = None,
    exceptions: tuple = None,
) -> Callable[[F], F]:
    """
    Повторять операцию при временных сбоях хранилища.

    Задержка растёт экспоненциально. Доменные ошибки (BaseAppException) и
    нарушения ограничений не повторяются. Когда попытки исчерпаны,
    поднимается DatabaseTimeoutError или DatabaseConnectionError.
    """
    max_attempts = max_attempts or DB_RETRY_ATTEMPTS
    delay = DB_RETRY_DELAY if delay is None else delay
    backoff_factor = backoff_factor or DB_RETRY_BACKOFF_FACTOR
    exceptions = exceptions or RETRYABLE_EXCEPTIONS

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            current_delay = delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except BaseAppException:
                    raise
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts",
                            extra={
                                "function": func.__name__,
                                "max_attempts": max_attempts,
                                "exception_type": type(e).__name__,
                            },
                        )
                        if isinstance(e, TimeoutError):
                            raise DatabaseTimeoutError(func.__name__, 30)
                        raise DatabaseConnectionError(
                            f"Database operation failed after {max_attempts} attempts"
                        )

                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt}/{max_attempts}), retrying",
                        extra={
                            "function": func.__name__,
                            "attempt": attempt,
                            "exception_type": type(e).__name__,
                        },
                    )
                    await asyncio.sleep(current_delay)
                    current_delay *= backoff_factor

        return wrapper

    return decorator


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: одна сессия на запрос"""
    async with async_session() as session:
        try:
            yield session
        except (BaseAppException, HTTPException, RequestValidationError):
            # Ответ клиенту уже определён, обработчики ошибок его залогируют
            await session.rollback()
            raise
        except Exception as e:
            await session.rollback()
            logger.error(
                f"Session error: {type(e).__name__}",
                extra={"exception_type": type(e).__name__},
            )
            raise


class DatabaseManager:
    """Создание схемы и проверка соединения"""

    @staticmethod
    @db_retry()
    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(
            "Database tables created/verified",
            extra={"tables": len(Base.metadata.tables)},
        )

    @staticmethod
    async def check_connection() -> bool:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database connection check failed: {type(e).__name__}")
            raise DatabaseConnectionError("Database connection check failed")
        return True

    @staticmethod
    async def close_connections():
        await engine.dispose()
        logger.info("Database connections closed")


db_manager = DatabaseManager()


class TransactionManager:
    """Выполняет операцию в транзакции; временные сбои повторяются целиком"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @db_retry()
    async def execute(self, operation: Callable, *args, **kwargs):
        try:
            result = await operation(self.session, *args, **kwargs)
            await self.session.commit()
            return result
        except BaseAppException:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.warning(
                f"Transaction {getattr(operation, '__name__', 'operation')} rolled back: "
                f"{type(e).__name__}",
                extra={"exception_type": type(e).__name__},
            )
            raise


async def with_db_transaction(
    session: AsyncSession, operation: Callable, *args, **kwargs
):
    """
    Выполнить ``operation(session, *args, **kwargs)`` и закоммитить.

    Операция сама не коммитит: при любой ошибке все её изменения
    (включая уведомления и счётчики) откатываются вместе.
    """
    return await TransactionManager(session).execute(operation, *args, **kwargs)


def db_operation(func: F) -> F:
    """Логирует ошибки SQLAlchemy в операциях чтения"""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(
                f"SQLAlchemy error in {func.__name__}: {type(e).__name__}",
                extra={"operation": func.__name__, "exception_type": type(e).__name__},
            )
            raise

    return wrapper
