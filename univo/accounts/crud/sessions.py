"""
Durable login sessions.

The client only ever sees the random token; the table stores its SHA-256
digest as the primary key. Sessions survive process restarts and are shared
between workers.
"""

import hashlib
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.core.config import SESSION_TTL_DAYS
from univo.core.database import db_operation, with_db_transaction
from univo.core.validations import utcnow
from univo.accounts.models.sessions import UserSession
from univo.accounts.models.users import User


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


async def create_user_session(
    session: AsyncSession, user_id: int, user_agent: Optional[str] = None
) -> str:
    """Создать сессию и вернуть токен для cookie"""
    token = secrets.token_urlsafe(32)
    now = utcnow()

    async def _create_session_operation(session: AsyncSession):
        # Заодно чистим просроченные сессии
        await session.execute(
            delete(UserSession)
            .where(UserSession.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        session.add(
            UserSession(
                id=token_digest(token),
                user_id=user_id,
                user_agent=user_agent[:255] if user_agent else None,
                expires_at=now + timedelta(days=SESSION_TTL_DAYS),
            )
        )

    await with_db_transaction(session, _create_session_operation)
    return token


@db_operation
async def get_session_user(session: AsyncSession, token: str) -> Optional[User]:
    """Пользователь действующей сессии или None"""
    if not token:
        return None

    result = await session.execute(
        select(User)
        .join(UserSession, UserSession.user_id == User.id)
        .where(
            UserSession.id == token_digest(token),
            UserSession.expires_at > utcnow(),
        )
    )
    return result.scalar_one_or_none()


async def delete_user_session(session: AsyncSession, token: str) -> None:
    if not token:
        return

    async def _delete_session_operation(session: AsyncSession):
        await session.execute(
            delete(UserSession)
            .where(UserSession.id == token_digest(token))
            .execution_options(synchronize_session=False)
        )

    await with_db_transaction(session, _delete_session_operation)
