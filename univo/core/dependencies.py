from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.config import SESSION_COOKIE_NAME
from univo.core.database import get_session
from univo.core.exceptions import UnauthorizedError
from univo.accounts.crud.sessions import get_session_user
from univo.accounts.models.users import User


async def get_optional_user(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> Optional[User]:
    """Dependency: пользователь по cookie сессии, либо None для гостя"""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return None
    return await get_session_user(db, token)


async def get_current_user(
    user: Optional[User] = Depends(get_optional_user),
) -> User:
    """Dependency для эндпоинтов, требующих входа"""
    if user is None:
        raise UnauthorizedError()
    return user
