from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from univo.core.config import (
    SESSION_COOKIE_NAME,
    SESSION_COOKIE_SECURE,
    SESSION_TTL_DAYS,
)
from univo.core.database import get_session
from univo.core.dependencies import get_current_user
from univo.core.exceptions import UnauthorizedError
from univo.core.limits import limiter
from univo.core.schemas import MessageResponse
from univo.accounts.crud.sessions import create_user_session, delete_user_session
from univo.accounts.crud.users import create_user, authenticate_user
from univo.accounts.models.users import User
from univo.accounts.schemas.users import UserRegister, UserLogin, UserRead

router = APIRouter(prefix="/auth", tags=["Auth"])


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=SESSION_TTL_DAYS * 24 * 60 * 60,
        httponly=True,
        samesite="lax",
        secure=SESSION_COOKIE_SECURE,
        path="/",
    )


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def register(
    request: Request,
    response: Response,
    user_data: UserRegister,
    db: AsyncSession = Depends(get_session),
):
    """
    Register a new account and start a session.

    - **username**: 3-50 characters, letters, digits, `_`, `.`, `-`
    - **email**: unique email address
    - **password**: at least 8 characters
    """
    user = await create_user(db, user_data)
    token = await create_user_session(db, user.id, request.headers.get("user-agent"))
    _set_session_cookie(response, token)
    return user


@router.post("/login", response_model=UserRead)
@limiter.limit("10/minute")
async def login(
    request: Request,
    response: Response,
    credentials: UserLogin,
    db: AsyncSession = Depends(get_session),
):
    """Log in with username and password. Sets the session cookie."""
    user = await authenticate_user(db, credentials.username, credentials.password)
    if not user:
        raise UnauthorizedError("Invalid username or password")

    token = await create_user_session(db, user.id, request.headers.get("user-agent"))
    _set_session_cookie(response, token)
    return user


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
):
    """Destroy the current session. Succeeds even without a session."""
    await delete_user_session(db, request.cookies.get(SESSION_COOKIE_NAME))
    response.delete_cookie(
        SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="lax",
        secure=SESSION_COOKIE_SECURE,
    )
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=UserRead)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user
