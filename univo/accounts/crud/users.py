import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from univo.core.database import db_operation, with_db_transaction
from univo.core.exceptions import DuplicateError, NotFoundError, ValidationError
from univo.core.logging_utils import log_business_event
from univo.core.passwords import hash_password, verify_password, check_needs_rehash
from univo.accounts.models.users import User
from univo.accounts.schemas.users import UserRegister, UserUpdate

logger = logging.getLogger(__name__)


@db_operation
async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[User]:
    """Получить пользователя по ID"""
    if not user_id or user_id <= 0:
        raise ValidationError("User ID must be positive")

    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


@db_operation
async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    if not username or not username.strip():
        return None

    result = await session.execute(select(User).where(User.username == username.strip()))
    return result.scalar_one_or_none()


async def create_user(session: AsyncSession, user_data: UserRegister) -> User:
    """Зарегистрировать пользователя с уникальными username и email"""

    async def _create_user_operation(session: AsyncSession):
        result = await session.execute(
            select(User).where(
                or_(User.username == user_data.username, User.email == user_data.email)
            )
        )
        existing = result.scalars().first()
        if existing:
            if existing.username == user_data.username:
                raise DuplicateError("User", "username", user_data.username)
            raise DuplicateError("User", "email", user_data.email)

        user = User(
            username=user_data.username,
            email=user_data.email,
            password_hash=hash_password(user_data.password),
            first_name=user_data.first_name,
            last_name=user_data.last_name,
        )
        session.add(user)
        await session.flush()
        return user

    try:
        user = await with_db_transaction(session, _create_user_operation)
    except IntegrityError:
        # Параллельная регистрация с тем же username/email
        raise DuplicateError("User", "username", user_data.username)

    await session.refresh(user)
    log_business_event("user_registered", "user", user.id, {"username": user.username})
    return user


async def authenticate_user(
    session: AsyncSession, username: str, password: str
) -> Optional[User]:
    """Вернуть пользователя при верном пароле, иначе None"""
    user = await get_user_by_username(session, username)
    if not user or not verify_password(user.password_hash, password):
        return None

    if check_needs_rehash(user.password_hash):

        async def _rehash_operation(session: AsyncSession):
            user.password_hash = hash_password(password)

        await with_db_transaction(session, _rehash_operation)
        logger.info("Password hash upgraded", extra={"user_id": user.id})

    return user


async def update_user_profile(
    session: AsyncSession, user_id: int, user_data: UserUpdate
) -> User:
    """Обновить профиль; меняются только переданные поля"""
    update_data = user_data.model_dump(exclude_unset=True)

    async def _update_user_operation(session: AsyncSession):
        user = await get_user_by_id(session, user_id)
        if not user:
            raise NotFoundError("User", str(user_id))

        new_email = update_data.get("email")
        if new_email and new_email != user.email:
            result = await session.execute(
                select(User.id).where(User.email == new_email, User.id != user_id)
            )
            if result.scalar_one_or_none():
                raise DuplicateError("User", "email", new_email)

        for field, value in update_data.items():
            if field in ("first_name", "last_name", "email") and value is None:
                continue
            setattr(user, field, value)

        await session.flush()
        return user

    try:
        user = await with_db_transaction(session, _update_user_operation)
    except IntegrityError:
        raise DuplicateError("User", "email", update_data.get("email") or "")

    await session.refresh(user)
    return user
