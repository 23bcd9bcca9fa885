import re
from datetime import datetime, timezone
from typing import Optional

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_.\-]{3,50}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Привести datetime к aware UTC.

    SQLite возвращает naive значения даже для DateTime(timezone=True),
    поэтому сравнения в Python всегда идут через этот хелпер.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clean_username(username: str) -> str:
    """Нормализует и проверяет username"""
    if not username or not username.strip():
        raise ValueError("Username cannot be empty")

    username = username.strip()
    if not USERNAME_RE.match(username):
        raise ValueError(
            "Username must be 3-50 characters: letters, digits, '_', '.' or '-'"
        )
    return username


def clean_email(email: str) -> str:
    """Нормализует email к нижнему регистру и проверяет формат"""
    if not email or not email.strip():
        raise ValueError("Email cannot be empty")

    email = email.strip().lower()
    if len(email) > 255 or not EMAIL_RE.match(email):
        raise ValueError("Invalid email address")
    return email
