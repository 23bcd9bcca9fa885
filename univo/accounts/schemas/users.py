from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from univo.core.schemas import ApiModel
from univo.core.validations import clean_username, clean_email


class UserRegister(ApiModel):
    """Registration payload."""

    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        return clean_username(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return clean_email(v)


class UserLogin(ApiModel):
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class UserUpdate(ApiModel):
    """Profile edit. Username and password are not editable here."""

    email: Optional[str] = Field(None, max_length=255)
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    bio: Optional[str] = Field(None, max_length=2000)
    avatar: Optional[str] = Field(None, max_length=512)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if v is not None:
            return clean_email(v)
        return v


class UserPublic(ApiModel):
    """User as seen by other users: no email, no flags."""

    id: int
    username: str
    first_name: str
    last_name: str
    bio: Optional[str] = None
    avatar: Optional[str] = None


class UserRead(UserPublic):
    """The authenticated user's own profile. Never carries the password hash."""

    email: str
    is_platform_admin: bool = False
    created_at: Optional[datetime] = None
