from univo.core.database import Base
from .users import User
from .sessions import UserSession

__all__ = ["Base", "User", "UserSession"]
