"""User directory module: staff and guest accounts."""

from .schemas import STAFF_ROLES, User, UserInfo, UserRole
from .service import UserDirectory

__all__ = [
    "STAFF_ROLES",
    "User",
    "UserInfo",
    "UserRole",
    "UserDirectory",
]
