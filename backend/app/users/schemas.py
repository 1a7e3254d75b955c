"""Pydantic schemas for hotel users (staff and guests)."""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Role of a hotel user.

    Attributes:
        ADMIN: Hotel administrator (manages staff and inventory).
        RECEPTIONIST: Front desk staff.
        GUEST: Registered hotel guest.
        CLEANER: Housekeeping staff.
    """
    ADMIN = "admin"
    RECEPTIONIST = "receptionist"
    GUEST = "guest"
    CLEANER = "cleaner"


STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.RECEPTIONIST, UserRole.CLEANER})


class User(BaseModel):
    """A user record as stored in the directory.

    Staff have a ``username``; guests have an ``email`` and ``full_name``.
    ``password_hash`` is excluded from serialization.
    """
    id: str = Field(..., description="User ID (UUID string)")
    username: Optional[str] = Field(default=None, description="Staff login name")
    email: Optional[str] = Field(default=None, description="Guest login email")
    full_name: Optional[str] = Field(default=None, description="Display name")
    password_hash: str = Field(default="", exclude=True)
    role: UserRole
    created_at: datetime
    updated_at: datetime
    deactivated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.deactivated_at is None

    @property
    def display_name(self) -> str:
        """Username, then full name, then a synthesized ``User {id}``."""
        return self.username or self.full_name or f"User {self.id}"


class UserInfo(BaseModel):
    """Public view of a user returned by the auth endpoints."""
    id: str
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> "UserInfo":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            role=user.role,
        )
