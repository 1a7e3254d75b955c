"""Role-based chat policy.

Which roles may exchange messages is a fixed table of unordered role
pairs. Same-role pairs are never allowed, which also rules out
self-addressed messages.

    guest        <-> receptionist
    admin        <-> receptionist
    admin        <-> cleaner
"""
from typing import FrozenSet

from app.users.schemas import UserRole

CHAT_PAIRS: FrozenSet[FrozenSet[UserRole]] = frozenset({
    frozenset({UserRole.GUEST, UserRole.RECEPTIONIST}),
    frozenset({UserRole.ADMIN, UserRole.RECEPTIONIST}),
    frozenset({UserRole.ADMIN, UserRole.CLEANER}),
})


def can_chat(role_a: UserRole, role_b: UserRole) -> bool:
    """Return True if users with these roles may message each other."""
    return frozenset({UserRole(role_a), UserRole(role_b)}) in CHAT_PAIRS


def allowed_contact_roles(role: UserRole) -> FrozenSet[UserRole]:
    """Roles a user with *role* may chat with."""
    return frozenset(other for other in UserRole if can_chat(role, other))
