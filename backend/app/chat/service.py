"""Read-side chat queries: contact list and conversation history."""
import logging
from typing import List

from app.errors import Forbidden, NotFound, StorageError
from app.users.schemas import UserRole
from app.users.service import UserDirectory

from .rbac import allowed_contact_roles, can_chat
from .schemas import ChatMessage, Contact
from .store import MessageStore

logger = logging.getLogger(__name__)


class ChatQueryService:
    """Contacts and history for the polling endpoints."""

    def __init__(self, users: UserDirectory, store: MessageStore) -> None:
        self._users = users
        self._store = store

    def list_contacts(self, requester_id: str, requester_role: UserRole) -> List[Contact]:
        """Active users the requester may chat with, with unread counts.

        A failing unread count degrades to 0 for that contact only.
        Sorted by name (case-insensitive), then id.
        """
        roles = allowed_contact_roles(requester_role)
        candidates = self._users.list_active_by_roles(roles)

        contacts = []
        for user in candidates:
            if user.id == str(requester_id):
                continue
            try:
                unread = self._store.unread_count(user.id, requester_id)
            except StorageError as e:
                logger.warning("Failed to get unread count for user %s: %s", user.id, e)
                unread = 0
            contacts.append(Contact(
                id=user.id,
                name=user.display_name,
                role=user.role,
                unread_count=unread,
            ))

        contacts.sort(key=lambda c: (c.name.lower(), c.id))
        logger.info("Returning %d contacts for user %s", len(contacts), requester_id)
        return contacts

    def get_history(
        self, requester_id: str, requester_role: UserRole, other_user_id: str
    ) -> List[ChatMessage]:
        """Full transcript with *other_user_id*; marks their messages read.

        Raises:
            NotFound: Unknown other user.
            Forbidden: RBAC denies the role pair.
            StorageError: Persistence failure.
        """
        other = self._users.get(str(other_user_id))
        if other is None:
            raise NotFound("User not found")
        if not can_chat(requester_role, other.role):
            logger.warning(
                "RBAC check failed: %s cannot chat with %s",
                UserRole(requester_role).value, other.role.value,
            )
            raise Forbidden("Cannot chat with this user")

        updated = self._store.mark_read_from_to(other.id, requester_id)
        messages = self._store.history(requester_id, other.id)
        logger.debug("Marked %d messages as read, returning %d", updated, len(messages))
        return messages
