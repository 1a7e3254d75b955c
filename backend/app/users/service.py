"""UserDirectory — DuckDB-backed staff and guest accounts."""
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from app.database import Database
from app.errors import ValidationError

from .schemas import User, UserRole

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id             VARCHAR PRIMARY KEY,
    username       VARCHAR,
    email          VARCHAR,
    full_name      VARCHAR,
    password_hash  VARCHAR NOT NULL,
    role           VARCHAR NOT NULL,
    created_at     TIMESTAMP NOT NULL,
    updated_at     TIMESTAMP NOT NULL,
    deactivated_at TIMESTAMP
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_users_role ON users(role)"

_COLUMNS = [
    "id", "username", "email", "full_name", "password_hash", "role",
    "created_at", "updated_at", "deactivated_at",
]

_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM users"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


class UserDirectory:
    """User lookups for auth, contacts and receiver-role checks.

    Username and email uniqueness is checked here rather than with table
    constraints; both are compared case-insensitively.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._db.register_schema(_CREATE_TABLE, _INDEX)

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get(self, user_id: str) -> Optional[User]:
        row = self._db.fetchone(f"{_SELECT} WHERE id = ?", [str(user_id)])
        return self._row_to_user(row) if row else None

    def get_by_username(self, username: str) -> Optional[User]:
        row = self._db.fetchone(
            f"{_SELECT} WHERE lower(username) = lower(?)", [username]
        )
        return self._row_to_user(row) if row else None

    def get_by_email(self, email: str) -> Optional[User]:
        row = self._db.fetchone(
            f"{_SELECT} WHERE lower(email) = lower(?)", [email.strip()]
        )
        return self._row_to_user(row) if row else None

    def list_active_by_roles(self, roles: Iterable[UserRole]) -> List[User]:
        """All non-deactivated users holding one of *roles*, oldest first."""
        role_values = [UserRole(r).value for r in roles]
        if not role_values:
            return []
        placeholders = ", ".join("?" for _ in role_values)
        rows = self._db.fetchall(
            f"{_SELECT} WHERE role IN ({placeholders}) AND deactivated_at IS NULL"
            " ORDER BY created_at ASC",
            role_values,
        )
        return [self._row_to_user(r) for r in rows]

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    def create(
        self,
        role: UserRole,
        password_hash: str,
        username: Optional[str] = None,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> User:
        if username and self.get_by_username(username):
            raise ValidationError(f"Username '{username}' is already taken")
        if email and self.get_by_email(email):
            raise ValidationError(f"Email '{email}' is already registered")

        user_id = str(uuid.uuid4())
        now = _utcnow()
        self._db.execute(
            """
            INSERT INTO users
              (id, username, email, full_name, password_hash, role,
               created_at, updated_at, deactivated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL)
            """,
            [
                user_id, username, email.strip() if email else None, full_name,
                password_hash, UserRole(role).value, now, now,
            ],
        )
        logger.info("[UserDirectory] Created %s user %s", UserRole(role).value, user_id)
        return self.get(user_id)

    def deactivate(self, user_id: str) -> Optional[User]:
        now = _utcnow()
        self._db.execute(
            "UPDATE users SET deactivated_at = ?, updated_at = ?"
            " WHERE id = ? AND deactivated_at IS NULL",
            [now, now, str(user_id)],
        )
        return self.get(user_id)

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row) -> User:
        d = dict(zip(_COLUMNS, row))
        for key in ("created_at", "updated_at", "deactivated_at"):
            d[key] = _as_utc(d[key])
        return User(**d)
