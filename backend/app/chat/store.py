"""DuckDB-based message storage.

The message store is the durable half of chat: every accepted inbound
frame is appended here before live delivery is attempted, and clients
recover anything they missed through :meth:`MessageStore.history`.

Database Schema:
    messages table:
        - id: Message UUID (assigned on insert)
        - sender_id / receiver_id: User UUIDs
        - content: Message text
        - image_url: Optional uploaded image URL
        - is_read: Set once the receiver fetches history
        - created_at / updated_at: UTC timestamps

Ordering:
    ``created_at`` is strictly increasing per store, so two appends within
    the same clock tick still sort in insertion order.
"""
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from app.database import Database

from .schemas import ChatMessage

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    id          VARCHAR PRIMARY KEY,
    sender_id   VARCHAR NOT NULL,
    receiver_id VARCHAR NOT NULL,
    content     VARCHAR NOT NULL,
    image_url   VARCHAR,
    is_read     BOOLEAN NOT NULL DEFAULT FALSE,
    created_at  TIMESTAMP NOT NULL,
    updated_at  TIMESTAMP NOT NULL
)
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_messages_sender ON messages(sender_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_receiver ON messages(receiver_id)",
)

_COLUMNS = [
    "id", "sender_id", "receiver_id", "content", "image_url",
    "is_read", "created_at", "updated_at",
]

_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM messages"


class MessageStore:
    """Append-only message log with read-flag updates.

    Raises:
        StorageError: From any operation when DuckDB fails.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._db.register_schema(_CREATE_TABLE, *_INDEXES)
        self._clock_lock = threading.Lock()
        self._last_ts: Optional[datetime] = None

    def _next_timestamp(self) -> datetime:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        with self._clock_lock:
            if self._last_ts is not None and now <= self._last_ts:
                now = self._last_ts + timedelta(microseconds=1)
            self._last_ts = now
        return now

    def append(
        self,
        sender_id: str,
        receiver_id: str,
        content: str,
        image_url: Optional[str] = None,
    ) -> ChatMessage:
        """Insert a new unread message and return the stored record."""
        message_id = str(uuid.uuid4())
        now = self._next_timestamp()
        self._db.execute(
            """
            INSERT INTO messages
              (id, sender_id, receiver_id, content, image_url, is_read,
               created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, FALSE, ?, ?)
            """,
            [message_id, str(sender_id), str(receiver_id), content, image_url, now, now],
        )
        return ChatMessage(
            id=message_id,
            sender_id=str(sender_id),
            receiver_id=str(receiver_id),
            content=content,
            image_url=image_url,
            is_read=False,
            created_at=now.replace(tzinfo=timezone.utc),
            updated_at=now.replace(tzinfo=timezone.utc),
        )

    def get(self, message_id: str) -> Optional[ChatMessage]:
        row = self._db.fetchone(f"{_SELECT} WHERE id = ?", [message_id])
        return self._row_to_message(row) if row else None

    def history(self, user_a: str, user_b: str) -> List[ChatMessage]:
        """All messages between two users, both directions, oldest first."""
        rows = self._db.fetchall(
            f"""
            {_SELECT}
            WHERE (sender_id = ? AND receiver_id = ?)
               OR (sender_id = ? AND receiver_id = ?)
            ORDER BY created_at ASC, id ASC
            """,
            [str(user_a), str(user_b), str(user_b), str(user_a)],
        )
        return [self._row_to_message(r) for r in rows]

    def mark_read_from_to(self, sender_id: str, receiver_id: str) -> int:
        """Mark every unread sender->receiver message as read.

        Returns:
            Number of messages updated.
        """
        now = self._next_timestamp()
        updated = self._db.fetchall(
            """
            UPDATE messages SET is_read = TRUE, updated_at = ?
            WHERE sender_id = ? AND receiver_id = ? AND NOT is_read
            RETURNING id
            """,
            [now, str(sender_id), str(receiver_id)],
        )
        return len(updated)

    def unread_count(self, sender_id: str, receiver_id: str) -> int:
        row = self._db.fetchone(
            "SELECT count(*) FROM messages"
            " WHERE sender_id = ? AND receiver_id = ? AND NOT is_read",
            [str(sender_id), str(receiver_id)],
        )
        return int(row[0]) if row else 0

    @staticmethod
    def _row_to_message(row) -> ChatMessage:
        d = dict(zip(_COLUMNS, row))
        d["created_at"] = d["created_at"].replace(tzinfo=timezone.utc)
        d["updated_at"] = d["updated_at"].replace(tzinfo=timezone.utc)
        return ChatMessage(**d)
