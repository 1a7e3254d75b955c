"""Pydantic schemas for direct-message chat.

Wire formats:
    inbound frame (client -> server):
        {"receiver_id": "<uuid>", "content": "...", "image_url": null}
    outbound frame (server -> client) and history entries:
        {"id", "sender_id", "receiver_id", "content", "image_url",
         "is_read", "created_at"}
"""
import json
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from app.users.schemas import UserRole

# Fields sent to clients; internal bookkeeping such as ``persisted`` and
# ``updated_at`` stays server-side.
WIRE_FIELDS = {"id", "sender_id", "receiver_id", "content", "image_url", "is_read", "created_at"}


class ChatMessage(BaseModel):
    """A direct message between two users.

    Attributes:
        id: Message ID (assigned at persistence time).
        sender_id: User ID of the sender.
        receiver_id: User ID of the receiver.
        content: Message text (may be empty when an image is attached).
        image_url: Optional URL of an uploaded image.
        is_read: Whether the receiver has fetched this message in history.
        created_at: When the message was stored (UTC).
        updated_at: Last mutation time (UTC).
        persisted: False for a best-effort record synthesized after the
            store failed; such messages were delivered live but are not in
            history.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    sender_id: str
    receiver_id: str
    content: str
    image_url: Optional[str] = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    persisted: bool = True

    def to_wire(self) -> dict:
        """JSON-compatible dict in the client wire format."""
        return self.model_dump(mode="json", include=WIRE_FIELDS)

    def to_frame(self) -> str:
        """Serialized outbound socket frame."""
        return json.dumps(self.to_wire())


class IncomingChatMessage(BaseModel):
    """Inbound socket frame sent by a client."""
    receiver_id: uuid.UUID
    content: str
    image_url: Optional[str] = None


class MessageView(BaseModel):
    """History entry returned by ``GET /chat/history``."""
    id: str
    sender_id: str
    receiver_id: str
    content: str
    image_url: Optional[str] = None
    is_read: bool
    created_at: datetime

    @classmethod
    def from_message(cls, message: ChatMessage) -> "MessageView":
        return cls(**message.model_dump(include=WIRE_FIELDS))


class Contact(BaseModel):
    """A user the requester may chat with, plus their unread count."""
    id: str
    name: str
    role: UserRole
    unread_count: int = 0


class ImageUploadResponse(BaseModel):
    url: str
