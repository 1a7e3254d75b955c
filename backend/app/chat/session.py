"""Per-connection chat session.

A :class:`ChatSession` owns one authenticated WebSocket and pumps it in two
directions until the socket closes:

    outbound: registry handle -> socket
    inbound:  socket -> parse -> receiver lookup -> RBAC -> store -> registry

State machine:
    CONNECTING -> AUTHENTICATED -> ACTIVE -> CLOSING -> CLOSED

Inbound failures (malformed JSON, unknown receiver, RBAC denial, storage
errors) are logged and never reported back to the sender. When the store
fails, the message is still delivered live as an unpersisted record.

A failed write closes the socket, so the receive loop sees the disconnect
and the session unregisters.
"""
import asyncio
import logging
from enum import Enum
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from app.auth.service import TokenClaims
from app.errors import StorageError
from app.users.service import UserDirectory

from .rbac import can_chat
from .registry import ChannelClosed, ConnectionRegistry, DeliveryHandle
from .schemas import ChatMessage, IncomingChatMessage
from .store import MessageStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class ChatSession:
    """Duplex pump for one authenticated chat socket.

    Attributes:
        websocket: The accepted (or about to be accepted) connection.
        claims: Validated token claims of the connected user.
        state: Current :class:`SessionState`.
    """

    def __init__(
        self,
        websocket: WebSocket,
        claims: TokenClaims,
        registry: ConnectionRegistry,
        users: UserDirectory,
        store: MessageStore,
    ) -> None:
        self.websocket = websocket
        self.claims = claims
        self._registry = registry
        self._users = users
        self._store = store
        self.state = SessionState.AUTHENTICATED
        self._outbound: Optional[asyncio.Task] = None

    @property
    def user_id(self) -> str:
        return self.claims.user_id

    async def run(self) -> None:
        """Register, accept, receive until the socket closes, then unregister.

        The receive loop runs in the calling task; only the outbound pump is
        a child task. A failed write closes the socket, which ends the
        receive loop.
        """
        handle = self._registry.connect(self.user_id)
        try:
            await self.websocket.accept()
            self.state = SessionState.ACTIVE
            logger.info("[Session] User %s (%s) active", self.user_id, self.claims.role.value)

            self._outbound = asyncio.create_task(self._pump_outbound(handle))
            self._outbound.add_done_callback(self._on_outbound_done)
            await self._pump_inbound()
        finally:
            self.state = SessionState.CLOSING
            handle.close()
            self._registry.disconnect(self.user_id)
            if self._outbound is not None and not self._outbound.done():
                self._outbound.cancel()
            self.state = SessionState.CLOSED
            logger.info("[Session] Connection closed for user %s", self.user_id)

    # -------------------------------------------------------------------------
    # Loops
    # -------------------------------------------------------------------------

    async def _pump_outbound(self, handle: DeliveryHandle) -> None:
        while True:
            try:
                payload = await handle.recv()
            except ChannelClosed:
                return
            if not await self._safe_send(payload):
                await self._close_socket()
                return

    def _on_outbound_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("[Session] Outbound loop for user %s failed: %s", self.user_id, task.exception())

    async def _safe_send(self, payload: str) -> bool:
        try:
            await self.websocket.send_text(payload)
            return True
        except Exception as e:
            logger.debug(f"[Session] Failed to send to user {self.user_id}: {e}")
            return False

    async def _close_socket(self) -> None:
        try:
            await self.websocket.close()
        except Exception as e:
            logger.debug(f"[Session] Close failed for user {self.user_id}: {e}")

    async def _pump_inbound(self) -> None:
        while True:
            try:
                frame = await self.websocket.receive()
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"[Session] Receive failed for user {self.user_id}: {e}")
                return
            if frame["type"] == "websocket.disconnect":
                return
            text = frame.get("text")
            if text is None:
                logger.debug("[Session] Ignoring non-text frame from %s", self.user_id)
                continue
            self.handle_frame(text)

    # -------------------------------------------------------------------------
    # Frame processing
    # -------------------------------------------------------------------------

    def handle_frame(self, text: str) -> Optional[ChatMessage]:
        """Process one inbound text frame.

        Returns:
            The delivered message (persisted or synthesized), or None if the
            frame was dropped.
        """
        try:
            incoming = IncomingChatMessage.model_validate_json(text)
        except PydanticValidationError as e:
            logger.info("[Session] Malformed frame from %s ignored: %s", self.user_id, e.errors()[:1])
            return None

        receiver_id = str(incoming.receiver_id)
        if receiver_id == self.user_id:
            logger.info("[Session] Self-addressed message from %s ignored", self.user_id)
            return None
        if not incoming.content.strip() and not incoming.image_url:
            logger.info("[Session] Empty message from %s ignored", self.user_id)
            return None

        try:
            receiver = self._users.get(receiver_id)
        except StorageError as e:
            logger.error("[Session] Receiver lookup failed for %s: %s", receiver_id, e)
            return None
        if receiver is None:
            logger.info("[Session] Unknown receiver %s from %s ignored", receiver_id, self.user_id)
            return None

        if not can_chat(self.claims.role, receiver.role):
            logger.warning(
                "[Session] Message blocked by RBAC: %s cannot chat with %s",
                self.claims.role.value, receiver.role.value,
            )
            return None

        try:
            message = self._store.append(
                self.user_id, receiver_id, incoming.content, incoming.image_url
            )
            logger.info("[Session] Message %s saved (%s -> %s)", message.id, self.user_id, receiver_id)
        except StorageError as e:
            message = ChatMessage(
                sender_id=self.user_id,
                receiver_id=receiver_id,
                content=incoming.content,
                image_url=incoming.image_url,
                persisted=False,
            )
            logger.error(
                "[Session] Failed to save message %s (%s -> %s), delivering unpersisted: %s",
                message.id, self.user_id, receiver_id, e,
            )

        self._registry.deliver_if_present(receiver_id, message.to_frame())
        return message
