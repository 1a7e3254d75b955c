"""Live delivery registry for direct-message chat.

This module maps connected users to broadcast channels. A socket session
registers on connect and reads its :class:`DeliveryHandle`; other sessions
push serialized frames into the receiver's channel. The registry knows
nothing about message content: payloads are opaque strings.

Key features:
    - One channel per user id, created lazily and shared by every session
      of that user (each session gets its own subscriber handle)
    - Bounded per-subscriber backlog with a configurable overflow policy
    - Best-effort, non-blocking delivery; offline receivers are skipped
      (the message store already holds the persisted copy)
    - Unconditional removal on disconnect

Thread Safety:
    The user -> channel map is guarded by a single ``threading.Lock``.
    Critical sections contain only dictionary operations; nothing awaits
    or performs I/O while holding it. Sessions may run on different event
    loops (as with some test clients and multi-threaded servers), so
    handles receive payloads via ``loop.call_soon_threadsafe``.

Multiple sessions per user:
    A second connect for the same user shares the existing channel, and a
    disconnect from either session removes the shared entry. The surviving
    session keeps its handle but receives nothing new until it reconnects.
"""
import asyncio
import logging
import threading
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Per-subscriber backlog before the overflow policy kicks in
DEFAULT_CHANNEL_CAPACITY = 100

_CLOSED = object()


class OverflowPolicy(str, Enum):
    """What to drop when a slow subscriber's backlog is full.

    Attributes:
        DROP_OLDEST: Discard the oldest undelivered payload.
        DROP_NEWEST: Discard the payload being sent.
    """
    DROP_OLDEST = "drop_oldest"
    DROP_NEWEST = "drop_newest"


class ChannelClosed(Exception):
    """Raised by :meth:`DeliveryHandle.recv` once the handle is closed."""


# =============================================================================
# Channel and subscriber handle
# =============================================================================


class DeliveryHandle:
    """Subscriber end of a user's channel, bound to one event loop."""

    def __init__(
        self,
        channel: "DeliveryChannel",
        capacity: int,
        policy: OverflowPolicy,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._channel = channel
        self._capacity = capacity
        self._policy = policy
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.dropped = 0

    @property
    def user_id(self) -> str:
        return self._channel.user_id

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, payload) -> None:
        # Runs on self._loop only.
        if payload is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return
        if self._queue.qsize() >= self._capacity:
            self.dropped += 1
            if self._policy == OverflowPolicy.DROP_NEWEST:
                logger.warning(
                    "[Registry] Backlog full for %s, dropped newest payload (%d dropped)",
                    self.user_id, self.dropped,
                )
                return
            self._queue.get_nowait()
            logger.warning(
                "[Registry] Backlog full for %s, dropped oldest payload (%d dropped)",
                self.user_id, self.dropped,
            )
        self._queue.put_nowait(payload)

    def _push(self, payload) -> bool:
        try:
            self._loop.call_soon_threadsafe(self._offer, payload)
            return True
        except RuntimeError:
            # Event loop already closed; the session is gone.
            logger.debug("[Registry] Dropping payload for %s: loop closed", self.user_id)
            return False

    async def recv(self) -> str:
        """Wait for the next payload.

        Raises:
            ChannelClosed: After :meth:`close` has been called.
        """
        if self._closed and self._queue.empty():
            raise ChannelClosed(self.user_id)
        payload = await self._queue.get()
        if payload is _CLOSED:
            raise ChannelClosed(self.user_id)
        return payload

    def pending(self) -> int:
        """Number of payloads waiting to be received."""
        return self._queue.qsize()

    def close(self) -> None:
        """Unsubscribe and wake any pending :meth:`recv`."""
        if self._closed:
            return
        self._closed = True
        self._channel.unsubscribe(self)
        self._push(_CLOSED)


class DeliveryChannel:
    """Broadcast channel: every subscriber receives every payload."""

    def __init__(self, user_id: str, capacity: int, policy: OverflowPolicy) -> None:
        self.user_id = user_id
        self._capacity = capacity
        self._policy = policy
        self._subscribers: List[DeliveryHandle] = []
        self._lock = threading.Lock()

    def subscribe(self) -> DeliveryHandle:
        """Create a handle bound to the running event loop."""
        handle = DeliveryHandle(self, self._capacity, self._policy, asyncio.get_running_loop())
        with self._lock:
            self._subscribers.append(handle)
        return handle

    def unsubscribe(self, handle: DeliveryHandle) -> None:
        with self._lock:
            if handle in self._subscribers:
                self._subscribers.remove(handle)

    def send(self, payload: str) -> int:
        """Push *payload* to all subscribers.

        Returns:
            Number of subscribers the payload was handed to.
        """
        with self._lock:
            subscribers = list(self._subscribers)
        return sum(1 for handle in subscribers if handle._push(payload))

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


# =============================================================================
# Connection Registry
# =============================================================================


class ConnectionRegistry:
    """User id -> live delivery channel.

    One registry is created per application (see ``app.main.create_app``)
    and shared by every socket session through ``app.state.registry``.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CHANNEL_CAPACITY,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
    ) -> None:
        if capacity < 1:
            raise ValueError("channel capacity must be at least 1")
        self._capacity = capacity
        self._policy = OverflowPolicy(overflow_policy)
        self._channels: Dict[str, DeliveryChannel] = {}
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def overflow_policy(self) -> OverflowPolicy:
        return self._policy

    def connect(self, user_id: str) -> DeliveryHandle:
        """Look up or create the user's channel and subscribe to it.

        Must be called from the session's event loop.
        """
        user_id = str(user_id)
        with self._lock:
            channel = self._channels.get(user_id)
            if channel is None:
                channel = DeliveryChannel(user_id, self._capacity, self._policy)
                self._channels[user_id] = channel
                logger.info("[Registry] Registered channel for user %s", user_id)
            else:
                logger.info("[Registry] User %s already connected, sharing channel", user_id)
            return channel.subscribe()

    def deliver_if_present(self, user_id: str, payload: str) -> bool:
        """Send *payload* to the user's channel if they are connected.

        Never blocks. Returns False when there is no entry for the user
        (the payload is discarded).
        """
        with self._lock:
            channel = self._channels.get(str(user_id))
        if channel is None:
            logger.debug("[Registry] User %s not connected, payload not delivered", user_id)
            return False
        delivered = channel.send(payload)
        logger.debug("[Registry] Delivered payload to %d subscriber(s) of %s", delivered, user_id)
        return True

    def disconnect(self, user_id: str) -> bool:
        """Remove the user's entry unconditionally.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            channel = self._channels.pop(str(user_id), None)
        if channel is not None:
            logger.info("[Registry] Removed channel for user %s", user_id)
        return channel is not None

    def is_connected(self, user_id: str) -> bool:
        with self._lock:
            return str(user_id) in self._channels

    def connected_users(self) -> List[str]:
        with self._lock:
            return list(self._channels.keys())

    def get_channel(self, user_id: str) -> Optional[DeliveryChannel]:
        with self._lock:
            return self._channels.get(str(user_id))

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)
