"""Direct-messaging chat between hotel staff and guests.

Components:
    - rbac: which role pairs may chat
    - store: DuckDB message log with read receipts
    - registry: live delivery channels keyed by user id
    - session: per-socket inbound/outbound pumps
    - service: contacts and history queries
"""

from .registry import ConnectionRegistry, OverflowPolicy
from .service import ChatQueryService
from .store import MessageStore

__all__ = ["ChatQueryService", "ConnectionRegistry", "MessageStore", "OverflowPolicy"]
