"""Inventory module: hotel supplies with role-restricted pricing."""

from .schemas import InventoryItem, InventoryStatus
from .service import InventoryService

__all__ = ["InventoryItem", "InventoryService", "InventoryStatus"]
