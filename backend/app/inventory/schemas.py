"""Pydantic schemas for the inventory module."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class InventoryStatus(str, Enum):
    NORMAL = "normal"
    LOW_STOCK = "low_stock"
    BROKEN = "broken"
    LOST = "lost"
    NEED_REPLACEMENT = "need_replacement"


class InventoryItemCreate(BaseModel):
    """Request body for creating an item (admin only)."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    quantity: int = Field(default=0, ge=0)
    price: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    status: InventoryStatus = InventoryStatus.NORMAL
    notes: Optional[str] = None


class InventoryItemUpdate(BaseModel):
    """Request body for updating an item (all fields optional).

    Non-admin callers may only send ``quantity``, ``status``, ``description``
    and ``notes``.
    """
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    price: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    status: Optional[InventoryStatus] = None
    notes: Optional[str] = None


class InventoryItem(BaseModel):
    """Full inventory record."""
    id: str
    name: str
    description: Optional[str] = None
    quantity: int = 0
    price: Decimal = Decimal("0")
    status: InventoryStatus = InventoryStatus.NORMAL
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class InventoryItemView(BaseModel):
    """Item as returned by the list endpoint; ``price`` is omitted for non-admins."""
    id: str
    name: str
    description: Optional[str] = None
    quantity: int
    price: Optional[str] = None
    status: InventoryStatus
    notes: Optional[str] = None
    updated_at: datetime

    @classmethod
    def from_item(cls, item: InventoryItem, show_price: bool) -> "InventoryItemView":
        return cls(
            id=item.id,
            name=item.name,
            description=item.description,
            quantity=item.quantity,
            price=str(item.price) if show_price else None,
            status=item.status,
            notes=item.notes,
            updated_at=item.updated_at,
        )


class InventoryValue(BaseModel):
    total_inventory_value: str
