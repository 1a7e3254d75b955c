"""InventoryService — DuckDB-backed hotel supplies tracking."""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from app.database import Database

from .schemas import InventoryItem, InventoryStatus

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS inventory_items (
    id          VARCHAR PRIMARY KEY,
    name        VARCHAR NOT NULL,
    description VARCHAR,
    quantity    INTEGER NOT NULL DEFAULT 0,
    price       DECIMAL(18, 2) NOT NULL DEFAULT 0,
    status      VARCHAR NOT NULL DEFAULT 'normal',
    notes       VARCHAR,
    created_at  TIMESTAMP NOT NULL,
    updated_at  TIMESTAMP NOT NULL
)
"""

_COLUMNS = [
    "id", "name", "description", "quantity", "price", "status", "notes",
    "created_at", "updated_at",
]

_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM inventory_items"

_UPDATABLE = {"name", "description", "quantity", "price", "status", "notes"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class InventoryService:
    """CRUD over inventory items plus the total stock valuation."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._db.register_schema(_CREATE_TABLE)

    # -----------------------------------------------------------------------
    # CRUD
    # -----------------------------------------------------------------------

    def list_items(self) -> List[InventoryItem]:
        rows = self._db.fetchall(f"{_SELECT} ORDER BY name ASC, id ASC")
        return [self._row_to_item(r) for r in rows]

    def get(self, item_id: str) -> Optional[InventoryItem]:
        row = self._db.fetchone(f"{_SELECT} WHERE id = ?", [str(item_id)])
        return self._row_to_item(row) if row else None

    def create(
        self,
        name: str,
        description: Optional[str] = None,
        quantity: int = 0,
        price: Decimal = Decimal("0"),
        status: InventoryStatus = InventoryStatus.NORMAL,
        notes: Optional[str] = None,
    ) -> InventoryItem:
        item_id = str(uuid.uuid4())
        now = _utcnow()
        self._db.execute(
            """
            INSERT INTO inventory_items
              (id, name, description, quantity, price, status, notes,
               created_at, updated_at)
            VALUES (?, ?, ?, ?, CAST(? AS DECIMAL(18, 2)), ?, ?, ?, ?)
            """,
            [
                item_id, name, description, quantity, str(price),
                InventoryStatus(status).value, notes, now, now,
            ],
        )
        logger.info("[InventoryService] Created item %s (%s)", item_id, name)
        return self.get(item_id)

    def update(self, item_id: str, **kwargs) -> Optional[InventoryItem]:
        """Apply the non-None fields in *kwargs*; returns None if the item is missing."""
        fields = {k: v for k, v in kwargs.items() if k in _UPDATABLE and v is not None}
        if self.get(item_id) is None:
            return None
        if not fields:
            return self.get(item_id)

        assignments = []
        values = []
        for key, value in fields.items():
            if key == "price":
                assignments.append("price = CAST(? AS DECIMAL(18, 2))")
                values.append(str(value))
            elif key == "status":
                assignments.append("status = ?")
                values.append(InventoryStatus(value).value)
            else:
                assignments.append(f"{key} = ?")
                values.append(value)
        assignments.append("updated_at = ?")
        values.extend([_utcnow(), str(item_id)])

        self._db.execute(
            f"UPDATE inventory_items SET {', '.join(assignments)} WHERE id = ?", values
        )
        return self.get(item_id)

    def delete(self, item_id: str) -> bool:
        result = self._db.fetchone(
            "DELETE FROM inventory_items WHERE id = ? RETURNING id", [str(item_id)]
        )
        return result is not None

    # -----------------------------------------------------------------------
    # Financial
    # -----------------------------------------------------------------------

    def total_value(self) -> Decimal:
        """Sum of ``price * quantity`` over all items."""
        rows = self._db.fetchall("SELECT price, quantity FROM inventory_items")
        return sum((Decimal(price) * quantity for price, quantity in rows), Decimal("0.00"))

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_item(row) -> InventoryItem:
        d = dict(zip(_COLUMNS, row))
        for key in ("created_at", "updated_at"):
            d[key] = d[key].replace(tzinfo=timezone.utc)
        d["price"] = Decimal(d["price"])
        return InventoryItem(**d)
