"""Inventory router — hotel supplies for admins and cleaners.

Endpoints:
    GET    /inventory                            - List items (admin, cleaner)
    POST   /inventory                            - Create an item (admin)
    PATCH  /inventory/{item_id}                  - Update an item (admin, cleaner)
    DELETE /inventory/{item_id}                  - Delete an item (admin)
    GET    /inventory/financial/inventory-value  - Total stock value (admin)

Cleaners never see prices and may not change ``price`` or ``name``.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from app.auth.dependencies import require_admin, require_roles
from app.auth.service import TokenClaims
from app.errors import AppError, to_http_exception
from app.users.schemas import UserRole

from .schemas import (
    InventoryItem,
    InventoryItemCreate,
    InventoryItemUpdate,
    InventoryItemView,
    InventoryValue,
)
from .service import InventoryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["inventory"])

require_inventory_staff = require_roles(UserRole.ADMIN, UserRole.CLEANER)


def get_inventory_service(request: Request) -> InventoryService:
    return request.app.state.inventory


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Item not found"})


@router.get("/financial/inventory-value", response_model=InventoryValue)
async def get_inventory_value(
    current: TokenClaims = Depends(require_admin),
    inventory: InventoryService = Depends(get_inventory_service),
) -> InventoryValue:
    try:
        value = inventory.total_value()
    except AppError as e:
        raise to_http_exception(e)
    return InventoryValue(total_inventory_value=str(value))


@router.get("", response_model=List[InventoryItemView], response_model_exclude_none=True)
async def list_inventory(
    current: TokenClaims = Depends(require_inventory_staff),
    inventory: InventoryService = Depends(get_inventory_service),
) -> List[InventoryItemView]:
    """List all items ordered by name.

    Returns:
        JSON array of items; ``price`` is only present for admins.
    """
    show_price = current.role == UserRole.ADMIN
    try:
        items = inventory.list_items()
    except AppError as e:
        raise to_http_exception(e)
    return [InventoryItemView.from_item(item, show_price) for item in items]


@router.post("", response_model=InventoryItem, status_code=201)
async def create_inventory_item(
    body: InventoryItemCreate,
    current: TokenClaims = Depends(require_admin),
    inventory: InventoryService = Depends(get_inventory_service),
) -> InventoryItem:
    try:
        item = inventory.create(
            name=body.name,
            description=body.description,
            quantity=body.quantity,
            price=body.price,
            status=body.status,
            notes=body.notes,
        )
    except AppError as e:
        raise to_http_exception(e)
    logger.info("[inventory] %s created %s: %s", current.user_id, item.id, item.name)
    return item


@router.patch("/{item_id}")
async def update_inventory_item(
    item_id: str,
    body: InventoryItemUpdate,
    current: TokenClaims = Depends(require_inventory_staff),
    inventory: InventoryService = Depends(get_inventory_service),
):
    """Update an item's fields.

    Admins may change anything. Cleaners report usage and condition only:
    a body carrying ``price`` or ``name`` is rejected with 403.

    Returns:
        The updated item (price omitted for non-admins), or 404 if not found.
    """
    is_admin = current.role == UserRole.ADMIN
    if not is_admin and (body.price is not None or body.name is not None):
        raise HTTPException(
            status_code=403,
            detail={"code": "FORBIDDEN", "message": "Cleaners cannot edit price or name"},
        )

    try:
        updated = inventory.update(item_id, **body.model_dump(exclude_none=True))
    except AppError as e:
        raise to_http_exception(e)
    if updated is None:
        raise _not_found()
    logger.info("[inventory] %s updated %s -> status=%s", current.user_id, item_id, updated.status.value)
    if is_admin:
        return updated
    return InventoryItemView.from_item(updated, show_price=False).model_dump(mode="json", exclude_none=True)


@router.delete("/{item_id}")
async def delete_inventory_item(
    item_id: str,
    current: TokenClaims = Depends(require_admin),
    inventory: InventoryService = Depends(get_inventory_service),
) -> dict:
    try:
        deleted = inventory.delete(item_id)
    except AppError as e:
        raise to_http_exception(e)
    if not deleted:
        raise _not_found()
    logger.info("[inventory] %s deleted %s", current.user_id, item_id)
    return {"status": "deleted"}
