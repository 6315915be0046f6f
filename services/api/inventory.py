"""Inventory endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from shared import get_db, User
from services.api.deps import get_current_user
from services.api.schemas import (
    InventoryItemCreate, InventoryItemUpdate, serialize_inventory_item, serialize_history,
)
from services.inventory.manager import InventoryManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("")
def list_inventory(
    query: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    min_quantity: Optional[float] = Query(None),
    max_quantity: Optional[float] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    manager = InventoryManager(db, user)
    if any(v is not None for v in (query, category, min_quantity, max_quantity)):
        items = manager.search_items(query, category, min_quantity, max_quantity)
    else:
        items = manager.list_items()
    return [serialize_inventory_item(item) for item in items]


@router.post("")
def create_inventory_item(
    request: InventoryItemCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        item = InventoryManager(db, user).create_item(request.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_inventory_item(item)


@router.get("/{inventory_id}")
def get_inventory_item(
    inventory_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = InventoryManager(db, user).get_item(inventory_id)
    if not item:
        raise HTTPException(status_code=404, detail="Inventory item not found")
    return serialize_inventory_item(item)


@router.put("/{inventory_id}")
def update_inventory_item(
    inventory_id: UUID,
    request: InventoryItemUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = InventoryManager(db, user).update_item(inventory_id, request.model_dump(exclude_unset=True))
    if not item:
        raise HTTPException(status_code=404, detail="Inventory item not found")
    return serialize_inventory_item(item)


@router.delete("/{inventory_id}")
def delete_inventory_item(
    inventory_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not InventoryManager(db, user).delete_item(inventory_id):
        raise HTTPException(status_code=404, detail="Inventory item not found")
    return {"success": True, "inventory_id": str(inventory_id)}


@router.get("/{inventory_id}/history")
def inventory_history(
    inventory_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    manager = InventoryManager(db, user)
    if not manager.get_item(inventory_id):
        raise HTTPException(status_code=404, detail="Inventory item not found")
    return [serialize_history(entry) for entry in manager.get_history(inventory_id)]
