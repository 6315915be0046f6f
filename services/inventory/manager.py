"""Inventory tracking driven by invoice line items and manual adjustments."""
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from shared import User, InventoryItem, InventoryAttribute, InventoryHistory, InvoiceLineItem

logger = logging.getLogger(__name__)


def _line_item_fields(item: Any) -> Dict[str, Any]:
    """Read description/quantity/attributes from a row or a plain dict."""
    if isinstance(item, InvoiceLineItem):
        return {
            "description": item.description,
            "quantity": item.quantity,
            "sku": item.product_sku,
            "attributes": {a.name: a.value for a in item.attributes},
        }
    attributes = item.get("attributes") or {}
    if isinstance(attributes, list):
        attributes = {a["name"]: a.get("value") for a in attributes if a.get("name")}
    return {
        "description": item.get("description"),
        "quantity": item.get("quantity"),
        "sku": item.get("product_sku") or item.get("productSku"),
        "attributes": attributes,
    }


class InventoryManager:
    """Keeps one user's stock levels and their change history."""

    def __init__(self, db: Session, user: User):
        self.db = db
        self.user = user

    def _query(self):
        return self.db.query(InventoryItem).filter(InventoryItem.user_id == self.user.user_id)

    def _record(self, item: InventoryItem, previous: float, new: float, reason: str,
                invoice_id: Optional[UUID] = None, notes: Optional[str] = None) -> None:
        item.history.append(InventoryHistory(
            previous_quantity=previous,
            new_quantity=new,
            change_reason=reason,
            invoice_id=invoice_id,
            notes=notes,
        ))

    def update_from_invoice(self, invoice_id: UUID, invoice_type: str, line_items: List[Any]) -> List[InventoryItem]:
        """Apply an invoice's line items to stock.

        Purchases add stock and create unknown products; sales remove stock
        (never below zero) and ignore products that are not tracked.
        """
        reason = "PURCHASE" if invoice_type == "PURCHASE" else "SALE"
        touched = []

        for raw in line_items:
            fields = _line_item_fields(raw)
            product_name = (fields["description"] or "").strip()
            if not product_name:
                continue
            raw_quantity = fields["quantity"]
            try:
                quantity = float(raw_quantity) if raw_quantity not in (None, "") else 1.0
            except (TypeError, ValueError):
                logger.warning(f"Skipping '{product_name}' on invoice {invoice_id}: bad quantity {raw_quantity!r}")
                continue
            if quantity <= 0:
                continue

            item = self._query().filter(InventoryItem.product_name == product_name).first()
            change = quantity if reason == "PURCHASE" else -quantity

            if item:
                previous = item.current_quantity or 0
                item.current_quantity = max(0, previous + change)
                self._record(item, previous, item.current_quantity, reason, invoice_id)
                touched.append(item)
            elif reason == "PURCHASE":
                item = InventoryItem(
                    product_name=product_name,
                    sku=fields["sku"],
                    current_quantity=quantity,
                    user_id=self.user.user_id,
                    organization_id=self.user.organization_id,
                )
                for name, value in fields["attributes"].items():
                    item.attributes.append(InventoryAttribute(name=name, value=str(value)))
                self._record(item, 0, quantity, reason, invoice_id)
                self.db.add(item)
                self.db.flush()
                touched.append(item)
            else:
                logger.info(f"Skipping sale of untracked product '{product_name}' on invoice {invoice_id}")

        self.db.commit()
        logger.info(f"Invoice {invoice_id}: updated {len(touched)} inventory items ({reason})")
        return touched

    def create_item(self, data: Dict[str, Any]) -> InventoryItem:
        quantity = max(0, data.get("current_quantity") or 0)
        item = InventoryItem(
            product_name=data["product_name"],
            description=data.get("description"),
            sku=data.get("sku"),
            current_quantity=quantity,
            unit_of_measure=data.get("unit_of_measure"),
            category=data.get("category"),
            user_id=self.user.user_id,
            organization_id=self.user.organization_id,
        )
        for name, value in (data.get("attributes") or {}).items():
            item.attributes.append(InventoryAttribute(name=name, value=str(value)))
        self._record(item, 0, quantity, "ADJUSTMENT", notes="Initial inventory creation")
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item

    def get_item(self, inventory_id: UUID) -> Optional[InventoryItem]:
        return self._query().filter(InventoryItem.inventory_id == inventory_id).first()

    def list_items(self) -> List[InventoryItem]:
        return self._query().order_by(InventoryItem.product_name.asc()).all()

    def update_item(self, inventory_id: UUID, data: Dict[str, Any]) -> Optional[InventoryItem]:
        """Edit an item; a quantity change is logged as a manual adjustment."""
        item = self.get_item(inventory_id)
        if not item:
            return None

        for field in ("product_name", "description", "sku", "unit_of_measure", "category"):
            if data.get(field) is not None:
                setattr(item, field, data[field])

        if data.get("current_quantity") is not None:
            new_quantity = max(0, data["current_quantity"])
            if new_quantity != item.current_quantity:
                previous = item.current_quantity
                item.current_quantity = new_quantity
                self._record(item, previous, new_quantity, data.get("change_reason") or "ADJUSTMENT",
                             notes=data.get("notes") or "Manual inventory adjustment")

        if data.get("attributes") is not None:
            item.attributes = [
                InventoryAttribute(name=name, value=str(value))
                for name, value in data["attributes"].items()
            ]

        self.db.commit()
        self.db.refresh(item)
        return item

    def delete_item(self, inventory_id: UUID) -> bool:
        item = self.get_item(inventory_id)
        if not item:
            return False
        self.db.delete(item)
        self.db.commit()
        return True

    def get_history(self, inventory_id: UUID) -> List[InventoryHistory]:
        return (
            self.db.query(InventoryHistory)
            .join(InventoryItem)
            .filter(
                InventoryHistory.inventory_id == inventory_id,
                InventoryItem.user_id == self.user.user_id,
            )
            .order_by(InventoryHistory.timestamp.desc())
            .all()
        )

    def search_items(self, query: Optional[str] = None, category: Optional[str] = None,
                     min_quantity: Optional[float] = None, max_quantity: Optional[float] = None) -> List[InventoryItem]:
        q = self._query()
        if query:
            pattern = f"%{query}%"
            q = q.filter(
                InventoryItem.product_name.ilike(pattern)
                | InventoryItem.description.ilike(pattern)
                | InventoryItem.sku.ilike(pattern)
            )
        if category:
            q = q.filter(InventoryItem.category == category)
        if min_quantity is not None:
            q = q.filter(InventoryItem.current_quantity >= min_quantity)
        if max_quantity is not None:
            q = q.filter(InventoryItem.current_quantity <= max_quantity)
        return q.order_by(InventoryItem.product_name.asc()).all()
