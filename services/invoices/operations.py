"""Invoice operations shared by the API routers."""
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from shared import settings, User, Invoice, InvoiceLineItem, LineItemAttribute, Category, Vendor
from shared.models import INVOICE_TYPES
from services.extractor.categorizer import FALLBACK_CATEGORIES, suggest_categories
from services.learning.feedback import (
    store_category_feedback, store_vendor_feedback, store_extraction_feedback,
)

logger = logging.getLogger(__name__)

BATCH_OPERATIONS = ("approve", "archive", "delete", "tag")
TAG_STOP_WORDS = {"invoice", "payment", "receipt", "charge", "bill"}


class NotFoundError(Exception):
    """The requested record does not exist for this user."""


def get_user_invoice(db: Session, user: User, invoice_id: UUID) -> Invoice:
    invoice = (
        db.query(Invoice)
        .filter(Invoice.invoice_id == invoice_id, Invoice.user_id == user.user_id)
        .first()
    )
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def find_category_by_name(db: Session, user: User, name: str) -> Optional[Category]:
    return (
        db.query(Category)
        .filter(Category.user_id == user.user_id, func.lower(Category.name) == name.strip().lower())
        .first()
    )


def find_vendor_by_name(db: Session, user: User, name: str) -> Optional[Vendor]:
    return (
        db.query(Vendor)
        .filter(Vendor.user_id == user.user_id, func.lower(Vendor.name) == name.strip().lower())
        .first()
    )


def get_or_create_category(db: Session, user: User, name: str, **details) -> Category:
    """Case-insensitive lookup; a missing category is created."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Category name is required")
    category = find_category_by_name(db, user, name)
    if category:
        return category
    category = Category(
        name=name,
        description=details.get("description"),
        color=details.get("color"),
        icon=details.get("icon"),
        user_id=user.user_id,
        organization_id=user.organization_id,
    )
    db.add(category)
    db.flush()
    logger.info(f"Created category '{name}' for user {user.user_id}")
    return category


def get_or_create_vendor(db: Session, user: User, name: str, details: Optional[Dict[str, Any]] = None) -> Vendor:
    """Case-insensitive lookup; a missing vendor is created with any contact details given."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Vendor name is required")
    details = details or {}
    vendor = find_vendor_by_name(db, user, name)
    if vendor:
        for field in ("email", "phone", "website", "address", "notes"):
            if details.get(field):
                setattr(vendor, field, details[field])
        return vendor
    vendor = Vendor(
        name=name,
        email=details.get("email"),
        phone=details.get("phone"),
        website=details.get("website"),
        address=details.get("address"),
        notes=details.get("notes"),
        user_id=user.user_id,
        organization_id=user.organization_id,
    )
    db.add(vendor)
    db.flush()
    logger.info(f"Created vendor '{name}' for user {user.user_id}")
    return vendor


def update_invoice_category(db: Session, user: User, invoice_id: UUID, category_name: str,
                            is_new_category: bool = False) -> Invoice:
    """Link an invoice to a category by name, creating the category when needed.

    Asking for a new category that already exists (ignoring case) reuses it,
    so a name is never stored twice for one user.
    """
    invoice = get_user_invoice(db, user, invoice_id)
    previous = invoice.category.name if invoice.category else None

    category = get_or_create_category(db, user, category_name)
    if is_new_category:
        logger.info(f"Invoice {invoice_id}: new category requested as '{category.name}'")
    invoice.category_id = category.category_id
    invoice.category = category
    db.commit()

    if previous != category.name:
        suggested = (invoice.extracted_data or {}).get("suggestedCategories") or []
        store_category_feedback(
            db, user.user_id, invoice.invoice_id, invoice.vendor_name,
            previous or (suggested[0] if suggested else None), category.name,
        )

    db.refresh(invoice)
    return invoice


def update_invoice_vendor(db: Session, user: User, invoice_id: UUID, vendor_name: str,
                          is_new_vendor: bool = False, details: Optional[Dict[str, Any]] = None) -> Invoice:
    invoice = get_user_invoice(db, user, invoice_id)
    extracted_name = invoice.vendor_name

    vendor = get_or_create_vendor(db, user, vendor_name, details if is_new_vendor else None)
    invoice.vendor_id = vendor.vendor_id
    invoice.vendor = vendor
    invoice.vendor_name = vendor.name
    db.commit()

    if extracted_name and extracted_name != vendor.name:
        store_vendor_feedback(db, user.user_id, invoice.invoice_id, extracted_name, vendor.name)

    db.refresh(invoice)
    return invoice


def update_invoice_type(db: Session, user: User, invoice_id: UUID, invoice_type: str) -> Invoice:
    """Persist the user-confirmed type and keep the detection as a learning sample."""
    if invoice_type not in INVOICE_TYPES:
        raise ValueError(f"Invalid invoice type: {invoice_type}")

    invoice = get_user_invoice(db, user, invoice_id)
    extracted = dict(invoice.extracted_data or {})
    detected = extracted.get("invoiceType")
    confidence = extracted.get("invoiceTypeConfidence")

    invoice.invoice_type = invoice_type
    extracted["invoiceType"] = invoice_type
    extracted["invoiceTypeConfirmed"] = True
    invoice.extracted_data = extracted
    db.commit()

    corrected = detected is not None and detected != invoice_type
    store_extraction_feedback(
        db, user.user_id, invoice.invoice_id, "invoiceType", detected, invoice_type,
        vendor_name=invoice.vendor_name, confidence=confidence,
    )
    logger.info(
        f"Invoice {invoice_id}: type confirmed as {invoice_type} "
        f"(detected {detected}, corrected={corrected})"
    )
    db.refresh(invoice)
    return invoice


def validate_line_item(data: Dict[str, Any]) -> None:
    if data.get("quantity") is not None and data["quantity"] <= 0:
        raise ValueError("Quantity must be greater than zero")
    if data.get("unit_price") is not None and data["unit_price"] < 0:
        raise ValueError("Unit price cannot be negative")
    if data.get("total_price") is not None and data["total_price"] < 0:
        raise ValueError("Total price cannot be negative")


def _attributes_from(data: Dict[str, Any]) -> List[LineItemAttribute]:
    raw = data.get("attributes") or {}
    if isinstance(raw, list):
        return [LineItemAttribute(name=a["name"], value=str(a.get("value", ""))) for a in raw if a.get("name")]
    return [LineItemAttribute(name=k, value=str(v)) for k, v in raw.items()]


def get_user_line_item(db: Session, user: User, line_item_id: UUID) -> InvoiceLineItem:
    line_item = (
        db.query(InvoiceLineItem)
        .join(Invoice)
        .filter(InvoiceLineItem.line_item_id == line_item_id, Invoice.user_id == user.user_id)
        .first()
    )
    if not line_item:
        raise NotFoundError("Line item not found")
    return line_item


def create_line_item(db: Session, user: User, invoice_id: UUID, data: Dict[str, Any]) -> InvoiceLineItem:
    if not data.get("description"):
        raise ValueError("Description is required")
    validate_line_item(data)
    invoice = get_user_invoice(db, user, invoice_id)

    quantity = data.get("quantity") or 1
    unit_price = data.get("unit_price") or 0
    total_price = data.get("total_price")
    line_item = InvoiceLineItem(
        invoice_id=invoice.invoice_id,
        description=data["description"],
        quantity=quantity,
        unit_price=unit_price,
        total_price=total_price if total_price is not None else quantity * unit_price,
        tax_rate=data.get("tax_rate"),
        tax_amount=data.get("tax_amount"),
        discount=data.get("discount"),
        product_sku=data.get("product_sku"),
        notes=data.get("notes"),
    )
    line_item.attributes = _attributes_from(data)
    db.add(line_item)
    db.commit()
    db.refresh(line_item)
    return line_item


def update_line_item(db: Session, user: User, line_item_id: UUID, data: Dict[str, Any]) -> InvoiceLineItem:
    validate_line_item(data)
    line_item = get_user_line_item(db, user, line_item_id)

    for field in ("description", "quantity", "unit_price", "tax_rate", "tax_amount",
                  "discount", "product_sku", "notes"):
        if data.get(field) is not None:
            setattr(line_item, field, data[field])

    if data.get("total_price") is not None:
        line_item.total_price = data["total_price"]
    elif data.get("quantity") is not None or data.get("unit_price") is not None:
        line_item.total_price = (line_item.quantity or 0) * (line_item.unit_price or 0)

    if data.get("attributes") is not None:
        line_item.attributes = _attributes_from(data)

    db.commit()
    db.refresh(line_item)
    return line_item


def delete_line_item(db: Session, user: User, line_item_id: UUID) -> None:
    line_item = get_user_line_item(db, user, line_item_id)
    db.delete(line_item)
    db.commit()


def batch_update(db: Session, user: User, operation: str, invoice_ids: List[UUID],
                 tags: Optional[List[str]] = None) -> Dict[str, Any]:
    """Apply one operation to many invoices; failures are reported per id."""
    if operation not in BATCH_OPERATIONS:
        raise ValueError(f"Unsupported batch operation: {operation}")
    if operation == "tag" and not tags:
        raise ValueError("Tags are required for the tag operation")

    processed, failed = [], []
    for invoice_id in invoice_ids:
        try:
            invoice = get_user_invoice(db, user, invoice_id)
            if operation == "approve":
                invoice.status = "PAID"
            elif operation == "archive":
                invoice.status = "CANCELLED"
            elif operation == "delete":
                db.delete(invoice)
            elif operation == "tag":
                invoice.tags = sorted(set(invoice.tags or []) | set(tags))
            db.commit()
            processed.append(str(invoice_id))
        except NotFoundError:
            failed.append(str(invoice_id))
        except Exception as e:
            db.rollback()
            logger.error(f"Batch {operation} failed for invoice {invoice_id}: {e}")
            failed.append(str(invoice_id))

    return {"success": not failed, "processed_ids": processed, "failed_ids": failed}


def list_tags(db: Session, user: User) -> List[str]:
    """Every distinct tag used on the user's invoices, sorted."""
    tags = set()
    for (invoice_tags,) in db.query(Invoice.tags).filter(Invoice.user_id == user.user_id).all():
        tags.update(invoice_tags or [])
    return sorted(tags)



def _invoice_text(invoice: Invoice) -> str:
    parts = [invoice.title, invoice.notes] + [li.description for li in invoice.line_items]
    return " ".join(p for p in parts if p).lower()


def _suggest_tags(invoice: Invoice) -> List[str]:
    tags = []
    if invoice.vendor_name:
        tags.append(invoice.vendor_name.lower().split()[0])
    for word in (invoice.notes or "").lower().split():
        if len(word) > 3 and word not in TAG_STOP_WORDS:
            tags.append(word)
    unique = []
    for tag in tags:
        if tag not in unique:
            unique.append(tag)
    return unique[:4]


def _find_duplicate(db: Session, invoice: Invoice) -> Optional[Invoice]:
    if invoice.amount is None or not invoice.vendor_name:
        return None
    return (
        db.query(Invoice)
        .filter(
            Invoice.user_id == invoice.user_id,
            Invoice.invoice_id != invoice.invoice_id,
            Invoice.amount == invoice.amount,
            func.lower(Invoice.vendor_name) == invoice.vendor_name.lower(),
        )
        .first()
    )


def categorize_invoice(db: Session, user: User, invoice: Invoice) -> Dict[str, Any]:
    """Pick one category for an invoice along with a confidence score.

    A category the user already has that is named in the invoice text wins
    (0.9), then one named in the vendor (0.8). Otherwise the top suggestion is
    used: 0.75 when it matches an existing category, 0.6 when it would be new
    and 0.3 when only the generic fallback came back.
    """
    categories = db.query(Category).filter(Category.user_id == user.user_id).all()
    text = _invoice_text(invoice)
    vendor = (invoice.vendor_name or "").lower()

    category_name, confidence = None, 0.0
    for category in categories:
        if category.name.lower() in text:
            category_name, confidence = category.name, 0.9
            break
        if vendor and category.name.lower() in vendor:
            category_name, confidence = category.name, 0.8
            break

    if category_name is None:
        extracted = dict(invoice.extracted_data or {})
        extracted.setdefault("vendorName", invoice.vendor_name)
        extracted.setdefault("notes", invoice.notes)
        if not extracted.get("items"):
            extracted["items"] = [{"description": li.description} for li in invoice.line_items]
        suggestions = suggest_categories(extracted)
        if not suggestions or suggestions == FALLBACK_CATEGORIES:
            category_name, confidence = "Uncategorized", 0.3
        else:
            category_name = suggestions[0]
            known = {c.name.lower() for c in categories}
            confidence = 0.75 if category_name.lower() in known else 0.6

    duplicate = _find_duplicate(db, invoice)
    return {
        "category": category_name,
        "confidence": confidence,
        "tags": _suggest_tags(invoice),
        "is_duplicate": duplicate is not None,
        "duplicate_of": str(duplicate.invoice_id) if duplicate else None,
    }


def auto_categorize(db: Session, user: User, invoice_ids: List[UUID],
                    confidence_threshold: Optional[float] = None, auto_approve: bool = False,
                    include_paid: bool = False) -> Dict[str, Any]:
    """Suggest categories for many invoices, applying those that clear the threshold.

    The threshold defaults to the user's AI settings. Nothing is written
    unless auto_approve is set.
    """
    if not invoice_ids:
        raise ValueError("Invoice IDs are required")
    if confidence_threshold is None:
        ai_settings = user.ai_settings
        confidence_threshold = (
            ai_settings.confidence_threshold
            if ai_settings and ai_settings.confidence_threshold is not None
            else settings.default_confidence_threshold
        )
    if not 0 <= confidence_threshold <= 1:
        raise ValueError("Confidence threshold must be between 0 and 1")

    query = db.query(Invoice).filter(Invoice.user_id == user.user_id, Invoice.invoice_id.in_(invoice_ids))
    if not include_paid:
        query = query.filter(Invoice.status != "PAID")
    invoices = query.all()
    if not invoices:
        raise NotFoundError("No matching invoices found")

    results = []
    for invoice in invoices:
        try:
            changes = categorize_invoice(db, user, invoice)
            applied = auto_approve and changes["confidence"] >= confidence_threshold
            if applied:
                category = get_or_create_category(db, user, changes["category"])
                invoice.category_id = category.category_id
                invoice.tags = sorted(set(invoice.tags or []) | set(changes["tags"]))
                db.commit()
            results.append({
                "invoice_id": str(invoice.invoice_id),
                "success": True,
                "applied": applied,
                "changes": changes,
            })
        except Exception as e:
            db.rollback()
            logger.error(f"Auto-categorization failed for invoice {invoice.invoice_id}: {e}", exc_info=True)
            results.append({
                "invoice_id": str(invoice.invoice_id),
                "success": False,
                "applied": False,
                "error": str(e),
                "changes": None,
            })

    applied_count = sum(1 for r in results if r["applied"])
    logger.info(f"Auto-categorized {len(results)} invoices for user {user.user_id}, applied {applied_count}")
    return {"success": True, "confidence_threshold": confidence_threshold, "results": results}
