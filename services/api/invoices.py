"""Invoice endpoints: CRUD, corrections, batch operations, line items, export."""
import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from shared import get_db, User, Invoice
from services.api.deps import get_current_user
from services.api.schemas import (
    InvoiceUpdate, InvoiceTypeUpdate, CategoryAssignment, VendorAssignment, BatchRequest,
    AutoCategorizeRequest,
    LineItemCreate, LineItemUpdate, ExportRequest, InventoryFromInvoice,
    serialize_invoice, serialize_line_item, serialize_inventory_item,
)
from services.exporter.export import export_invoices
from services.inventory.manager import InventoryManager
from services.invoices import operations
from services.invoices.operations import NotFoundError
from services.invoices.uploads import reprocess_invoice

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["invoices"])
line_items_router = APIRouter(prefix="/line-items", tags=["invoices"])

REQUIRED_INVOICE_FIELDS = ("status", "invoice_type")


def _load_invoice(db: Session, user: User, invoice_id: UUID) -> Invoice:
    try:
        return operations.get_user_invoice(db, user, invoice_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("")
def list_invoices(
    status: Optional[str] = Query(None),
    invoice_type: Optional[str] = Query(None),
    category_id: Optional[UUID] = Query(None),
    vendor_id: Optional[UUID] = Query(None),
    tag: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List invoices with filtering and pagination."""
    query = db.query(Invoice).filter(Invoice.user_id == user.user_id)

    if status:
        query = query.filter(Invoice.status == status)
    if invoice_type:
        query = query.filter(Invoice.invoice_type == invoice_type)
    if category_id:
        query = query.filter(Invoice.category_id == category_id)
    if vendor_id:
        query = query.filter(Invoice.vendor_id == vendor_id)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Invoice.invoice_number.ilike(pattern),
            Invoice.vendor_name.ilike(pattern),
            Invoice.title.ilike(pattern),
            Invoice.notes.ilike(pattern),
        ))
    if from_date:
        query = query.filter(Invoice.issue_date >= from_date)
    if to_date:
        query = query.filter(Invoice.issue_date <= to_date)

    invoices = query.order_by(Invoice.created_at.desc()).all()
    # Tags live in a JSON column, so the filter runs in Python for portability
    if tag:
        invoices = [inv for inv in invoices if tag in (inv.tags or [])]

    total = len(invoices)
    page_items = invoices[(page - 1) * page_size: page * page_size]
    return {
        "invoices": [serialize_invoice(inv) for inv in page_items],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.post("/batch")
def batch_operation(
    request: BatchRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Approve, archive, delete or tag many invoices at once."""
    try:
        return operations.batch_update(db, user, request.operation, request.invoice_ids, request.tags)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/export")
def export(
    request: ExportRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return export_invoices(
            db, user,
            export_format=request.format,
            invoice_ids=request.invoice_ids,
            include_all=request.include_all,
            fields=request.fields,
            date_from=request.date_from,
            date_to=request.date_to,
            folder_name=request.folder_name,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Export failed for user {user.user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to export invoices")


@router.get("/tags")
def list_tags(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Distinct tags across the user's invoices."""
    return operations.list_tags(db, user)


@router.post("/auto-categorize")
def auto_categorize(
    request: AutoCategorizeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return operations.auto_categorize(
            db, user, request.invoice_ids,
            confidence_threshold=request.confidence_threshold,
            auto_approve=request.auto_approve,
            include_paid=request.include_paid,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{invoice_id}")
def get_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return serialize_invoice(_load_invoice(db, user, invoice_id), detail=True)


@router.put("/{invoice_id}")
def update_invoice(
    invoice_id: UUID,
    request: InvoiceUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invoice = _load_invoice(db, user, invoice_id)
    changes = request.model_dump(exclude_unset=True)
    if changes.get("amount") is not None and changes["amount"] < 0:
        raise HTTPException(status_code=400, detail="Amount cannot be negative")
    for field in REQUIRED_INVOICE_FIELDS:
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=400, detail=f"{field} cannot be null")

    try:
        for field, value in changes.items():
            setattr(invoice, field, value)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating invoice {invoice_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error updating invoice: {str(e)}")

    db.refresh(invoice)
    return serialize_invoice(invoice, detail=True)


@router.delete("/{invoice_id}")
def delete_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invoice = _load_invoice(db, user, invoice_id)
    try:
        db.delete(invoice)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting invoice {invoice_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error deleting invoice: {str(e)}")
    return {"success": True, "invoice_id": str(invoice_id)}


@router.post("/{invoice_id}/process")
def process_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Retry OCR for a stored invoice."""
    invoice = _load_invoice(db, user, invoice_id)
    try:
        result = reprocess_invoice(db, user, invoice)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        raise HTTPException(status_code=500, detail="Failed to process invoice")

    return {
        "invoice": serialize_invoice(invoice, detail=True),
        "engine": result.get("engine"),
        "confidence": result.get("confidence"),
        "suggested_categories": result.get("suggested_categories", []),
    }


@router.put("/{invoice_id}/type")
def set_invoice_type(
    invoice_id: UUID,
    request: InvoiceTypeUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        invoice = operations.update_invoice_type(db, user, invoice_id, request.invoice_type)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_invoice(invoice, detail=True)


@router.post("/{invoice_id}/category")
def set_invoice_category(
    invoice_id: UUID,
    request: CategoryAssignment,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        invoice = operations.update_invoice_category(
            db, user, invoice_id, request.category_name, request.is_new_category
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_invoice(invoice, detail=True)


@router.post("/{invoice_id}/vendor")
def set_invoice_vendor(
    invoice_id: UUID,
    request: VendorAssignment,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    details = request.model_dump(exclude={"vendor_name", "is_new_vendor"})
    try:
        invoice = operations.update_invoice_vendor(
            db, user, invoice_id, request.vendor_name, request.is_new_vendor, details
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_invoice(invoice, detail=True)


@router.post("/{invoice_id}/inventory")
def apply_to_inventory(
    invoice_id: UUID,
    request: InventoryFromInvoice,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Update stock from the invoice's line items (or the ones given)."""
    invoice = _load_invoice(db, user, invoice_id)
    invoice_type = request.invoice_type or invoice.invoice_type
    line_items = request.line_items if request.line_items is not None else list(invoice.line_items)

    try:
        items = InventoryManager(db, user).update_from_invoice(invoice.invoice_id, invoice_type, line_items)
    except Exception as e:
        db.rollback()
        logger.error(f"Inventory update failed for invoice {invoice_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update inventory")
    return {"updated": [serialize_inventory_item(item) for item in items]}


@router.get("/{invoice_id}/line-items")
def list_line_items(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invoice = _load_invoice(db, user, invoice_id)
    return [serialize_line_item(li) for li in invoice.line_items]


@router.post("/{invoice_id}/line-items")
def create_line_item(
    invoice_id: UUID,
    request: LineItemCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        line_item = operations.create_line_item(db, user, invoice_id, request.model_dump())
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_line_item(line_item)


@line_items_router.put("/{line_item_id}")
def update_line_item(
    line_item_id: UUID,
    request: LineItemUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        line_item = operations.update_line_item(db, user, line_item_id, request.model_dump(exclude_unset=True))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_line_item(line_item)


@line_items_router.delete("/{line_item_id}")
def delete_line_item(
    line_item_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        operations.delete_line_item(db, user, line_item_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "line_item_id": str(line_item_id)}
