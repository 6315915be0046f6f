"""Invoice export to CSV / Excel files in blob storage."""
import io
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

import pandas as pd
from sqlalchemy.orm import Session

from shared import User, Invoice
from shared.storage import upload_bytes, get_presigned_url

logger = logging.getLogger(__name__)

EXPORT_FORMATS = {
    "csv": ("text/csv", "csv"),
    "xlsx": ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx"),
}

# Column title -> how to read it from an invoice
EXPORT_FIELDS = {
    "invoice_number": ("Invoice Number", lambda inv: inv.invoice_number),
    "title": ("Title", lambda inv: inv.title),
    "vendor": ("Vendor", lambda inv: inv.vendor.name if inv.vendor else inv.vendor_name),
    "category": ("Category", lambda inv: inv.category.name if inv.category else None),
    "issue_date": ("Issue Date", lambda inv: inv.issue_date.isoformat() if inv.issue_date else None),
    "due_date": ("Due Date", lambda inv: inv.due_date.isoformat() if inv.due_date else None),
    "amount": ("Amount", lambda inv: inv.amount),
    "currency": ("Currency", lambda inv: inv.currency),
    "status": ("Status", lambda inv: inv.status),
    "invoice_type": ("Type", lambda inv: inv.invoice_type),
    "tags": ("Tags", lambda inv: ", ".join(inv.tags or [])),
    "notes": ("Notes", lambda inv: inv.notes),
}

DEFAULT_EXPORT_FIELDS = ["invoice_number", "vendor", "category", "issue_date", "due_date",
                         "amount", "currency", "status", "invoice_type"]


def select_invoices(db: Session, user: User, invoice_ids: Optional[List[UUID]] = None,
                    include_all: bool = False, date_from: Optional[date] = None,
                    date_to: Optional[date] = None) -> List[Invoice]:
    query = db.query(Invoice).filter(Invoice.user_id == user.user_id)
    if not include_all:
        if not invoice_ids:
            raise ValueError("Select at least one invoice to export")
        query = query.filter(Invoice.invoice_id.in_(invoice_ids))
    if date_from:
        query = query.filter(Invoice.issue_date >= date_from)
    if date_to:
        query = query.filter(Invoice.issue_date <= date_to)
    return query.order_by(Invoice.issue_date.desc()).all()


def invoices_to_frame(invoices: List[Invoice], fields: Optional[List[str]] = None) -> pd.DataFrame:
    fields = [f for f in (fields or DEFAULT_EXPORT_FIELDS) if f in EXPORT_FIELDS]
    if not fields:
        raise ValueError("No valid export fields selected")
    rows = [
        {EXPORT_FIELDS[f][0]: EXPORT_FIELDS[f][1](inv) for f in fields}
        for inv in invoices
    ]
    return pd.DataFrame(rows, columns=[EXPORT_FIELDS[f][0] for f in fields])


def render(frame: pd.DataFrame, export_format: str) -> bytes:
    if export_format == "csv":
        return frame.to_csv(index=False).encode("utf-8")
    buffer = io.BytesIO()
    frame.to_excel(buffer, index=False, sheet_name="Invoices")
    return buffer.getvalue()


def export_invoices(db: Session, user: User, export_format: str = "xlsx",
                    invoice_ids: Optional[List[UUID]] = None, include_all: bool = False,
                    fields: Optional[List[str]] = None, date_from: Optional[date] = None,
                    date_to: Optional[date] = None, folder_name: Optional[str] = None) -> Dict[str, Any]:
    """Write the selected invoices to a file and return where to download it."""
    if export_format not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {export_format}")

    invoices = select_invoices(db, user, invoice_ids, include_all, date_from, date_to)
    frame = invoices_to_frame(invoices, fields)
    content_type, extension = EXPORT_FORMATS[export_format]

    file_name = f"invoices-{datetime.utcnow():%Y%m%d-%H%M%S}.{extension}"
    folder = (folder_name or "").strip("/ ")
    key = f"exports/{user.user_id}/{folder + '/' if folder else ''}{file_name}"
    file_url = upload_bytes(render(frame, export_format), key, content_type)
    logger.info(f"Exported {len(invoices)} invoices for user {user.user_id} to {file_url}")

    return {
        "file_name": file_name,
        "file_url": get_presigned_url(file_url) or file_url,
        "format": export_format,
        "count": len(invoices),
        "folder": folder or None,
    }
