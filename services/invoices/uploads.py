"""Upload validation and the upload → store → OCR → persist flow."""
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from shared import settings, User, Invoice
from shared.storage import build_object_key, upload_bytes
from services.extractor import worker

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".csv": "text/csv",
}


def validate_upload(filename: str, size: int) -> str:
    """Check type and size of one file; returns the content type to store it with."""
    extension = os.path.splitext(filename or "")[1].lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise ValueError(
            f"File type not supported: {filename}. "
            "Please upload PDF, JPEG, PNG, TIFF, XLS, XLSX or CSV files."
        )
    if size == 0:
        raise ValueError(f"File is empty: {filename}")
    max_bytes = settings.max_upload_mb * 1024 * 1024
    if size > max_bytes:
        raise ValueError(f"File too large: {filename}. Maximum size is {settings.max_upload_mb}MB.")
    return ALLOWED_EXTENSIONS[extension]


def validate_batch(count: int) -> None:
    if count == 0:
        raise ValueError("No files were uploaded")
    if count > settings.max_batch_files:
        raise ValueError(f"Too many files. You can upload up to {settings.max_batch_files} files at once.")


def organization_context(user: User) -> Tuple[str, Optional[str]]:
    """Organization name and the user's custom OCR instructions."""
    organization_name = user.organization.name if user.organization else ""
    instructions = user.ai_settings.custom_instructions if user.ai_settings else None
    return organization_name, instructions


def run_ocr(db: Session, user: User, invoice: Invoice) -> Dict[str, Any]:
    organization_name, instructions = organization_context(user)
    return worker.process_invoice(db, invoice, organization_name, instructions)


def upload_invoice(db: Session, user: User, filename: str, data: bytes,
                   content_type: Optional[str] = None) -> Dict[str, Any]:
    """Store a file, create a PENDING invoice for it and run OCR.

    Validation errors propagate before anything is stored. An OCR failure
    leaves the invoice in place so it can be reprocessed later.
    """
    stored_type = validate_upload(filename, len(data))
    file_url = upload_bytes(data, build_object_key("invoices", filename), content_type or stored_type)

    invoice = Invoice(
        title=filename,
        original_file_url=file_url,
        status="PENDING",
        invoice_type="PURCHASE",
        user_id=user.user_id,
        organization_id=user.organization_id,
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    logger.info(f"Created invoice {invoice.invoice_id} for upload {filename}")

    try:
        result = run_ocr(db, user, invoice)
    except Exception as e:
        db.rollback()
        logger.error(f"OCR failed for invoice {invoice.invoice_id} ({filename}): {e}", exc_info=True)
        return {
            "filename": filename,
            "status": "failed",
            "invoice_id": str(invoice.invoice_id),
            "error": "Invoice was uploaded but could not be processed. You can retry processing later.",
        }

    return {
        "filename": filename,
        "status": "success",
        "invoice_id": str(invoice.invoice_id),
        "engine": result.get("engine"),
        "confidence": result.get("confidence"),
        "suggested_categories": result.get("suggested_categories", []),
        "detected_type": (result.get("extracted_data") or {}).get("invoiceType"),
        "error": None,
    }


def reprocess_invoice(db: Session, user: User, invoice: Invoice) -> Dict[str, Any]:
    """Retry OCR on an invoice whose file is already stored."""
    if not invoice.original_file_url:
        raise ValueError("Invoice has no stored file to process")
    try:
        return run_ocr(db, user, invoice)
    except Exception:
        db.rollback()
        logger.error(f"Reprocessing failed for invoice {invoice.invoice_id}", exc_info=True)
        raise


def upload_batch(db: Session, user: User, files: List[Tuple[str, bytes, Optional[str]]]) -> List[Dict[str, Any]]:
    """Upload files one after another; a failed file does not stop the rest."""
    validate_batch(len(files))
    results = []
    for filename, data, content_type in files:
        try:
            results.append(upload_invoice(db, user, filename, data, content_type))
        except Exception as e:
            db.rollback()
            logger.error(f"Upload failed for {filename}: {e}")
            results.append({
                "filename": filename,
                "status": "failed",
                "invoice_id": None,
                "error": str(e),
            })
    return results
