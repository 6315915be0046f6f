"""OCR pipeline - runs the engine chain and applies results to invoices."""
import logging
from datetime import date
from typing import Dict, Any, List, Optional, Callable

from sqlalchemy.orm import Session

from shared import settings, Invoice, InvoiceLineItem, LineItemAttribute
from shared.models import INVOICE_TYPES
from shared.storage import read_object
from services.extractor.classifier import classify_invoice_type
from services.extractor.categorizer import suggest_categories
from services.extractor.engines import OCRDocument, build_prompt, run_engine_chain
from services.extractor.llm import chat_completion, LLMError
from services.reconciler.vendors import VendorMatcher

logging.basicConfig(level=getattr(logging, settings.log_level))
logger = logging.getLogger(__name__)


def detect_language(text: str) -> str:
    """Return an ISO language code for the text, defaulting to English."""
    if not text or not text.strip():
        return "en"
    prompt = (
        "Identify the language of the following text and respond with just the ISO "
        f"language code (e.g., 'en', 'fr', 'es', etc.):\n\n{text[:500]}"
    )
    try:
        answer = chat_completion([{"role": "user", "content": prompt}], temperature=0, max_tokens=10)
    except LLMError as e:
        logger.warning(f"Language detection failed: {e}")
        return "en"
    code = answer.strip().strip("'\".").lower()
    return code[:5] if code else "en"


def _free_text(extracted: Dict[str, Any]) -> str:
    parts = [str(extracted.get("vendorName") or ""), str(extracted.get("notes") or "")]
    for item in extracted.get("items") or []:
        if isinstance(item, dict):
            parts.append(str(item.get("description") or ""))
    return " ".join(p for p in parts if p)


def process_invoice_with_ocr(
    file_url: str,
    filename: Optional[str] = None,
    organization_name: str = "",
    custom_instructions: Optional[str] = None,
    fields: Optional[Dict[str, str]] = None,
    loader: Callable[[str], bytes] = read_object,
) -> Dict[str, Any]:
    """Extract structured data from a stored invoice file.

    Returns a dict with extracted_data, suggested_categories, engine and
    confidence. Raises OCRProcessingError when no engine could read the file.
    """
    document = OCRDocument(file_url, filename, loader=loader)
    prompt = build_prompt(fields, organization_name, custom_instructions)
    engine, extracted, confidence = run_engine_chain(document, prompt)

    if not extracted.get("language"):
        extracted["language"] = detect_language(_free_text(extracted))

    if extracted.get("invoiceType") in INVOICE_TYPES:
        extracted.setdefault("invoiceTypeConfidence", confidence)
    else:
        invoice_type, type_confidence = classify_invoice_type(extracted, organization_name)
        extracted["invoiceType"] = invoice_type
        extracted["invoiceTypeConfidence"] = type_confidence

    return {
        "extracted_data": extracted,
        "suggested_categories": suggest_categories(extracted),
        "engine": engine,
        "confidence": confidence,
    }


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"Ignoring unparseable date from OCR: {value}")
        return None


def _parse_amount(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace(",", ""))
    except ValueError:
        logger.warning(f"Ignoring unparseable amount from OCR: {value}")
        return None


def _attribute_pairs(raw: Any) -> List[Dict[str, str]]:
    """Accept attributes as {"color": "red"} or [{"name": "color", "value": "red"}]."""
    if isinstance(raw, dict):
        return [{"name": str(k), "value": str(v)} for k, v in raw.items() if v is not None]
    if isinstance(raw, list):
        return [
            {"name": str(a["name"]), "value": str(a.get("value", ""))}
            for a in raw if isinstance(a, dict) and a.get("name")
        ]
    return []


def build_line_items(items: List[Dict[str, Any]]) -> List[InvoiceLineItem]:
    """Turn extracted item dicts into line item rows, skipping unusable ones."""
    rows = []
    for item in items or []:
        if not isinstance(item, dict) or not item.get("description"):
            continue
        quantity = _parse_amount(item.get("quantity")) or 1
        unit_price = _parse_amount(item.get("unitPrice")) or 0
        total_price = _parse_amount(item.get("totalPrice"))
        if total_price is None:
            total_price = quantity * unit_price

        line_item = InvoiceLineItem(
            description=str(item["description"]),
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            tax_rate=_parse_amount(item.get("taxRate")),
            tax_amount=_parse_amount(item.get("taxAmount")),
            discount=_parse_amount(item.get("discount")),
            product_sku=item.get("productSku") or item.get("sku"),
        )
        for attr in _attribute_pairs(item.get("attributes")):
            line_item.attributes.append(LineItemAttribute(name=attr["name"], value=attr["value"]))
        rows.append(line_item)
    return rows


def apply_ocr_result(db: Session, invoice: Invoice, result: Dict[str, Any]) -> Invoice:
    """Copy OCR output onto an invoice; fields the OCR did not find are left alone."""
    extracted = result.get("extracted_data") or {}

    invoice.invoice_number = extracted.get("invoiceNumber") or invoice.invoice_number
    invoice.vendor_name = extracted.get("vendorName") or invoice.vendor_name
    invoice.issue_date = _parse_date(extracted.get("issueDate")) or invoice.issue_date
    invoice.due_date = _parse_date(extracted.get("dueDate")) or invoice.due_date
    amount = _parse_amount(extracted.get("amount"))
    if amount is not None:
        invoice.amount = amount
    invoice.currency = extracted.get("currency") or invoice.currency or "USD"
    invoice.notes = extracted.get("notes") or invoice.notes
    invoice.language_code = extracted.get("language") or "en"
    invoice.invoice_type = extracted.get("invoiceType") if extracted.get("invoiceType") in INVOICE_TYPES else "PURCHASE"
    invoice.extracted_data = {
        **extracted,
        "suggestedCategories": result.get("suggested_categories", []),
        "engine": result.get("engine"),
        "confidence": result.get("confidence"),
    }
    invoice.extractor_version = settings.extractor_version

    line_items = build_line_items(extracted.get("items") or [])
    if line_items:
        invoice.line_items = line_items

    if invoice.vendor_id is None and invoice.vendor_name and invoice.user_id:
        vendor = VendorMatcher(db, invoice.user_id).auto_match(invoice.vendor_name)
        if vendor:
            invoice.vendor_id = vendor.vendor_id

    return invoice


def process_invoice(
    db: Session,
    invoice: Invoice,
    organization_name: str = "",
    custom_instructions: Optional[str] = None,
) -> Dict[str, Any]:
    """Run OCR for a stored invoice and persist the results."""
    result = process_invoice_with_ocr(
        invoice.original_file_url,
        filename=invoice.title,
        organization_name=organization_name,
        custom_instructions=custom_instructions,
    )
    apply_ocr_result(db, invoice, result)
    db.commit()
    db.refresh(invoice)
    logger.info(f"Invoice {invoice.invoice_id}: applied OCR results from engine '{result['engine']}'")
    return result
