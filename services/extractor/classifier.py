"""Invoice type detection - decides whether the organization pays or gets paid."""
import logging
import re
from typing import Dict, Any, List, Tuple

logger = logging.getLogger(__name__)

PURCHASE = "PURCHASE"
PAYMENT = "PAYMENT"

# Phrases that precede the buyer's name on a document
PURCHASE_INDICATORS = [
    "bill to",
    "bill to:",
    "billed to",
    "billed to:",
    "ship to",
    "ship to:",
    "sold to",
    "sold to:",
    "customer:",
    "buyer:",
    "purchase order",
    "payment due",
    "attn:",
]

# Phrases that precede the seller's name on a document
PAYMENT_INDICATORS = [
    "from:",
    "from",
    "issued by",
    "issued by:",
    "seller:",
    "vendor:",
    "supplier:",
    "remit to",
    "remit to:",
    "pay to",
    "payable to",
]

BILL_TO_PATTERN = re.compile(r"bill(?:ed)?\s+to[:\s]*(.*?)(?:ship\s+to|invoice|$)", re.DOTALL)
FROM_PATTERN = re.compile(r"\bfrom\b[:\s]*([^\n]*)")


def _collect_text(extracted: Dict[str, Any]) -> str:
    """Join the free-text parts of an extraction into one lowercase corpus."""
    parts: List[str] = []
    for key in ("vendorName", "notes"):
        value = extracted.get(key)
        if value:
            parts.append(str(value))

    items = extracted.get("items") or extracted.get("lineItems") or []
    for item in items:
        if isinstance(item, dict) and item.get("description"):
            parts.append(str(item["description"]))

    return "\n".join(parts).lower()


def _overlaps(fragment: str, org_words: List[str]) -> bool:
    return any(word in fragment for word in org_words)


def classify_invoice_type(extracted: Dict[str, Any], organization_name: str) -> Tuple[str, float]:
    """Score an extraction as PURCHASE or PAYMENT for the given organization.

    Returns (invoice_type, confidence). When the organization is not mentioned
    at all the document is assumed to be a bill we received.
    """
    org_lower = (organization_name or "").lower().strip()
    org_words = [w for w in org_lower.split() if len(w) > 2]
    text = _collect_text(extracted or {})

    if not org_lower:
        return PURCHASE, 0.4

    org_found = org_lower in text
    if not org_found and org_words:
        matched = sum(1 for w in org_words if w in text)
        org_found = matched / len(org_words) >= 0.6

    if not org_found:
        logger.debug(f"Organization '{organization_name}' not found in document text")
        return PURCHASE, 0.4

    purchase_score = 0
    payment_score = 0

    for indicator in PURCHASE_INDICATORS:
        if f"{indicator} {org_lower}" in text or f"{indicator}{org_lower}" in text:
            purchase_score += 2

    for indicator in PAYMENT_INDICATORS:
        if f"{indicator} {org_lower}" in text or f"{indicator}{org_lower}" in text:
            payment_score += 2

    check_words = org_words or [org_lower]

    bill_to = BILL_TO_PATTERN.search(text)
    if bill_to and _overlaps(bill_to.group(1), check_words):
        purchase_score += 5

    from_match = FROM_PATTERN.search(text)
    if from_match and _overlaps(from_match.group(1), check_words):
        payment_score += 5

    vendor_lower = str(extracted.get("vendorName") or "").lower().strip()
    if vendor_lower:
        vendor_words = set(vendor_lower.split())
        if (org_lower in vendor_lower or vendor_lower in org_lower
                or any(w in vendor_words for w in org_words)):
            # The organization issued the document itself
            payment_score += 3

    logger.debug(f"Invoice type scores: purchase={purchase_score}, payment={payment_score}")

    if purchase_score > payment_score:
        return PURCHASE, min(0.5 + 0.05 * (purchase_score - payment_score), 0.95)
    if payment_score > purchase_score:
        return PAYMENT, min(0.5 + 0.05 * (payment_score - purchase_score), 0.95)
    return PURCHASE, 0.5
