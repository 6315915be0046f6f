"""Category suggestions for extracted invoices."""
import json
import logging
from typing import List, Dict, Any

from services.extractor.llm import chat_completion, parse_json_array, LLMError

logger = logging.getLogger(__name__)

FALLBACK_CATEGORIES = ["General", "Uncategorized"]

# Keyword hints used when the hosted model is unavailable
CATEGORY_KEYWORDS = {
    "Office Supplies": ["paper", "pen", "stapler", "toner", "ink", "folder", "notebook", "office"],
    "Software": ["software", "license", "subscription", "saas", "cloud", "hosting", "microsoft", "adobe"],
    "Hardware": ["laptop", "monitor", "keyboard", "printer", "computer", "server", "dell", "apple"],
    "Utilities": ["electric", "electricity", "water", "gas", "power", "utility"],
    "Telecommunications": ["phone", "mobile", "internet", "broadband", "telecom"],
    "Travel": ["flight", "airline", "hotel", "taxi", "uber", "train", "travel"],
    "Meals & Entertainment": ["restaurant", "meal", "lunch", "dinner", "catering", "coffee"],
    "Professional Services": ["consulting", "legal", "accounting", "audit", "advisory", "services"],
    "Marketing": ["advertising", "marketing", "campaign", "ads", "promotion", "seo"],
    "Rent": ["rent", "lease", "office space"],
    "Shipping": ["shipping", "freight", "courier", "delivery", "postage", "fedex", "ups", "dhl"],
    "Insurance": ["insurance", "premium", "policy"],
}

DEFAULT_CATEGORIES = list(CATEGORY_KEYWORDS.keys())


def categorize_with_keywords(extracted: Dict[str, Any]) -> List[str]:
    """Rank categories by keyword hits in vendor name, notes and line items."""
    parts = [str(extracted.get("vendorName") or ""), str(extracted.get("notes") or "")]
    for item in extracted.get("items") or []:
        if isinstance(item, dict):
            parts.append(str(item.get("description") or ""))
    text = " ".join(parts).lower()

    scores = {}
    for category, keywords in CATEGORY_KEYWORDS.items():
        hits = sum(1 for keyword in keywords if keyword in text)
        if hits:
            scores[category] = hits

    return [c for c, _ in sorted(scores.items(), key=lambda x: x[1], reverse=True)][:5]


def suggest_categories(extracted: Dict[str, Any]) -> List[str]:
    """Suggest 3-5 category names for an extracted invoice.

    Asks the hosted model first, then falls back to keyword matching and
    finally to a generic pair so callers always get something to show.
    """
    prompt = (
        "Based on the following invoice data, suggest 3-5 appropriate categories for this invoice.\n"
        f"The invoice is from vendor \"{extracted.get('vendorName') or 'Unknown'}\" "
        f"with the following line items:\n{json.dumps(extracted.get('items') or [])}\n\n"
        "Format your response as a JSON array of category names only, e.g.:\n"
        "[\"Category1\", \"Category2\", \"Category3\"]"
    )

    try:
        answer = chat_completion(
            [{"role": "user", "content": prompt}],
            temperature=0.7,
            max_tokens=150,
        )
        categories = [str(c).strip() for c in parse_json_array(answer) if str(c).strip()]
        if categories:
            return categories[:5]
        logger.warning("Model returned no categories, using keyword fallback")
    except (LLMError, ValueError) as e:
        logger.warning(f"Category suggestion via model failed: {e}")

    keyword_categories = categorize_with_keywords(extracted)
    return keyword_categories or list(FALLBACK_CATEGORIES)
