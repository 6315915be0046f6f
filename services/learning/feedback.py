"""User corrections to extracted data, and suggestions re-ranked by them."""
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from shared import AIFeedback
from shared.models import FEEDBACK_TYPES

logger = logging.getLogger(__name__)


def store_feedback(
    db: Session,
    user_id: UUID,
    field: str,
    original_value: Optional[str],
    corrected_value: Optional[str],
    feedback_type: str,
    vendor_name: Optional[str] = None,
    invoice_id: Optional[UUID] = None,
    confidence: Optional[float] = None,
) -> AIFeedback:
    """Persist one correction."""
    if feedback_type not in FEEDBACK_TYPES:
        raise ValueError(f"Unknown feedback type: {feedback_type}")

    feedback = AIFeedback(
        user_id=user_id,
        invoice_id=invoice_id,
        field=field,
        original_value=None if original_value is None else str(original_value),
        corrected_value=None if corrected_value is None else str(corrected_value),
        vendor_name=vendor_name,
        confidence=confidence,
        feedback_type=feedback_type,
    )
    db.add(feedback)
    db.commit()
    logger.info(f"Stored {feedback_type} feedback for field '{field}' (user {user_id})")
    return feedback


def store_category_feedback(db: Session, user_id: UUID, invoice_id: Optional[UUID], vendor_name: Optional[str],
                            original_category: Optional[str], corrected_category: str,
                            confidence: Optional[float] = None) -> AIFeedback:
    return store_feedback(db, user_id, "category", original_category, corrected_category, "CATEGORY",
                          vendor_name=vendor_name, invoice_id=invoice_id, confidence=confidence)


def store_vendor_feedback(db: Session, user_id: UUID, invoice_id: Optional[UUID], original_vendor: Optional[str],
                          corrected_vendor: str, confidence: Optional[float] = None) -> AIFeedback:
    return store_feedback(db, user_id, "vendor", original_vendor, corrected_vendor, "VENDOR",
                          vendor_name=corrected_vendor, invoice_id=invoice_id, confidence=confidence)


def store_extraction_feedback(db: Session, user_id: UUID, invoice_id: Optional[UUID], field: str,
                              original_value: Any, corrected_value: Any, vendor_name: Optional[str] = None,
                              confidence: Optional[float] = None) -> AIFeedback:
    return store_feedback(db, user_id, field, original_value, corrected_value, "EXTRACTION",
                          vendor_name=vendor_name, invoice_id=invoice_id, confidence=confidence)


def store_attribute_feedback(db: Session, user_id: UUID, invoice_id: Optional[UUID], attribute_name: str,
                             original_value: Any, corrected_value: Any, vendor_name: Optional[str] = None) -> AIFeedback:
    return store_feedback(db, user_id, f"attribute:{attribute_name}", original_value, corrected_value, "ATTRIBUTE",
                          vendor_name=vendor_name, invoice_id=invoice_id)


def _rank_by_frequency(values: List[str]) -> List[str]:
    counts: Dict[str, int] = {}
    for value in values:
        if value:
            counts[value] = counts.get(value, 0) + 1
    return [value for value, _ in sorted(counts.items(), key=lambda x: x[1], reverse=True)]


def get_personalized_category_suggestions(db: Session, user_id: UUID, vendor_name: str,
                                          default_suggestions: List[str]) -> List[str]:
    """Categories this user picked for the vendor before, then the defaults."""
    recent = (
        db.query(AIFeedback)
        .filter(
            AIFeedback.user_id == user_id,
            AIFeedback.feedback_type == "CATEGORY",
            AIFeedback.vendor_name.ilike(f"%{vendor_name or ''}%"),
        )
        .order_by(AIFeedback.timestamp.desc())
        .limit(10)
        .all()
    )
    if not recent:
        return list(default_suggestions)

    suggestions = _rank_by_frequency([f.corrected_value for f in recent])
    for category in default_suggestions:
        if category not in suggestions:
            suggestions.append(category)
    return suggestions[:8]


def get_personalized_vendor_suggestions(db: Session, user_id: UUID, extracted_vendor: str,
                                        existing_vendors: List[str]) -> List[str]:
    """Vendors the user corrected this name to before, then the name itself and known vendors."""
    recent = (
        db.query(AIFeedback)
        .filter(
            AIFeedback.user_id == user_id,
            AIFeedback.feedback_type == "VENDOR",
            AIFeedback.original_value.ilike(f"%{extracted_vendor or ''}%"),
        )
        .order_by(AIFeedback.timestamp.desc())
        .limit(10)
        .all()
    )
    if not recent:
        return []

    suggestions = _rank_by_frequency([f.corrected_value for f in recent])
    if extracted_vendor and extracted_vendor not in suggestions:
        suggestions.append(extracted_vendor)
    for vendor in existing_vendors:
        if len(suggestions) >= 5:
            break
        if vendor not in suggestions:
            suggestions.append(vendor)
    return suggestions[:5]


def get_learning_stats(db: Session, user_id: UUID) -> Dict[str, Any]:
    total = db.query(func.count(AIFeedback.feedback_id)).filter(AIFeedback.user_id == user_id).scalar() or 0
    by_type = dict(
        db.query(AIFeedback.feedback_type, func.count(AIFeedback.feedback_id))
        .filter(AIFeedback.user_id == user_id)
        .group_by(AIFeedback.feedback_type)
        .all()
    )
    recent = (
        db.query(AIFeedback)
        .filter(AIFeedback.user_id == user_id)
        .order_by(AIFeedback.timestamp.desc())
        .limit(5)
        .all()
    )
    return {
        "total_feedback": total,
        "feedback_by_type": {t: by_type.get(t, 0) for t in FEEDBACK_TYPES},
        "recent_feedback": [
            {
                "feedback_id": str(f.feedback_id),
                "field": f.field,
                "original_value": f.original_value,
                "corrected_value": f.corrected_value,
                "feedback_type": f.feedback_type,
                "timestamp": f.timestamp.isoformat() if f.timestamp else None,
            }
            for f in recent
        ],
    }
