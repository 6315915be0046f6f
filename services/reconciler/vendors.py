"""Vendor reconciliation - matches extracted vendor names to known vendors."""
import logging
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session
from rapidfuzz import fuzz

from shared import Vendor

logger = logging.getLogger(__name__)

AUTO_MATCH_SCORE = 90
SUGGESTION_SCORE = 60


def suggest_vendors(extracted_name: Optional[str], existing_vendors: List[str]) -> List[str]:
    """Suggest vendor names for an extracted name.

    Exact match first, then containment either way, then fuzzy matches. The
    extracted name is always offered as a new-vendor option when it has no
    exact match.
    """
    if not extracted_name:
        return existing_vendors[:3]

    name_lower = extracted_name.strip().lower()

    exact = [v for v in existing_vendors if v.lower() == name_lower]
    if exact:
        return exact

    contains = [
        v for v in existing_vendors
        if name_lower in v.lower() or v.lower() in name_lower
    ]
    if contains:
        return contains + [extracted_name]

    scored = sorted(
        ((v, fuzz.ratio(name_lower, v.lower())) for v in existing_vendors),
        key=lambda x: x[1],
        reverse=True,
    )
    similar = [v for v, score in scored if score >= SUGGESTION_SCORE]
    if similar:
        return similar + [extracted_name]

    return [extracted_name]


class VendorMatcher:
    """Fuzzy-matches vendor names against one user's vendors."""

    def __init__(self, db: Session, user_id: UUID):
        self.db = db
        self.vendors = db.query(Vendor).filter(Vendor.user_id == user_id).all()

    @property
    def names(self) -> List[str]:
        return [v.name for v in self.vendors]

    def match_vendor(self, vendor_name: str) -> Tuple[Optional[Vendor], float, List[Dict]]:
        """Returns (best vendor, score, suggestions above the suggestion threshold)."""
        if not vendor_name:
            return None, 0.0, []

        vendor_name = vendor_name.strip().lower()
        best_match = None
        best_score = 0.0
        suggestions = []

        for vendor in self.vendors:
            score = fuzz.ratio(vendor_name, vendor.name.lower())
            if score > best_score:
                best_score = score
                best_match = vendor
            if score >= SUGGESTION_SCORE:
                suggestions.append({
                    'vendor_id': str(vendor.vendor_id),
                    'name': vendor.name,
                    'score': score
                })

        suggestions = sorted(suggestions, key=lambda x: x['score'], reverse=True)[:3]
        return best_match, best_score, suggestions

    def auto_match(self, vendor_name: str) -> Optional[Vendor]:
        """Return a vendor only when the match is strong enough to link without review."""
        vendor, score, _ = self.match_vendor(vendor_name)
        if vendor and score >= AUTO_MATCH_SCORE:
            logger.info(f"Auto-matched vendor '{vendor_name}' to {vendor.vendor_id} (score: {score})")
            return vendor
        return None
