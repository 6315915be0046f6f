"""Organization onboarding and per-user AI settings."""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from shared import settings, User, Organization, AISettings

logger = logging.getLogger(__name__)


def get_ai_settings(user: User) -> Optional[AISettings]:
    return user.ai_settings


def save_ai_settings(db: Session, user: User, data: Dict[str, Any]) -> AISettings:
    """Create or update the user's AI settings."""
    threshold = data.get("confidence_threshold")
    if threshold is None:
        threshold = settings.default_confidence_threshold
    if not 0 <= threshold <= 1:
        raise ValueError("Confidence threshold must be between 0 and 1")

    ai_settings = user.ai_settings
    if ai_settings is None:
        ai_settings = AISettings(user_id=user.user_id)
        db.add(ai_settings)
        user.ai_settings = ai_settings

    ai_settings.custom_instructions = data.get("custom_instructions")
    ai_settings.confidence_threshold = threshold
    ai_settings.preferred_categories = list(data.get("preferred_categories") or [])
    ai_settings.sample_invoice_urls = list(data.get("sample_invoice_urls") or [])
    db.commit()
    db.refresh(ai_settings)
    return ai_settings


def complete_onboarding(db: Session, user: User, organization: Dict[str, Any],
                        ai_settings: Optional[Dict[str, Any]] = None) -> User:
    """Attach the user to an organization (created or updated) and store AI settings."""
    name = (organization.get("name") or "").strip()
    if not name:
        raise ValueError("Organization name is required")

    org = user.organization
    if org is None:
        org = Organization(name=name)
        db.add(org)
        db.flush()
        user.organization_id = org.organization_id
        user.organization = org
        logger.info(f"Created organization '{name}' for user {user.user_id}")

    org.name = name
    for field in ("industry", "size", "invoice_volume"):
        if organization.get(field) is not None:
            setattr(org, field, organization[field])
    db.commit()

    save_ai_settings(db, user, ai_settings or {})
    db.refresh(user)
    return user
