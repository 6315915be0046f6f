"""Current-user endpoints: profile, onboarding, AI settings and feedback."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from shared import get_db, settings, User
from services.api.deps import get_current_user
from services.api.schemas import (
    AISettingsRequest, OnboardingRequest, FeedbackRequest, serialize_ai_settings,
)
from services.learning.feedback import store_feedback, get_learning_stats
from services.users.profile import get_ai_settings, save_ai_settings, complete_onboarding

logger = logging.getLogger(__name__)

router = APIRouter(tags=["user"])


def _profile(user: User):
    org = user.organization
    return {
        "user_id": str(user.user_id),
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "organization": {
            "organization_id": str(org.organization_id),
            "name": org.name,
            "industry": org.industry,
            "size": org.size,
            "invoice_volume": org.invoice_volume,
        } if org else None,
        "onboarded": org is not None,
    }


@router.get("/user/me")
def current_user(user: User = Depends(get_current_user)):
    return _profile(user)


@router.post("/user/onboarding")
def onboarding(
    request: OnboardingRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        user = complete_onboarding(db, user, request.organization.model_dump(), request.ai_settings.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        db.rollback()
        logger.error(f"Onboarding failed for user {user.user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error completing onboarding: {str(e)}")
    return _profile(user)


@router.get("/user/ai-settings")
def read_ai_settings(user: User = Depends(get_current_user)):
    return serialize_ai_settings(get_ai_settings(user), settings.default_confidence_threshold)


@router.post("/user/ai-settings")
def write_ai_settings(
    request: AISettingsRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        ai_settings = save_ai_settings(db, user, request.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_ai_settings(ai_settings, settings.default_confidence_threshold)


@router.post("/feedback")
def submit_feedback(
    request: FeedbackRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Record a correction so later suggestions can learn from it."""
    try:
        feedback = store_feedback(
            db, user.user_id,
            field=request.field,
            original_value=request.original_value,
            corrected_value=request.corrected_value,
            feedback_type=request.feedback_type,
            vendor_name=request.vendor_name,
            invoice_id=request.invoice_id,
            confidence=request.confidence,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "feedback_id": str(feedback.feedback_id)}


@router.get("/feedback/stats")
def feedback_stats(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return get_learning_stats(db, user.user_id)
