"""Request dependencies: API key check and the calling user."""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shared import settings, get_db, User

logger = logging.getLogger(__name__)

security = HTTPBearer()


def verify_api_key(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Verify API key from header."""
    if credentials.credentials != settings.api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> User:
    """Resolve the identity-provider user id to a local user, creating it on first sight."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized: missing user identity")

    user = db.query(User).filter(User.external_id == x_user_id).first()
    if user:
        return user

    user = User(external_id=x_user_id, email=x_user_email)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the same identity first
        db.rollback()
        user = db.query(User).filter(User.external_id == x_user_id).first()
        if user is None:
            raise
        return user
    db.refresh(user)
    logger.info(f"Created local user {user.user_id} for identity {x_user_id}")
    return user
