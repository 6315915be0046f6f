"""Upload endpoints: single file and sequential batch."""
import logging
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from shared import get_db, User
from services.api.deps import get_current_user
from services.invoices.uploads import upload_invoice, upload_batch, validate_batch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.post("")
def upload_file(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Store one invoice file and run OCR on it."""
    data = file.file.read()
    try:
        result = upload_invoice(db, user, file.filename, data, file.content_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        db.rollback()
        logger.error(f"Upload failed for {file.filename}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to upload invoice")
    return result


@router.post("/batch")
def upload_files(
    files: List[UploadFile] = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Upload several files one after another; each gets its own result."""
    try:
        validate_batch(len(files))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    payload = []
    for upload in files:
        payload.append((upload.filename, upload.file.read(), upload.content_type))

    results = upload_batch(db, user, payload)
    succeeded = sum(1 for r in results if r["status"] == "success")
    logger.info(f"Batch upload for user {user.user_id}: {succeeded}/{len(results)} succeeded")
    return {"results": results, "succeeded": succeeded, "failed": len(results) - succeeded}
