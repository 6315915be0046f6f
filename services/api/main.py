"""FastAPI service - invoice management, inventory and accounting API."""
import os
import logging

from fastapi import FastAPI

from shared import settings, Base, ensure_s3_bucket
from shared.config import engine
from services.api.accounting import router as accounting_router
from services.api.catalog import router as catalog_router
from services.api.inventory import router as inventory_router
from services.api.invoices import router as invoices_router, line_items_router
from services.api.uploads import router as uploads_router
from services.api.users import router as users_router

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Invoice Management API", version="1.0.0")

# Include routers
app.include_router(uploads_router)
app.include_router(invoices_router)
app.include_router(line_items_router)
app.include_router(catalog_router)
app.include_router(inventory_router)
app.include_router(accounting_router)
app.include_router(users_router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.on_event("startup")
def startup_event():
    """Create tables and the upload bucket."""
    if os.getenv("PYTEST_CURRENT_TEST") or os.getenv("TESTING"):
        logger.info("Skipping database and storage setup (test environment)")
        return

    Base.metadata.create_all(bind=engine)
    try:
        ensure_s3_bucket()
    except Exception as e:
        logger.error(f"Failed to prepare storage bucket: {e}", exc_info=True)
