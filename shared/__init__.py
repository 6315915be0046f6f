"""Shared utilities and configuration."""
from shared.config import settings, get_db, s3_client, ensure_s3_bucket, SessionLocal, Base
from shared.models import (
    Organization, User, AISettings, Category, Vendor, Invoice, InvoiceLineItem,
    LineItemAttribute, InventoryItem, InventoryAttribute, InventoryHistory, AIFeedback
)

__all__ = [
    "settings",
    "get_db",
    "SessionLocal",
    "Base",
    "s3_client",
    "ensure_s3_bucket",
    "Organization",
    "User",
    "AISettings",
    "Category",
    "Vendor",
    "Invoice",
    "InvoiceLineItem",
    "LineItemAttribute",
    "InventoryItem",
    "InventoryAttribute",
    "InventoryHistory",
    "AIFeedback",
]
