"""Request models and response serializers for the API."""
from datetime import date
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from shared import (
    Invoice, InvoiceLineItem, Category, Vendor, InventoryItem, InventoryHistory, AISettings
)
from shared.storage import get_presigned_url

InvoiceStatus = Literal["PENDING", "PAID", "OVERDUE", "CANCELLED"]
InvoiceType = Literal["PURCHASE", "PAYMENT"]


class InvoiceUpdate(BaseModel):
    invoice_number: Optional[str] = None
    title: Optional[str] = None
    vendor_name: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    status: Optional[InvoiceStatus] = None
    invoice_type: Optional[InvoiceType] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None


class InvoiceTypeUpdate(BaseModel):
    invoice_type: InvoiceType


class CategoryAssignment(BaseModel):
    category_name: str
    is_new_category: bool = False


class VendorAssignment(BaseModel):
    vendor_name: str
    is_new_vendor: bool = False
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class BatchRequest(BaseModel):
    operation: Literal["approve", "archive", "delete", "tag"]
    invoice_ids: List[UUID]
    tags: Optional[List[str]] = None


class LineItemCreate(BaseModel):
    description: str
    quantity: float = 1
    unit_price: float = 0
    total_price: Optional[float] = None
    tax_rate: Optional[float] = None
    tax_amount: Optional[float] = None
    discount: Optional[float] = None
    product_sku: Optional[str] = None
    notes: Optional[str] = None
    attributes: Dict[str, str] = {}


class LineItemUpdate(BaseModel):
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    tax_rate: Optional[float] = None
    tax_amount: Optional[float] = None
    discount: Optional[float] = None
    product_sku: Optional[str] = None
    notes: Optional[str] = None
    attributes: Optional[Dict[str, str]] = None


class AutoCategorizeRequest(BaseModel):
    invoice_ids: List[UUID]
    confidence_threshold: Optional[float] = Field(None, ge=0, le=1)
    auto_approve: bool = False
    include_paid: bool = False


class ExportRequest(BaseModel):
    format: Literal["csv", "xlsx"] = "xlsx"
    invoice_ids: List[UUID] = []
    include_all: bool = False
    fields: Optional[List[str]] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    folder_name: Optional[str] = None


class CategoryCreate(BaseModel):
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class VendorCreate(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class VendorUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class InventoryItemCreate(BaseModel):
    product_name: str
    description: Optional[str] = None
    sku: Optional[str] = None
    current_quantity: float = Field(0, ge=0)
    unit_of_measure: Optional[str] = None
    category: Optional[str] = None
    attributes: Dict[str, str] = {}


class InventoryItemUpdate(BaseModel):
    product_name: Optional[str] = None
    description: Optional[str] = None
    sku: Optional[str] = None
    current_quantity: Optional[float] = Field(None, ge=0)
    unit_of_measure: Optional[str] = None
    category: Optional[str] = None
    attributes: Optional[Dict[str, str]] = None
    change_reason: Optional[Literal["ADJUSTMENT", "RETURN"]] = None
    notes: Optional[str] = None


class InventoryFromInvoice(BaseModel):
    invoice_type: Optional[InvoiceType] = None
    line_items: Optional[List[Dict[str, Any]]] = None


class AISettingsRequest(BaseModel):
    custom_instructions: Optional[str] = None
    confidence_threshold: float = Field(0.7, ge=0, le=1)
    preferred_categories: List[str] = []
    sample_invoice_urls: List[str] = []


class OrganizationInput(BaseModel):
    name: str
    industry: Optional[str] = None
    size: Optional[str] = None
    invoice_volume: Optional[str] = None


class OnboardingRequest(BaseModel):
    organization: OrganizationInput
    ai_settings: AISettingsRequest = AISettingsRequest()


class FeedbackRequest(BaseModel):
    field: str
    original_value: Optional[str] = None
    corrected_value: Optional[str] = None
    feedback_type: Literal["EXTRACTION", "CATEGORY", "VENDOR", "ATTRIBUTE"]
    vendor_name: Optional[str] = None
    invoice_id: Optional[UUID] = None
    confidence: Optional[float] = None


def serialize_category(category: Category) -> Dict[str, Any]:
    return {
        "category_id": str(category.category_id),
        "name": category.name,
        "description": category.description,
        "color": category.color,
        "icon": category.icon,
    }


def serialize_vendor(vendor: Vendor) -> Dict[str, Any]:
    return {
        "vendor_id": str(vendor.vendor_id),
        "name": vendor.name,
        "email": vendor.email,
        "phone": vendor.phone,
        "website": vendor.website,
        "address": vendor.address,
        "notes": vendor.notes,
    }


def serialize_line_item(line_item: InvoiceLineItem) -> Dict[str, Any]:
    return {
        "line_item_id": str(line_item.line_item_id),
        "invoice_id": str(line_item.invoice_id),
        "description": line_item.description,
        "quantity": line_item.quantity,
        "unit_price": line_item.unit_price,
        "total_price": line_item.total_price,
        "tax_rate": line_item.tax_rate,
        "tax_amount": line_item.tax_amount,
        "discount": line_item.discount,
        "product_sku": line_item.product_sku,
        "notes": line_item.notes,
        "attributes": {a.name: a.value for a in line_item.attributes},
    }


def serialize_invoice(invoice: Invoice, detail: bool = False) -> Dict[str, Any]:
    data = {
        "invoice_id": str(invoice.invoice_id),
        "invoice_number": invoice.invoice_number,
        "title": invoice.title,
        "vendor_name": invoice.vendor.name if invoice.vendor else invoice.vendor_name,
        "vendor_id": str(invoice.vendor_id) if invoice.vendor_id else None,
        "category": serialize_category(invoice.category) if invoice.category else None,
        "issue_date": invoice.issue_date.isoformat() if invoice.issue_date else None,
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
        "amount": invoice.amount,
        "currency": invoice.currency,
        "status": invoice.status,
        "invoice_type": invoice.invoice_type,
        "tags": invoice.tags or [],
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }
    if detail:
        data.update({
            "notes": invoice.notes,
            "language_code": invoice.language_code,
            "file_url": get_presigned_url(invoice.original_file_url) if invoice.original_file_url else None,
            "extracted_data": invoice.extracted_data or {},
            "line_items": [serialize_line_item(li) for li in invoice.line_items],
        })
    return data


def serialize_inventory_item(item: InventoryItem) -> Dict[str, Any]:
    return {
        "inventory_id": str(item.inventory_id),
        "product_name": item.product_name,
        "description": item.description,
        "sku": item.sku,
        "current_quantity": item.current_quantity,
        "unit_of_measure": item.unit_of_measure,
        "category": item.category,
        "attributes": {a.name: a.value for a in item.attributes},
        "last_updated": item.last_updated.isoformat() if item.last_updated else None,
    }


def serialize_history(entry: InventoryHistory) -> Dict[str, Any]:
    return {
        "history_id": str(entry.history_id),
        "previous_quantity": entry.previous_quantity,
        "new_quantity": entry.new_quantity,
        "change_reason": entry.change_reason,
        "invoice_id": str(entry.invoice_id) if entry.invoice_id else None,
        "notes": entry.notes,
        "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
    }


def serialize_ai_settings(ai_settings: Optional[AISettings], default_threshold: float) -> Dict[str, Any]:
    if ai_settings is None:
        return {
            "custom_instructions": "",
            "confidence_threshold": default_threshold,
            "preferred_categories": [],
            "sample_invoice_urls": [],
        }
    return {
        "custom_instructions": ai_settings.custom_instructions or "",
        "confidence_threshold": ai_settings.confidence_threshold,
        "preferred_categories": ai_settings.preferred_categories or [],
        "sample_invoice_urls": ai_settings.sample_invoice_urls or [],
    }
