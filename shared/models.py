"""SQLAlchemy models for the invoice system."""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, Float, Text, Date, TIMESTAMP, JSON, ForeignKey, Uuid
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from shared.config import Base
import uuid


INVOICE_STATUSES = ("PENDING", "PAID", "OVERDUE", "CANCELLED")
INVOICE_TYPES = ("PURCHASE", "PAYMENT")
INVENTORY_CHANGE_REASONS = ("PURCHASE", "SALE", "ADJUSTMENT", "RETURN")
FEEDBACK_TYPES = ("EXTRACTION", "CATEGORY", "VENDOR", "ATTRIBUTE")


class Organization(Base):
    __tablename__ = "organizations"

    organization_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    industry = Column(Text)
    size = Column(Text)
    invoice_volume = Column(Text)
    created_at = Column(TIMESTAMP, server_default=func.now())

    users = relationship("User", back_populates="organization")


class User(Base):
    __tablename__ = "users"

    user_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    external_id = Column(Text, nullable=False, unique=True)
    email = Column(Text)
    first_name = Column(Text)
    last_name = Column(Text)
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.organization_id", ondelete="SET NULL"))
    created_at = Column(TIMESTAMP, server_default=func.now())

    organization = relationship("Organization", back_populates="users")
    ai_settings = relationship("AISettings", back_populates="user", uselist=False, cascade="all, delete-orphan")


class AISettings(Base):
    __tablename__ = "ai_settings"

    settings_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), unique=True, nullable=False)
    custom_instructions = Column(Text)
    confidence_threshold = Column(Float, default=0.7)
    preferred_categories = Column(JSON, default=list)
    sample_invoice_urls = Column(JSON, default=list)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="ai_settings")


class Category(Base):
    __tablename__ = "categories"

    category_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text)
    color = Column(Text)
    icon = Column(Text)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"))
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.organization_id", ondelete="SET NULL"))
    created_at = Column(TIMESTAMP, server_default=func.now())

    invoices = relationship("Invoice", back_populates="category")


class Vendor(Base):
    __tablename__ = "vendors"

    vendor_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    email = Column(Text)
    phone = Column(Text)
    website = Column(Text)
    address = Column(Text)
    notes = Column(Text)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"))
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.organization_id", ondelete="SET NULL"))
    created_at = Column(TIMESTAMP, server_default=func.now())

    invoices = relationship("Invoice", back_populates="vendor")


class Invoice(Base):
    __tablename__ = "invoices"

    invoice_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_number = Column(Text)
    title = Column(Text)
    vendor_name = Column(Text)
    issue_date = Column(Date)
    due_date = Column(Date)
    amount = Column(Float)
    currency = Column(Text, default="USD")
    status = Column(Text, nullable=False, default="PENDING")
    invoice_type = Column(Text, nullable=False, default="PURCHASE")
    notes = Column(Text)
    tags = Column(JSON, default=list)
    original_file_url = Column(Text)
    language_code = Column(Text)
    extracted_data = Column(JSON)
    extractor_version = Column(Text)
    category_id = Column(Uuid(as_uuid=True), ForeignKey("categories.category_id", ondelete="SET NULL"))
    vendor_id = Column(Uuid(as_uuid=True), ForeignKey("vendors.vendor_id", ondelete="SET NULL"))
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"))
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.organization_id", ondelete="SET NULL"))
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    category = relationship("Category", back_populates="invoices")
    vendor = relationship("Vendor", back_populates="invoices")
    line_items = relationship(
        "InvoiceLineItem", back_populates="invoice", cascade="all, delete-orphan"
    )


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    line_item_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.invoice_id", ondelete="CASCADE"), nullable=False)
    description = Column(Text)
    quantity = Column(Float, default=1)
    unit_price = Column(Float, default=0)
    total_price = Column(Float, default=0)
    tax_rate = Column(Float)
    tax_amount = Column(Float)
    discount = Column(Float)
    product_sku = Column(Text)
    notes = Column(Text)
    created_at = Column(TIMESTAMP, server_default=func.now())

    invoice = relationship("Invoice", back_populates="line_items")
    attributes = relationship(
        "LineItemAttribute", back_populates="line_item", cascade="all, delete-orphan"
    )


class LineItemAttribute(Base):
    __tablename__ = "line_item_attributes"

    attribute_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    line_item_id = Column(Uuid(as_uuid=True), ForeignKey("invoice_line_items.line_item_id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    value = Column(Text)

    line_item = relationship("InvoiceLineItem", back_populates="attributes")


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    inventory_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_name = Column(Text, nullable=False)
    description = Column(Text)
    sku = Column(Text)
    current_quantity = Column(Float, nullable=False, default=0)
    unit_of_measure = Column(Text)
    category = Column(Text)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"))
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.organization_id", ondelete="SET NULL"))
    last_updated = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow)
    created_at = Column(TIMESTAMP, server_default=func.now())

    attributes = relationship(
        "InventoryAttribute", back_populates="inventory_item", cascade="all, delete-orphan"
    )
    history = relationship(
        "InventoryHistory", back_populates="inventory_item", cascade="all, delete-orphan"
    )


class InventoryAttribute(Base):
    __tablename__ = "inventory_attributes"

    attribute_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    inventory_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_items.inventory_id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    value = Column(Text)

    inventory_item = relationship("InventoryItem", back_populates="attributes")


class InventoryHistory(Base):
    __tablename__ = "inventory_history"

    history_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    inventory_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_items.inventory_id", ondelete="CASCADE"), nullable=False)
    previous_quantity = Column(Float, nullable=False)
    new_quantity = Column(Float, nullable=False)
    change_reason = Column(Text, nullable=False)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.invoice_id", ondelete="SET NULL"))
    notes = Column(Text)
    timestamp = Column(TIMESTAMP, default=datetime.utcnow)

    inventory_item = relationship("InventoryItem", back_populates="history")


class AIFeedback(Base):
    __tablename__ = "ai_feedback"

    feedback_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.invoice_id", ondelete="SET NULL"))
    field = Column(Text, nullable=False)
    original_value = Column(Text)
    corrected_value = Column(Text)
    vendor_name = Column(Text)
    confidence = Column(Float)
    feedback_type = Column(Text, nullable=False)
    timestamp = Column(TIMESTAMP, default=datetime.utcnow)
