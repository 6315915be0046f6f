"""Pytest configuration and fixtures."""
import os
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shared.config import Base, get_db
from shared.models import Organization, User, Category, Vendor, Invoice

# In-memory SQLite unless a real database is provided
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")

API_HEADERS = {"Authorization": "Bearer dev-api-key", "X-User-Id": "user_123"}


@pytest.fixture(scope="function")
def db_engine():
    """Create test database engine with a fresh schema."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create test database session."""
    Session = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def sample_organization(db_session):
    """Create a sample organization."""
    organization = Organization(name="Acme Corp", industry="Manufacturing", size="11-50")
    db_session.add(organization)
    db_session.commit()
    return organization


@pytest.fixture
def sample_user(db_session, sample_organization):
    """Create a sample user belonging to the sample organization."""
    user = User(
        external_id="user_123",
        email="owner@acme.example",
        first_name="Sam",
        last_name="Doe",
        organization_id=sample_organization.organization_id,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def sample_category(db_session, sample_user):
    """Create a sample category."""
    category = Category(
        name="Office Supplies",
        color="#3366ff",
        user_id=sample_user.user_id,
        organization_id=sample_user.organization_id,
    )
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture
def sample_vendor(db_session, sample_user):
    """Create a sample vendor."""
    vendor = Vendor(
        name="Staples Inc",
        email="billing@staples.example",
        user_id=sample_user.user_id,
        organization_id=sample_user.organization_id,
    )
    db_session.add(vendor)
    db_session.commit()
    return vendor


@pytest.fixture
def sample_invoice(db_session, sample_user):
    """Create a sample pending purchase invoice."""
    invoice = Invoice(
        invoice_number="INV-2025-123",
        title="invoice.pdf",
        vendor_name="Staples",
        issue_date=date(2025, 10, 21),
        due_date=date(2025, 11, 20),
        amount=250.0,
        currency="USD",
        status="PENDING",
        invoice_type="PURCHASE",
        original_file_url="s3://invoice-uploads/invoices/abc-invoice.pdf",
        extracted_data={"invoiceType": "PURCHASE", "invoiceTypeConfidence": 0.85,
                        "suggestedCategories": ["Office Supplies"]},
        user_id=sample_user.user_id,
        organization_id=sample_user.organization_id,
    )
    db_session.add(invoice)
    db_session.commit()
    db_session.refresh(invoice)
    return invoice


@pytest.fixture
def client(db_session):
    """API test client bound to the test session."""
    from services.api.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return dict(API_HEADERS)
