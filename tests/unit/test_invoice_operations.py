"""Unit tests for tag listing and automatic categorization."""
import uuid
from unittest.mock import patch

import pytest

from shared.models import AISettings, Invoice
from services.invoices.operations import (
    NotFoundError, auto_categorize, categorize_invoice, list_tags,
)


def add_invoice(db_session, user, **fields):
    invoice = Invoice(
        user_id=user.user_id,
        organization_id=user.organization_id,
        status=fields.pop("status", "PENDING"),
        invoice_type=fields.pop("invoice_type", "PURCHASE"),
        **fields,
    )
    db_session.add(invoice)
    db_session.commit()
    return invoice


class TestListTags:

    def test_distinct_and_sorted(self, db_session, sample_user):
        add_invoice(db_session, sample_user, tags=["q3", "urgent"])
        add_invoice(db_session, sample_user, tags=["travel", "q3"])
        add_invoice(db_session, sample_user, tags=None)

        assert list_tags(db_session, sample_user) == ["q3", "travel", "urgent"]

    def test_no_invoices(self, db_session, sample_user):
        assert list_tags(db_session, sample_user) == []


class TestCategorizeInvoice:

    def test_existing_category_named_in_text(self, db_session, sample_user, sample_category, sample_invoice):
        sample_invoice.notes = "Printer paper for the office supplies cabinet"
        db_session.commit()

        with patch("services.invoices.operations.suggest_categories") as mock_suggest:
            result = categorize_invoice(db_session, sample_user, sample_invoice)

        mock_suggest.assert_not_called()
        assert result["category"] == "Office Supplies"
        assert result["confidence"] == 0.9
        assert result["tags"] == ["staples", "printer", "paper", "office"]

    def test_existing_category_named_in_vendor(self, db_session, sample_user, sample_category):
        invoice = add_invoice(db_session, sample_user, vendor_name="Office Supplies Direct", amount=10.0)
        result = categorize_invoice(db_session, sample_user, invoice)

        assert (result["category"], result["confidence"]) == ("Office Supplies", 0.8)

    @pytest.mark.parametrize("suggestions,expected", [
        (["Office Supplies", "Stationery"], ("Office Supplies", 0.75)),
        (["Travel"], ("Travel", 0.6)),
        (["General", "Uncategorized"], ("Uncategorized", 0.3)),
    ])
    def test_suggestion_confidence(self, suggestions, expected, db_session, sample_user, sample_category,
                                   sample_invoice):
        with patch("services.invoices.operations.suggest_categories", return_value=suggestions):
            result = categorize_invoice(db_session, sample_user, sample_invoice)

        assert (result["category"], result["confidence"]) == expected

    def test_flags_duplicates(self, db_session, sample_user, sample_invoice):
        earlier = add_invoice(db_session, sample_user, vendor_name="STAPLES", amount=250.0)

        with patch("services.invoices.operations.suggest_categories", return_value=["Travel"]):
            result = categorize_invoice(db_session, sample_user, sample_invoice)

        assert result["is_duplicate"] is True
        assert result["duplicate_of"] == str(earlier.invoice_id)


class TestAutoCategorize:

    def test_applies_when_confident(self, db_session, sample_user, sample_category, sample_invoice):
        with patch("services.invoices.operations.suggest_categories", return_value=["Office Supplies"]):
            result = auto_categorize(db_session, sample_user, [sample_invoice.invoice_id],
                                     confidence_threshold=0.7, auto_approve=True)

        assert result["results"][0]["applied"] is True
        db_session.refresh(sample_invoice)
        assert sample_invoice.category_id == sample_category.category_id
        assert "staples" in sample_invoice.tags

    def test_uses_the_users_threshold(self, db_session, sample_user, sample_category, sample_invoice):
        db_session.add(AISettings(user_id=sample_user.user_id, confidence_threshold=0.8))
        db_session.commit()
        db_session.refresh(sample_user)

        with patch("services.invoices.operations.suggest_categories", return_value=["Office Supplies"]):
            result = auto_categorize(db_session, sample_user, [sample_invoice.invoice_id], auto_approve=True)

        assert result["confidence_threshold"] == 0.8
        assert result["results"][0]["changes"]["confidence"] == 0.75
        assert result["results"][0]["applied"] is False
        db_session.refresh(sample_invoice)
        assert sample_invoice.category_id is None

    def test_suggest_only_without_auto_approve(self, db_session, sample_user, sample_invoice):
        with patch("services.invoices.operations.suggest_categories", return_value=["Travel"]):
            result = auto_categorize(db_session, sample_user, [sample_invoice.invoice_id], confidence_threshold=0.1)

        assert result["results"][0]["changes"]["category"] == "Travel"
        assert result["results"][0]["applied"] is False
        db_session.refresh(sample_invoice)
        assert sample_invoice.category_id is None

    def test_paid_invoices_skipped_by_default(self, db_session, sample_user):
        paid = add_invoice(db_session, sample_user, status="PAID", vendor_name="Globex", amount=5.0)

        with pytest.raises(NotFoundError):
            auto_categorize(db_session, sample_user, [paid.invoice_id])

        with patch("services.invoices.operations.suggest_categories", return_value=["Travel"]):
            result = auto_categorize(db_session, sample_user, [paid.invoice_id], include_paid=True)
        assert len(result["results"]) == 1

    def test_requires_ids(self, db_session, sample_user):
        with pytest.raises(ValueError):
            auto_categorize(db_session, sample_user, [])

    def test_unknown_ids(self, db_session, sample_user):
        with pytest.raises(NotFoundError):
            auto_categorize(db_session, sample_user, [uuid.uuid4()])
