"""Integration tests for the API routes."""
import uuid
from datetime import date, timedelta
from unittest.mock import patch

import pytest

from shared.models import Invoice, InventoryItem


@pytest.fixture
def invoices(db_session, sample_user, sample_category):
    today = date.today()
    rows = [
        Invoice(invoice_number="INV-1", vendor_name="Staples", amount=120.0, status="PENDING",
                invoice_type="PURCHASE", issue_date=today - timedelta(days=2), due_date=today + timedelta(days=3),
                category_id=sample_category.category_id, tags=["q3"]),
        Invoice(invoice_number="INV-2", vendor_name="Globex", amount=900.0, status="PAID",
                invoice_type="PAYMENT", issue_date=today - timedelta(days=5)),
        Invoice(invoice_number="INV-3", vendor_name="Initech", amount=45.5, status="OVERDUE",
                invoice_type="PURCHASE", issue_date=today - timedelta(days=40), due_date=today - timedelta(days=10)),
    ]
    for row in rows:
        row.user_id = sample_user.user_id
        row.organization_id = sample_user.organization_id
        db_session.add(row)
    db_session.commit()
    return rows


class TestAuth:

    def test_health_is_open(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_missing_api_key(self, client):
        assert client.get("/invoices", headers={"X-User-Id": "user_123"}).status_code in (401, 403)

    def test_wrong_api_key(self, client):
        response = client.get("/invoices", headers={"Authorization": "Bearer nope", "X-User-Id": "user_123"})
        assert response.status_code == 401

    def test_missing_user_identity(self, client):
        response = client.get("/invoices", headers={"Authorization": "Bearer dev-api-key"})
        assert response.status_code == 401

    def test_user_created_on_first_request(self, client):
        headers = {"Authorization": "Bearer dev-api-key", "X-User-Id": "new_user", "X-User-Email": "n@example.com"}
        profile = client.get("/user/me", headers=headers).json()

        assert profile["email"] == "n@example.com"
        assert profile["onboarded"] is False


class TestInvoices:

    def test_list_and_filters(self, client, auth_headers, invoices, sample_category):
        body = client.get("/invoices", headers=auth_headers).json()
        assert body["total"] == 3

        assert client.get("/invoices?status=PAID", headers=auth_headers).json()["total"] == 1
        assert client.get("/invoices?invoice_type=PURCHASE", headers=auth_headers).json()["total"] == 2
        assert client.get(f"/invoices?category_id={sample_category.category_id}",
                          headers=auth_headers).json()["total"] == 1
        assert client.get("/invoices?tag=q3", headers=auth_headers).json()["total"] == 1
        assert client.get("/invoices?search=glob", headers=auth_headers).json()["total"] == 1
        from_date = (date.today() - timedelta(days=7)).isoformat()
        assert client.get(f"/invoices?from_date={from_date}", headers=auth_headers).json()["total"] == 2

    def test_pagination(self, client, auth_headers, invoices):
        body = client.get("/invoices?page=2&page_size=2", headers=auth_headers).json()
        assert body["total"] == 3
        assert len(body["invoices"]) == 1

    def test_other_users_cannot_see_invoice(self, client, invoices):
        headers = {"Authorization": "Bearer dev-api-key", "X-User-Id": "someone_else"}
        assert client.get(f"/invoices/{invoices[0].invoice_id}", headers=headers).status_code == 404

    def test_update(self, client, auth_headers, invoices):
        response = client.put(
            f"/invoices/{invoices[0].invoice_id}",
            json={"amount": 130.0, "status": "PAID", "notes": "Paid by card"},
            headers=auth_headers,
        )
        body = response.json()
        assert body["amount"] == 130.0
        assert body["status"] == "PAID"
        assert body["notes"] == "Paid by card"

    def test_update_rejects_bad_values(self, client, auth_headers, invoices):
        url = f"/invoices/{invoices[0].invoice_id}"
        assert client.put(url, json={"amount": -1}, headers=auth_headers).status_code == 400
        assert client.put(url, json={"status": "LOST"}, headers=auth_headers).status_code == 422

    @pytest.mark.parametrize("field", ["status", "invoice_type"])
    def test_update_rejects_null_required_fields(self, client, auth_headers, invoices, db_session, field):
        response = client.put(f"/invoices/{invoices[0].invoice_id}", json={field: None}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == f"{field} cannot be null"
        db_session.refresh(invoices[0])
        assert invoices[0].status == "PENDING"
        assert invoices[0].invoice_type == "PURCHASE"

    def test_tags(self, client, auth_headers, invoices, db_session):
        invoices[1].tags = ["urgent", "q3"]
        db_session.commit()

        assert client.get("/invoices/tags", headers=auth_headers).json() == ["q3", "urgent"]

    def test_auto_categorize(self, client, auth_headers, invoices, db_session):
        with patch("services.invoices.operations.suggest_categories", return_value=["Travel"]):
            response = client.post("/invoices/auto-categorize", json={
                "invoice_ids": [str(invoices[2].invoice_id)],
                "confidence_threshold": 0.5,
                "auto_approve": True,
            }, headers=auth_headers)

        body = response.json()
        assert response.status_code == 200
        assert body["results"][0]["applied"] is True
        db_session.refresh(invoices[2])
        assert invoices[2].category.name == "Travel"

    def test_auto_categorize_only_paid(self, client, auth_headers, invoices):
        response = client.post("/invoices/auto-categorize", json={
            "invoice_ids": [str(invoices[1].invoice_id)],
        }, headers=auth_headers)
        assert response.status_code == 404

    def test_delete(self, client, auth_headers, invoices, db_session):
        response = client.delete(f"/invoices/{invoices[2].invoice_id}", headers=auth_headers)
        assert response.json()["success"] is True
        assert db_session.query(Invoice).count() == 2
        assert client.delete(f"/invoices/{uuid.uuid4()}", headers=auth_headers).status_code == 404

    def test_batch_operations(self, client, auth_headers, invoices, db_session):
        missing = str(uuid.uuid4())
        response = client.post("/invoices/batch", json={
            "operation": "archive",
            "invoice_ids": [str(invoices[0].invoice_id), missing],
        }, headers=auth_headers)
        body = response.json()

        assert body["success"] is False
        assert body["processed_ids"] == [str(invoices[0].invoice_id)]
        assert body["failed_ids"] == [missing]
        db_session.refresh(invoices[0])
        assert invoices[0].status == "CANCELLED"

    def test_batch_tag_merges(self, client, auth_headers, invoices, db_session):
        client.post("/invoices/batch", json={
            "operation": "tag", "invoice_ids": [str(invoices[0].invoice_id)], "tags": ["urgent", "q3"],
        }, headers=auth_headers)
        db_session.refresh(invoices[0])
        assert invoices[0].tags == ["q3", "urgent"]

    def test_batch_tag_requires_tags(self, client, auth_headers, invoices):
        response = client.post("/invoices/batch", json={
            "operation": "tag", "invoice_ids": [str(invoices[0].invoice_id)],
        }, headers=auth_headers)
        assert response.status_code == 400

    def test_assign_vendor(self, client, auth_headers, invoices):
        response = client.post(f"/invoices/{invoices[1].invoice_id}/vendor", json={
            "vendor_name": "Globex Corporation", "is_new_vendor": True, "email": "ap@globex.example",
        }, headers=auth_headers)
        body = response.json()

        assert body["vendor_name"] == "Globex Corporation"
        vendors = client.get("/vendors", headers=auth_headers).json()
        assert vendors[0]["email"] == "ap@globex.example"

    def test_reprocess(self, client, auth_headers, invoices, db_session):
        invoices[0].original_file_url = "s3://invoice-uploads/invoices/x.pdf"
        db_session.commit()
        result = {"extracted_data": {"amount": 99.0}, "suggested_categories": [], "engine": "local",
                  "confidence": 0.6}

        with patch("services.extractor.worker.process_invoice_with_ocr", return_value=result):
            response = client.post(f"/invoices/{invoices[0].invoice_id}/process", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["invoice"]["amount"] == 99.0

    def test_reprocess_without_file(self, client, auth_headers, invoices):
        response = client.post(f"/invoices/{invoices[1].invoice_id}/process", headers=auth_headers)
        assert response.status_code == 400


class TestLineItems:

    def test_crud(self, client, auth_headers, invoices):
        invoice_id = invoices[0].invoice_id
        created = client.post(f"/invoices/{invoice_id}/line-items", json={
            "description": "Paper", "quantity": 3, "unit_price": 4.0, "attributes": {"size": "A4"},
        }, headers=auth_headers).json()
        assert created["total_price"] == 12.0
        assert created["attributes"] == {"size": "A4"}

        updated = client.put(f"/line-items/{created['line_item_id']}", json={
            "quantity": 5, "attributes": {"color": "white"},
        }, headers=auth_headers).json()
        assert updated["total_price"] == 20.0
        assert updated["attributes"] == {"color": "white"}

        listed = client.get(f"/invoices/{invoice_id}/line-items", headers=auth_headers).json()
        assert len(listed) == 1

        assert client.delete(f"/line-items/{created['line_item_id']}", headers=auth_headers).status_code == 200
        assert client.get(f"/invoices/{invoice_id}/line-items", headers=auth_headers).json() == []

    def test_validation(self, client, auth_headers, invoices):
        url = f"/invoices/{invoices[0].invoice_id}/line-items"
        assert client.post(url, json={"description": "Bad", "quantity": 0}, headers=auth_headers).status_code == 400
        assert client.post(url, json={"description": "Bad", "unit_price": -1}, headers=auth_headers).status_code == 400

    def test_missing_line_item(self, client, auth_headers):
        assert client.delete(f"/line-items/{uuid.uuid4()}", headers=auth_headers).status_code == 404

    def test_apply_to_inventory(self, client, auth_headers, invoices, db_session):
        invoice_id = invoices[0].invoice_id
        client.post(f"/invoices/{invoice_id}/line-items", json={"description": "Toner", "quantity": 2},
                    headers=auth_headers)

        response = client.post(f"/invoices/{invoice_id}/inventory", json={}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["updated"][0]["current_quantity"] == 2
        assert db_session.query(InventoryItem).count() == 1

    def test_apply_given_line_items_with_text_quantity(self, client, auth_headers, invoices):
        response = client.post(f"/invoices/{invoices[0].invoice_id}/inventory", json={
            "line_items": [{"description": "Desk", "quantity": "3"}, {"description": "Lamp", "quantity": "n/a"}],
        }, headers=auth_headers)

        assert response.status_code == 200
        updated = response.json()["updated"]
        assert [(i["product_name"], i["current_quantity"]) for i in updated] == [("Desk", 3.0)]


class TestCatalog:

    def test_category_crud(self, client, auth_headers, sample_user):
        created = client.post("/categories", json={"name": "Travel", "color": "#ff0000"}, headers=auth_headers)
        assert created.status_code == 200
        category_id = created.json()["category_id"]

        duplicate = client.post("/categories", json={"name": "travel"}, headers=auth_headers)
        assert duplicate.status_code == 400

        client.post("/categories", json={"name": "Accounting"}, headers=auth_headers)
        names = [c["name"] for c in client.get("/categories", headers=auth_headers).json()]
        assert names == ["Accounting", "Travel"]

        renamed = client.put(f"/categories/{category_id}", json={"name": "Trips"}, headers=auth_headers).json()
        assert renamed["name"] == "Trips"
        assert client.delete(f"/categories/{category_id}", headers=auth_headers).status_code == 200
        assert client.delete(f"/categories/{category_id}", headers=auth_headers).status_code == 404

    def test_vendor_crud(self, client, auth_headers, sample_user):
        created = client.post("/vendors", json={"name": "Initech", "phone": "555-0100"}, headers=auth_headers).json()
        vendor_id = created["vendor_id"]

        assert client.get(f"/vendors/{vendor_id}", headers=auth_headers).json()["phone"] == "555-0100"
        updated = client.put(f"/vendors/{vendor_id}", json={"website": "https://initech.example"},
                             headers=auth_headers).json()
        assert updated["website"] == "https://initech.example"
        assert client.post("/vendors", json={"name": "initech"}, headers=auth_headers).status_code == 400
        assert client.delete(f"/vendors/{vendor_id}", headers=auth_headers).status_code == 200

    def test_vendor_suggestions(self, client, auth_headers, sample_vendor):
        body = client.get("/vendors/suggestions?name=Stapels%20Inc", headers=auth_headers).json()
        assert body["suggestions"][0] == "Staples Inc"

    def test_category_suggestions(self, client, auth_headers, sample_user):
        client.post("/feedback", json={
            "field": "category", "original_value": "General", "corrected_value": "Printing",
            "feedback_type": "CATEGORY", "vendor_name": "Staples",
        }, headers=auth_headers)

        body = client.get("/categories/suggestions?vendor_name=Staples", headers=auth_headers).json()
        assert body["suggestions"][0] == "Printing"
        assert len(body["suggestions"]) <= 8


class TestInventory:

    def test_lifecycle(self, client, auth_headers, sample_user):
        created = client.post("/inventory", json={
            "product_name": "Chair", "current_quantity": 4, "category": "Furniture",
        }, headers=auth_headers).json()
        item_id = created["inventory_id"]

        updated = client.put(f"/inventory/{item_id}", json={"current_quantity": 2}, headers=auth_headers).json()
        assert updated["current_quantity"] == 2

        history = client.get(f"/inventory/{item_id}/history", headers=auth_headers).json()
        assert len(history) == 2
        assert {h["change_reason"] for h in history} == {"ADJUSTMENT"}

        assert len(client.get("/inventory?category=Furniture", headers=auth_headers).json()) == 1
        assert client.get("/inventory?min_quantity=3", headers=auth_headers).json() == []
        assert client.delete(f"/inventory/{item_id}", headers=auth_headers).status_code == 200
        assert client.get(f"/inventory/{item_id}", headers=auth_headers).status_code == 404

    def test_negative_quantity_rejected(self, client, auth_headers, sample_user):
        response = client.post("/inventory", json={"product_name": "X", "current_quantity": -1}, headers=auth_headers)
        assert response.status_code == 422


class TestAccounting:

    def test_reports(self, client, auth_headers, invoices):
        ledger = client.get("/accounting/general-ledger", headers=auth_headers).json()["entries"]
        assert len(ledger) == 3

        trial = client.get("/accounting/trial-balance", headers=auth_headers).json()
        assert trial["is_balanced"] is True

        for path in ("/accounting/profit-loss?period=quarter", "/accounting/balance-sheet",
                     "/accounting/cash-flow?period=60days", "/accounting/insights", "/accounting/summary"):
            assert client.get(path, headers=auth_headers).status_code == 200

    def test_cash_flow_horizon(self, client, auth_headers, invoices):
        body = client.get("/accounting/cash-flow?period=90days", headers=auth_headers).json()
        assert len(body["predictions"]) == 90

    def test_invalid_period(self, client, auth_headers, sample_user):
        assert client.get("/accounting/profit-loss?period=decade", headers=auth_headers).status_code == 422

    def test_report_failure(self, client, auth_headers, sample_user):
        with patch("services.accounting.reports.load_invoices", side_effect=RuntimeError("db down")):
            response = client.get("/accounting/balance-sheet", headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to fetch balance sheet data"


class TestUserSettings:

    def test_defaults_then_save(self, client, auth_headers, sample_user):
        defaults = client.get("/user/ai-settings", headers=auth_headers).json()
        assert defaults["confidence_threshold"] == 0.7
        assert defaults["preferred_categories"] == []

        client.post("/user/ai-settings", json={
            "custom_instructions": "Dates are DD/MM/YYYY", "confidence_threshold": 0.8,
            "preferred_categories": ["Travel"],
        }, headers=auth_headers)
        saved = client.get("/user/ai-settings", headers=auth_headers).json()
        assert saved["custom_instructions"] == "Dates are DD/MM/YYYY"
        assert saved["confidence_threshold"] == 0.8

    def test_threshold_out_of_range(self, client, auth_headers, sample_user):
        response = client.post("/user/ai-settings", json={"confidence_threshold": 1.5}, headers=auth_headers)
        assert response.status_code == 422

    def test_onboarding(self, client, auth_headers):
        response = client.post("/user/onboarding", json={
            "organization": {"name": "Globex Ltd", "industry": "Retail"},
            "ai_settings": {"preferred_categories": ["Inventory"]},
        }, headers=auth_headers)
        profile = response.json()

        assert profile["onboarded"] is True
        assert profile["organization"]["name"] == "Globex Ltd"
        settings = client.get("/user/ai-settings", headers=auth_headers).json()
        assert settings["preferred_categories"] == ["Inventory"]

    def test_onboarding_requires_name(self, client, auth_headers):
        response = client.post("/user/onboarding", json={"organization": {"name": "  "}}, headers=auth_headers)
        assert response.status_code == 400

    def test_feedback_stats(self, client, auth_headers, sample_user):
        client.post("/feedback", json={
            "field": "vendor", "original_value": "Stapls", "corrected_value": "Staples Inc",
            "feedback_type": "VENDOR",
        }, headers=auth_headers)
        stats = client.get("/feedback/stats", headers=auth_headers).json()

        assert stats["total_feedback"] == 1
        assert stats["feedback_by_type"]["VENDOR"] == 1


class TestExport:

    @patch("services.exporter.export.get_presigned_url", return_value="http://localhost:9000/signed")
    @patch("services.exporter.export.upload_bytes", return_value="s3://invoice-uploads/exports/f.csv")
    def test_csv_export(self, mock_upload, mock_presign, client, auth_headers, invoices):
        response = client.post("/invoices/export", json={
            "format": "csv", "include_all": True, "folder_name": "q3",
        }, headers=auth_headers)
        body = response.json()

        assert body["count"] == 3
        assert body["file_url"] == "http://localhost:9000/signed"
        data, key, content_type = mock_upload.call_args.args
        assert content_type == "text/csv"
        assert "/q3/" in key
        assert data.decode("utf-8").splitlines()[0].startswith("Invoice Number,Vendor")

    def test_export_requires_selection(self, client, auth_headers, invoices):
        response = client.post("/invoices/export", json={"format": "csv"}, headers=auth_headers)
        assert response.status_code == 400
