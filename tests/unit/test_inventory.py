"""Unit tests for inventory tracking."""
import uuid

import pytest

from shared.models import InventoryHistory, User
from services.inventory.manager import InventoryManager


@pytest.fixture
def manager(db_session, sample_user):
    return InventoryManager(db_session, sample_user)


def _history_count(db_session):
    return db_session.query(InventoryHistory).count()


class TestUpdateFromInvoice:

    def test_purchase_creates_items(self, manager, sample_invoice):
        items = manager.update_from_invoice(sample_invoice.invoice_id, "PURCHASE", [
            {"description": "A4 Paper", "quantity": 10, "attributes": {"size": "A4"}},
            {"description": "Stapler"},
        ])

        assert [i.product_name for i in items] == ["A4 Paper", "Stapler"]
        paper = manager.search_items("paper")[0]
        assert paper.current_quantity == 10
        assert {a.name: a.value for a in paper.attributes} == {"size": "A4"}
        assert manager.search_items("stapler")[0].current_quantity == 1

    def test_sale_reduces_but_never_below_zero(self, db_session, manager, sample_invoice):
        manager.update_from_invoice(sample_invoice.invoice_id, "PURCHASE", [{"description": "Toner", "quantity": 3}])
        manager.update_from_invoice(sample_invoice.invoice_id, "PAYMENT", [{"description": "Toner", "quantity": 5}])

        toner = manager.search_items("toner")[0]
        assert toner.current_quantity == 0
        history = manager.get_history(toner.inventory_id)
        assert sorted(h.change_reason for h in history) == ["PURCHASE", "SALE"]
        assert all(h.new_quantity >= 0 for h in history)

    def test_sale_of_unknown_product_is_ignored(self, db_session, manager, sample_invoice):
        items = manager.update_from_invoice(sample_invoice.invoice_id, "PAYMENT", [{"description": "Ghost", "quantity": 1}])

        assert items == []
        assert manager.list_items() == []
        assert _history_count(db_session) == 0

    def test_non_positive_quantities_skipped(self, db_session, manager, sample_invoice):
        manager.update_from_invoice(sample_invoice.invoice_id, "PURCHASE", [
            {"description": "Pens", "quantity": 0},
            {"description": "Pencils", "quantity": -2},
            {"description": "", "quantity": 4},
        ])
        assert manager.list_items() == []

    def test_quantities_sent_as_text(self, db_session, manager, sample_invoice):
        items = manager.update_from_invoice(sample_invoice.invoice_id, "PURCHASE", [
            {"description": "Folders", "quantity": "3"},
            {"description": "Binders", "quantity": "a few"},
            {"description": "Labels", "quantity": ""},
        ])

        assert [i.product_name for i in items] == ["Folders", "Labels"]
        assert manager.search_items("folders")[0].current_quantity == 3
        assert manager.search_items("labels")[0].current_quantity == 1

    def test_repeated_product_in_one_invoice(self, db_session, manager, sample_invoice):
        manager.update_from_invoice(sample_invoice.invoice_id, "PURCHASE", [
            {"description": "Folder", "quantity": 2},
            {"description": "Folder", "quantity": 3},
        ])
        items = manager.list_items()

        assert len(items) == 1
        assert items[0].current_quantity == 5
        assert _history_count(db_session) == 2

    def test_history_count_matches_operations(self, db_session, manager, sample_invoice):
        operations = [
            ("PURCHASE", 4), ("PAYMENT", 1), ("PURCHASE", 2), ("PAYMENT", 10), ("PAYMENT", 1),
        ]
        for invoice_type, quantity in operations:
            manager.update_from_invoice(
                sample_invoice.invoice_id, invoice_type, [{"description": "Widget", "quantity": quantity}]
            )
            assert manager.list_items()[0].current_quantity >= 0

        assert _history_count(db_session) == len(operations)
        assert manager.list_items()[0].current_quantity == 0


class TestManualItems:

    def test_create_records_initial_history(self, manager):
        item = manager.create_item({"product_name": "Chair", "current_quantity": 4, "category": "Furniture"})
        history = manager.get_history(item.inventory_id)

        assert len(history) == 1
        assert history[0].change_reason == "ADJUSTMENT"
        assert history[0].notes == "Initial inventory creation"
        assert history[0].new_quantity == 4

    def test_update_quantity_records_adjustment(self, manager):
        item = manager.create_item({"product_name": "Desk", "current_quantity": 2})
        manager.update_item(item.inventory_id, {"current_quantity": 5, "attributes": {"color": "oak"}})

        updated = manager.get_item(item.inventory_id)
        assert updated.current_quantity == 5
        assert {a.name: a.value for a in updated.attributes} == {"color": "oak"}
        assert len(manager.get_history(item.inventory_id)) == 2

    def test_update_without_quantity_change_keeps_history(self, manager):
        item = manager.create_item({"product_name": "Lamp", "current_quantity": 1})
        manager.update_item(item.inventory_id, {"current_quantity": 1, "description": "Desk lamp"})

        assert len(manager.get_history(item.inventory_id)) == 1
        assert manager.get_item(item.inventory_id).description == "Desk lamp"

    def test_update_and_delete_missing(self, manager):
        assert manager.update_item(uuid.uuid4(), {"current_quantity": 1}) is None
        assert manager.delete_item(uuid.uuid4()) is False

    def test_delete(self, manager):
        item = manager.create_item({"product_name": "Shelf"})
        assert manager.delete_item(item.inventory_id) is True
        assert manager.get_item(item.inventory_id) is None

    def test_search_filters(self, manager):
        manager.create_item({"product_name": "Red Pen", "current_quantity": 50, "category": "Stationery"})
        manager.create_item({"product_name": "Blue Pen", "current_quantity": 5, "category": "Stationery"})
        manager.create_item({"product_name": "Monitor", "current_quantity": 3, "category": "Hardware"})

        assert [i.product_name for i in manager.search_items(query="pen")] == ["Blue Pen", "Red Pen"]
        assert [i.product_name for i in manager.search_items(category="Hardware")] == ["Monitor"]
        assert [i.product_name for i in manager.search_items(min_quantity=10)] == ["Red Pen"]
        assert [i.product_name for i in manager.search_items(max_quantity=4)] == ["Monitor"]

    def test_items_are_scoped_to_user(self, db_session, manager, sample_organization):
        other = User(external_id="user_other", organization_id=sample_organization.organization_id)
        db_session.add(other)
        db_session.commit()

        manager.create_item({"product_name": "Private"})
        assert InventoryManager(db_session, other).list_items() == []
