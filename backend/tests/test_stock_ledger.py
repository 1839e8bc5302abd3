# Overview: Pytest coverage for the stock ledger and the inventory log.

"""
Stock Ledger Tests

Covers:
- adjust_stock creates the entry on first movement and never goes negative
- every movement appends exactly one inventory log row in the same transaction
- set_stock_quantity goes through the ledger
- low stock and branch valuation queries
- append-only guard on the log
"""

import pytest

from branchpos.errors import (
    InsufficientStockError,
    InvalidStateError,
    ReferenceNotFoundError,
    ValidationError,
)
from branchpos.models import InventoryLogEntry, StockEntry
from branchpos.models.inventory import CHANGE_ADJUSTMENT, CHANGE_PURCHASE
from branchpos.references import MANUAL, ManualRef, PurchaseRef, SaleRef, from_columns, to_columns
from branchpos.services import inventory_log_service, stock_service


class TestAdjustStock:

    def test_first_movement_creates_entry(self, db_session, branch, product):
        entry = stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=7)

        assert entry.quantity == 7
        assert stock_service.get_stock_quantity(product.id, branch.id) == 7
        assert db_session.query(StockEntry).count() == 1

    def test_missing_entry_reads_as_zero(self, db_session, branch, product):
        assert stock_service.get_stock_quantity(product.id, branch.id) == 0
        assert stock_service.get_stock_entry(product.id, branch.id) is None

    def test_decrement_on_missing_entry_fails(self, db_session, branch, product):
        with pytest.raises(InsufficientStockError) as exc:
            stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=-1)

        assert exc.value.available == 0
        assert exc.value.requested == 1
        assert db_session.query(StockEntry).count() == 0
        assert db_session.query(InventoryLogEntry).count() == 0

    def test_decrement_below_zero_leaves_quantity_untouched(self, db_session, branch, product):
        stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=3)

        with pytest.raises(InsufficientStockError) as exc:
            stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=-4)

        assert exc.value.details["available"] == 3
        assert exc.value.status_code == 409
        assert stock_service.get_stock_quantity(product.id, branch.id) == 3
        assert db_session.query(InventoryLogEntry).count() == 1

    def test_decrement_to_exactly_zero(self, db_session, branch, product):
        stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=3)
        entry = stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=-3)
        assert entry.quantity == 0

    def test_branches_are_independent(self, db_session, branch, other_branch, product):
        stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=5)

        with pytest.raises(InsufficientStockError):
            stock_service.adjust_stock(product_id=product.id, branch_id=other_branch.id, delta=-1)

        assert stock_service.get_stock_quantity(product.id, branch.id) == 5
        assert stock_service.get_stock_quantity(product.id, other_branch.id) == 0

    @pytest.mark.parametrize("delta", [1.5, "3", True])
    def test_rejects_bad_delta(self, db_session, branch, product, delta):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=delta)

    def test_zero_delta_changes_nothing(self, db_session, branch, product):
        stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=4)

        entry = stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=0)

        assert entry.quantity == 4
        assert db_session.query(InventoryLogEntry).count() == 1

    def test_rejects_unknown_change_type(self, db_session, branch, product):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(
                product_id=product.id, branch_id=branch.id, delta=1, change_type="transfer",
            )

    def test_unknown_product_or_branch(self, db_session, branch, product):
        with pytest.raises(ReferenceNotFoundError) as exc:
            stock_service.adjust_stock(product_id=9999, branch_id=branch.id, delta=1)
        assert exc.value.entity == "product"

        with pytest.raises(ReferenceNotFoundError) as exc:
            stock_service.adjust_stock(product_id=product.id, branch_id=9999, delta=1)
        assert exc.value.entity == "branch"

    def test_unknown_creator(self, db_session, branch, product):
        with pytest.raises(ReferenceNotFoundError) as exc:
            stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=1, created_by_id=42)
        assert exc.value.entity == "user"


class TestInventoryLog:

    def test_each_movement_logs_previous_and_new_stock(self, db_session, branch, product, user):
        stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=10, created_by_id=user.id)
        stock_service.adjust_stock(
            product_id=product.id, branch_id=branch.id, delta=-4, created_by_id=user.id, note="Damaged",
        )

        rows = inventory_log_service.list_inventory_logs(product_id=product.id, branch_id=branch.id)
        assert [(r.previous_stock, r.quantity_change, r.new_stock) for r in rows] == [(10, -4, 6), (0, 10, 10)]
        assert rows[0].note == "Damaged"
        assert rows[0].change_type == CHANGE_ADJUSTMENT
        assert rows[0].created_by_id == user.id
        assert rows[0].reference == MANUAL

    def test_reference_is_stored_as_tagged_pair(self, db_session, branch, product):
        stock_service.adjust_stock(
            product_id=product.id,
            branch_id=branch.id,
            delta=2,
            change_type=CHANGE_PURCHASE,
            reference=PurchaseRef(12),
        )

        row = db_session.query(InventoryLogEntry).one()
        assert (row.reference_type, row.reference_id) == ("purchase", 12)
        assert row.reference == PurchaseRef(12)

        found = inventory_log_service.list_inventory_logs(reference=PurchaseRef(12))
        assert [r.id for r in found] == [row.id]
        assert inventory_log_service.list_inventory_logs(reference=SaleRef(12)) == []

    def test_log_rows_are_append_only(self, db_session, branch, product):
        stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=2)
        row = db_session.query(InventoryLogEntry).one()

        row.note = "rewritten"
        with pytest.raises(InvalidStateError):
            db_session.flush()
        db_session.rollback()

        row = db_session.query(InventoryLogEntry).one()
        db_session.delete(row)
        with pytest.raises(InvalidStateError):
            db_session.flush()
        db_session.rollback()

    def test_shrinking_movements(self, db_session, branch, product):
        stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=5)
        stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=-2)

        rows = inventory_log_service.find_shrinking_movements(branch_id=branch.id)
        assert [r.quantity_change for r in rows] == [-2]


class TestReferences:

    def test_to_columns_variants(self):
        assert to_columns(PurchaseRef(1)) == ("purchase", 1)
        assert to_columns(SaleRef(2)) == ("sale", 2)
        assert to_columns(MANUAL) == ("manual", None)
        assert from_columns("manual", None) == ManualRef()

    def test_rejects_unknown(self):
        with pytest.raises(TypeError):
            to_columns("sale:1")
        with pytest.raises(ValueError):
            from_columns("transfer", 1)
        with pytest.raises(ValueError):
            from_columns("sale", None)


class TestSetStockQuantity:

    def test_correction_is_logged_as_adjustment(self, db_session, branch, product):
        stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=10)

        entry = stock_service.set_stock_quantity(product_id=product.id, branch_id=branch.id, quantity=4)

        assert entry.quantity == 4
        last = inventory_log_service.list_inventory_logs(product_id=product.id, limit=1)[0]
        assert (last.previous_stock, last.quantity_change, last.new_stock) == (10, -6, 4)
        assert last.note == "Stock count correction"

    def test_same_quantity_writes_no_log(self, db_session, branch, product):
        stock_service.adjust_stock(product_id=product.id, branch_id=branch.id, delta=3)
        stock_service.set_stock_quantity(product_id=product.id, branch_id=branch.id, quantity=3)
        assert db_session.query(InventoryLogEntry).count() == 1

    def test_negative_quantity_rejected(self, db_session, branch, product):
        with pytest.raises(ValidationError):
            stock_service.set_stock_quantity(product_id=product.id, branch_id=branch.id, quantity=-1)


class TestStockQueries:

    def test_low_stock_compares_against_alert_quantity(self, db_session, branch, products):
        rice, oil, tea = products
        stock_service.adjust_stock(product_id=rice.id, branch_id=branch.id, delta=3)   # alert 3
        stock_service.adjust_stock(product_id=oil.id, branch_id=branch.id, delta=1)    # alert 0
        stock_service.adjust_stock(product_id=tea.id, branch_id=branch.id, delta=2)
        stock_service.adjust_stock(product_id=tea.id, branch_id=branch.id, delta=-2)   # 0 <= 0

        low = stock_service.find_low_stock(branch.id)
        assert [e.product_id for e in low] == [tea.id, rice.id]

    def test_branch_stock_value(self, db_session, branch, products):
        rice, oil, _ = products
        stock_service.adjust_stock(product_id=rice.id, branch_id=branch.id, delta=2)
        stock_service.adjust_stock(product_id=oil.id, branch_id=branch.id, delta=5)

        value = stock_service.get_branch_stock_value(branch.id)
        assert value == {
            "branch_id": branch.id,
            "total_items": 2,
            "total_quantity": 7,
            "total_value_cents": 2 * 1500 + 5 * 800,
        }

    def test_list_branch_stock_unknown_branch(self, db_session):
        with pytest.raises(ReferenceNotFoundError):
            stock_service.list_branch_stock(12345)
