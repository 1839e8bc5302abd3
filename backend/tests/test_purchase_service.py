# Overview: Pytest coverage for purchase receipts and their stock effects.

import pytest

from branchpos.errors import (
    DuplicateInvoiceError,
    InsufficientStockError,
    InvalidStateError,
    ReferenceNotFoundError,
    ValidationError,
)
from branchpos.models import InventoryLogEntry, Purchase, PurchaseItem
from branchpos.models.inventory import CHANGE_ADJUSTMENT, CHANGE_PURCHASE
from branchpos.references import PurchaseRef
from branchpos.services import inventory_log_service, purchase_service, sales_service, stock_service


def _create(supplier, branch, products, invoice_no="PUR-001", **kwargs):
    rice, oil, _ = products
    return purchase_service.create_purchase(
        supplier_id=supplier.id,
        branch_id=branch.id,
        invoice_no=invoice_no,
        items=[
            {"product_id": rice.id, "quantity": 10, "unit_cost_cents": 1500},
            {"product_id": oil.id, "quantity": 4, "unit_cost_cents": 800},
        ],
        **kwargs,
    )


class TestDerivePurchaseTotals:

    def test_grand_total(self):
        totals = purchase_service.derive_purchase_totals([1000, 250], discount_cents=100, tax_cents=50)
        assert totals.total_amount_cents == 1250
        assert totals.grand_total_cents == 1200

    def test_discount_above_total(self):
        with pytest.raises(ValidationError):
            purchase_service.derive_purchase_totals([100], discount_cents=101, tax_cents=0)


class TestCreatePurchase:

    def test_books_every_line_into_stock(self, db_session, supplier, branch, products, user):
        purchase = _create(supplier, branch, products, discount_cents=500, tax_cents=200, created_by_id=user.id)

        rice, oil, _ = products
        assert purchase.total_amount_cents == 10 * 1500 + 4 * 800
        assert purchase.grand_total_cents == purchase.total_amount_cents - 500 + 200
        assert purchase.status == "pending"
        assert purchase.payment_status == "unpaid"
        assert stock_service.get_stock_quantity(rice.id, branch.id) == 10
        assert stock_service.get_stock_quantity(oil.id, branch.id) == 4

        logs = inventory_log_service.list_inventory_logs(reference=PurchaseRef(purchase.id))
        assert len(logs) == 2
        assert {log.change_type for log in logs} == {CHANGE_PURCHASE}
        assert {log.created_by_id for log in logs} == {user.id}

    def test_adds_to_existing_stock(self, db_session, supplier, branch, products):
        _create(supplier, branch, products, invoice_no="PUR-001")
        _create(supplier, branch, products, invoice_no="PUR-002")
        assert stock_service.get_stock_quantity(products[0].id, branch.id) == 20

    def test_duplicate_invoice(self, db_session, supplier, branch, products):
        _create(supplier, branch, products)

        with pytest.raises(DuplicateInvoiceError) as exc:
            _create(supplier, branch, products)

        assert exc.value.details["document"] == "purchase"
        assert db_session.query(Purchase).count() == 1
        assert stock_service.get_stock_quantity(products[0].id, branch.id) == 10

    def test_unknown_product_writes_nothing(self, db_session, supplier, branch, products):
        with pytest.raises(ReferenceNotFoundError):
            purchase_service.create_purchase(
                supplier_id=supplier.id,
                branch_id=branch.id,
                invoice_no="PUR-404",
                items=[
                    {"product_id": products[0].id, "quantity": 1, "unit_cost_cents": 100},
                    {"product_id": 9999, "quantity": 1, "unit_cost_cents": 100},
                ],
            )

        assert db_session.query(Purchase).count() == 0
        assert db_session.query(InventoryLogEntry).count() == 0

    def test_unknown_supplier(self, db_session, branch, products):
        with pytest.raises(ReferenceNotFoundError) as exc:
            purchase_service.create_purchase(
                supplier_id=777,
                branch_id=branch.id,
                invoice_no="PUR-1",
                items=[{"product_id": products[0].id, "quantity": 1, "unit_cost_cents": 1}],
            )
        assert exc.value.entity == "supplier"

    @pytest.mark.parametrize("items", [
        [],
        [{"product_id": 1, "quantity": 0, "unit_cost_cents": 100}],
        [{"product_id": 1, "quantity": 1, "unit_cost_cents": -1}],
        [{"product_id": 1, "quantity": 1}],
        "not-a-list",
    ])
    def test_rejects_bad_items(self, db_session, supplier, branch, items):
        with pytest.raises(ValidationError):
            purchase_service.create_purchase(
                supplier_id=supplier.id, branch_id=branch.id, invoice_no="PUR-X", items=items,
            )

    def test_rejects_discount_above_total(self, db_session, supplier, branch, products):
        with pytest.raises(ValidationError):
            _create(supplier, branch, products, discount_cents=10 ** 6)
        assert stock_service.get_stock_quantity(products[0].id, branch.id) == 0

    def test_rejects_bad_payment_status_and_date(self, db_session, supplier, branch, products):
        with pytest.raises(ValidationError):
            _create(supplier, branch, products, payment_status="owed")
        with pytest.raises(ValidationError):
            _create(supplier, branch, products, purchase_date="yesterday")

    def test_purchase_date_is_normalized(self, db_session, supplier, branch, products):
        purchase = _create(supplier, branch, products, purchase_date="2026-03-01T10:00:00+02:00")
        assert purchase.to_dict()["purchase_date"] == "2026-03-01T08:00:00Z"


class TestPurchaseItems:

    def test_add_item_books_stock_and_totals(self, db_session, supplier, branch, products):
        purchase = _create(supplier, branch, products)
        tea = products[2]

        purchase = purchase_service.add_purchase_item(
            purchase.id, product_id=tea.id, quantity=6, unit_cost_cents=400,
        )

        assert len(purchase.items) == 3
        assert purchase.total_amount_cents == 10 * 1500 + 4 * 800 + 6 * 400
        assert stock_service.get_stock_quantity(tea.id, branch.id) == 6

    def test_remove_item_reverses_stock(self, db_session, supplier, branch, products):
        purchase = _create(supplier, branch, products)
        oil_item = next(i for i in purchase.items if i.product_id == products[1].id)

        purchase = purchase_service.remove_purchase_item(purchase.id, oil_item.id)

        assert len(purchase.items) == 1
        assert purchase.total_amount_cents == 10 * 1500
        assert purchase.grand_total_cents == 10 * 1500
        assert stock_service.get_stock_quantity(products[1].id, branch.id) == 0
        assert db_session.query(PurchaseItem).count() == 1

        last = inventory_log_service.list_inventory_logs(product_id=products[1].id, limit=1)[0]
        assert last.change_type == CHANGE_ADJUSTMENT
        assert last.quantity_change == -4
        assert last.reference == PurchaseRef(purchase.id)

    def test_remove_item_fails_when_units_were_sold(self, db_session, supplier, branch, products):
        purchase = _create(supplier, branch, products)
        oil = products[1]
        sales_service.create_sale(
            branch_id=branch.id,
            invoice_no="INV-1",
            payment_method="cash",
            items=[{"product_id": oil.id, "quantity": 2, "unit_price_cents": 1000}],
        )
        oil_item = next(i for i in purchase.items if i.product_id == oil.id)

        with pytest.raises(InsufficientStockError):
            purchase_service.remove_purchase_item(purchase.id, oil_item.id)

        assert stock_service.get_stock_quantity(oil.id, branch.id) == 2
        assert len(purchase_service.get_purchase(purchase.id).items) == 2

    def test_cannot_remove_last_item(self, db_session, supplier, branch, products):
        purchase = purchase_service.create_purchase(
            supplier_id=supplier.id,
            branch_id=branch.id,
            invoice_no="PUR-ONE",
            items=[{"product_id": products[0].id, "quantity": 1, "unit_cost_cents": 100}],
        )
        with pytest.raises(InvalidStateError):
            purchase_service.remove_purchase_item(purchase.id, purchase.items[0].id)

    def test_remove_unknown_item(self, db_session, supplier, branch, products):
        purchase = _create(supplier, branch, products)
        with pytest.raises(ReferenceNotFoundError):
            purchase_service.remove_purchase_item(purchase.id, 9999)


class TestPurchaseStatus:

    def test_cancel_takes_stock_back_out(self, db_session, supplier, branch, products):
        purchase = _create(supplier, branch, products)

        purchase = purchase_service.cancel_purchase(purchase.id)

        assert purchase.status == "cancelled"
        assert stock_service.get_stock_quantity(products[0].id, branch.id) == 0
        assert stock_service.get_stock_quantity(products[1].id, branch.id) == 0

    def test_cancelled_purchase_is_terminal(self, db_session, supplier, branch, products):
        purchase = _create(supplier, branch, products)
        purchase_service.cancel_purchase(purchase.id)

        with pytest.raises(InvalidStateError):
            purchase_service.cancel_purchase(purchase.id)
        with pytest.raises(InvalidStateError):
            purchase_service.add_purchase_item(
                purchase.id, product_id=products[2].id, quantity=1, unit_cost_cents=1,
            )
        with pytest.raises(InvalidStateError):
            purchase_service.update_purchase_status(purchase.id, "received")

    def test_received_and_payment_updates(self, db_session, supplier, branch, products):
        purchase = _create(supplier, branch, products)

        purchase = purchase_service.update_purchase_status(purchase.id, "received")
        assert purchase.status == "received"

        purchase = purchase_service.update_purchase_payment_status(purchase.id, "paid", "bank_transfer")
        assert purchase.payment_status == "paid"
        assert purchase.payment_method == "bank_transfer"

        with pytest.raises(ValidationError):
            purchase_service.update_purchase_status(purchase.id, "cancelled")
        with pytest.raises(ValidationError):
            purchase_service.update_purchase_payment_status(purchase.id, "paid", "cheque")

    def test_get_purchase(self, db_session, supplier, branch, products):
        purchase = _create(supplier, branch, products)
        assert purchase_service.get_purchase(purchase.id).invoice_no == "PUR-001"
        assert purchase_service.get_purchase_by_invoice("PUR-001").id == purchase.id
        assert purchase_service.get_purchase_by_invoice("nope") is None
        with pytest.raises(ReferenceNotFoundError):
            purchase_service.get_purchase(4242)
