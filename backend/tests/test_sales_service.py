# Overview: Pytest coverage for sale creation, payment, line edits and cancellation.

"""
Sales Service Tests

Covers:
- Stock is taken at creation; a short line fails the whole sale
- Duplicate invoices never touch stock
- Purchase -> sale round trip restores the original quantity
- Money derivation: grand total, paid, due, status
- Item add/remove and cancellation restore stock net of returns
"""

import pytest

from branchpos.errors import (
    DuplicateInvoiceError,
    InsufficientStockError,
    InvalidPaymentError,
    InvalidStateError,
    ReferenceNotFoundError,
    ValidationError,
)
from branchpos.models import InventoryLogEntry, LoyaltyTransaction, Sale, SaleItem
from branchpos.models.inventory import CHANGE_ADJUSTMENT, CHANGE_SALE
from branchpos.references import SaleRef
from branchpos.services import (
    inventory_log_service,
    purchase_service,
    return_service,
    sales_service,
    stock_service,
)


def _sell(branch, lines, invoice_no="INV-001", **kwargs):
    """lines: [(product, quantity), ...] at the product's sale price."""
    kwargs.setdefault("payment_method", "cash")
    return sales_service.create_sale(
        branch_id=branch.id,
        invoice_no=invoice_no,
        items=[
            {"product_id": p.id, "quantity": qty, "unit_price_cents": p.sale_price_cents}
            for p, qty in lines
        ],
        **kwargs,
    )


class TestDeriveSaleTotals:

    def test_due_and_grand_total(self):
        totals = sales_service.derive_sale_totals(
            [2000, 3000], discount_cents=500, tax_cents=100, paid_amount_cents=1000,
        )
        assert totals == (5000, 4600, 3600)

    def test_paid_above_grand_total(self):
        with pytest.raises(InvalidPaymentError):
            sales_service.derive_sale_totals([1000], discount_cents=0, tax_cents=0, paid_amount_cents=1001)

    def test_negative_paid(self):
        with pytest.raises(InvalidPaymentError):
            sales_service.derive_sale_totals([1000], discount_cents=0, tax_cents=0, paid_amount_cents=-1)

    def test_discount_above_total(self):
        with pytest.raises(ValidationError):
            sales_service.derive_sale_totals([1000], discount_cents=1001, tax_cents=0, paid_amount_cents=0)

    @pytest.mark.parametrize("due,paid,status", [
        (0, 1000, "completed"),
        (0, 0, "completed"),
        (500, 500, "partial"),
        (1000, 0, "pending"),
    ])
    def test_status(self, due, paid, status):
        assert sales_service.derive_sale_status(due_amount_cents=due, paid_amount_cents=paid) == status


class TestCreateSale:

    def test_sell_entire_stock_then_fail(self, db_session, branch, stocked):
        rice = stocked[0]

        _sell(branch, [(rice, 5)], invoice_no="INV-A1")
        assert stock_service.get_stock_quantity(rice.id, branch.id) == 0

        with pytest.raises(InsufficientStockError):
            _sell(branch, [(rice, 1)], invoice_no="INV-A2")

        assert stock_service.get_stock_quantity(rice.id, branch.id) == 0
        assert sales_service.get_sale_by_invoice("INV-A2") is None

    def test_duplicate_invoice_does_not_touch_stock(self, db_session, branch, stocked):
        oil = stocked[1]

        _sell(branch, [(oil, 2)], invoice_no="INV-100")
        with pytest.raises(DuplicateInvoiceError) as exc:
            _sell(branch, [(oil, 3)], invoice_no="INV-100")

        assert exc.value.status_code == 409
        assert stock_service.get_stock_quantity(oil.id, branch.id) == 8
        assert db_session.query(Sale).count() == 1

    def test_failed_sale_is_atomic(self, db_session, branch, stocked):
        rice, oil, tea = stocked
        logs_before = db_session.query(InventoryLogEntry).count()

        with pytest.raises(InsufficientStockError) as exc:
            _sell(branch, [(oil, 2), (tea, 3), (rice, 6)])

        assert exc.value.product_id == rice.id
        assert exc.value.details["items"] == [{"product_id": rice.id, "available": 5, "requested": 6}]
        assert stock_service.get_stock_quantity(oil.id, branch.id) == 10
        assert stock_service.get_stock_quantity(tea.id, branch.id) == 20
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert db_session.query(InventoryLogEntry).count() == logs_before

    def test_every_shortfall_is_reported(self, db_session, branch, stocked):
        rice, oil, _ = stocked
        with pytest.raises(InsufficientStockError) as exc:
            _sell(branch, [(rice, 9), (oil, 11)])
        assert [i["product_id"] for i in exc.value.details["items"]] == [rice.id, oil.id]

    def test_other_branch_stock_is_not_used(self, db_session, other_branch, stocked):
        with pytest.raises(InsufficientStockError):
            _sell(other_branch, [(stocked[0], 1)])

    def test_purchase_then_sale_round_trip(self, db_session, supplier, branch, products):
        tea = products[2]
        start = stock_service.get_stock_quantity(tea.id, branch.id)

        purchase_service.create_purchase(
            supplier_id=supplier.id,
            branch_id=branch.id,
            invoice_no="PUR-RT",
            items=[{"product_id": tea.id, "quantity": 12, "unit_cost_cents": 400}],
        )
        _sell(branch, [(tea, 12)], invoice_no="INV-RT")

        assert stock_service.get_stock_quantity(tea.id, branch.id) == start

    def test_lines_logged_with_sale_reference(self, db_session, branch, stocked, user):
        rice, oil, _ = stocked
        sale = _sell(branch, [(rice, 2), (oil, 1)], created_by_id=user.id)

        logs = inventory_log_service.list_inventory_logs(reference=SaleRef(sale.id))
        assert sorted((log.product_id, log.quantity_change) for log in logs) == sorted(
            [(rice.id, -2), (oil.id, -1)]
        )
        assert {log.change_type for log in logs} == {CHANGE_SALE}

    def test_money_fields(self, db_session, branch, stocked):
        rice, oil, _ = stocked
        sale = _sell(branch, [(rice, 2), (oil, 3)], discount_cents=1000, tax_cents=250, paid_amount_cents=4000)

        assert sale.total_amount_cents == 2 * 2000 + 3 * 1000
        assert sale.grand_total_cents == 7000 - 1000 + 250
        assert sale.paid_amount_cents == 4000
        assert sale.due_amount_cents == 6250 - 4000
        assert sale.status == "partial"

    def test_paid_defaults_to_grand_total(self, db_session, branch, stocked):
        sale = _sell(branch, [(stocked[0], 1)])
        assert sale.paid_amount_cents == 2000
        assert sale.due_amount_cents == 0
        assert sale.status == "completed"

    def test_unpaid_sale_is_pending(self, db_session, branch, stocked):
        sale = _sell(branch, [(stocked[0], 1)], paid_amount_cents=0)
        assert sale.status == "pending"
        assert sale.due_amount_cents == 2000

    def test_overpayment_rejected_without_stock_change(self, db_session, branch, stocked):
        with pytest.raises(InvalidPaymentError):
            _sell(branch, [(stocked[0], 1)], paid_amount_cents=2001)
        assert stock_service.get_stock_quantity(stocked[0].id, branch.id) == 5

    def test_duplicate_product_lines_rejected(self, db_session, branch, stocked):
        with pytest.raises(ValidationError):
            _sell(branch, [(stocked[0], 1), (stocked[0], 1)])

    def test_requires_valid_payment_method(self, db_session, branch, stocked):
        with pytest.raises(ValidationError):
            _sell(branch, [(stocked[0], 1)], payment_method="barter")
        with pytest.raises(ValidationError):
            _sell(branch, [(stocked[0], 1)], payment_method="")

    def test_unknown_customer(self, db_session, branch, stocked):
        with pytest.raises(ReferenceNotFoundError) as exc:
            _sell(branch, [(stocked[0], 1)], customer_id=31337)
        assert exc.value.entity == "customer"
        assert stock_service.get_stock_quantity(stocked[0].id, branch.id) == 5

    def test_award_points_inside_sale(self, db_session, branch, stocked, customer):
        sale = _sell(branch, [(stocked[0], 5)], customer_id=customer.id, award_points=True)

        tx = db_session.query(LoyaltyTransaction).one()
        assert tx.reference_id == sale.id
        assert tx.points == 10   # 100.00 x 0.1

    def test_no_points_without_flag(self, db_session, branch, stocked, customer):
        _sell(branch, [(stocked[0], 5)], customer_id=customer.id)
        assert db_session.query(LoyaltyTransaction).count() == 0


class TestSalePayment:

    def test_update_payment(self, db_session, branch, stocked):
        sale = _sell(branch, [(stocked[1], 3)], paid_amount_cents=0)

        sale = sales_service.update_sale_payment(sale.id, 1000, payment_method="card")
        assert (sale.due_amount_cents, sale.status, sale.payment_method) == (2000, "partial", "card")

        sale = sales_service.update_sale_payment(sale.id, 3000)
        assert (sale.due_amount_cents, sale.status) == (0, "completed")

    def test_update_payment_rejects_overpayment(self, db_session, branch, stocked):
        sale = _sell(branch, [(stocked[1], 3)], paid_amount_cents=0)
        with pytest.raises(InvalidPaymentError):
            sales_service.update_sale_payment(sale.id, 3001)
        with pytest.raises(InvalidPaymentError):
            sales_service.update_sale_payment(sale.id, -5)
        assert sales_service.get_sale(sale.id).paid_amount_cents == 0


class TestSaleItems:

    def test_add_item(self, db_session, branch, stocked):
        rice, oil, _ = stocked
        sale = _sell(branch, [(rice, 1)], paid_amount_cents=0)

        sale = sales_service.add_sale_item(sale.id, product_id=oil.id, quantity=4, unit_price_cents=1000)

        assert sale.total_amount_cents == 2000 + 4000
        assert sale.due_amount_cents == 6000
        assert stock_service.get_stock_quantity(oil.id, branch.id) == 6

    def test_add_item_short_stock(self, db_session, branch, stocked):
        rice, oil, _ = stocked
        sale = _sell(branch, [(rice, 1)])

        with pytest.raises(InsufficientStockError):
            sales_service.add_sale_item(sale.id, product_id=oil.id, quantity=11, unit_price_cents=1000)

        assert len(sales_service.get_sale(sale.id).items) == 1
        assert stock_service.get_stock_quantity(oil.id, branch.id) == 10

    def test_add_item_for_product_already_on_sale(self, db_session, branch, stocked):
        sale = _sell(branch, [(stocked[0], 1)])
        with pytest.raises(ValidationError):
            sales_service.add_sale_item(sale.id, product_id=stocked[0].id, quantity=1, unit_price_cents=2000)

    def test_remove_item_from_paid_sale_refunds_difference(self, db_session, branch, stocked):
        rice, oil, _ = stocked
        sale = _sell(branch, [(rice, 1), (oil, 1)])
        oil_item = sale.item_for_product(oil.id)

        sale = sales_service.remove_sale_item(sale.id, oil_item.id)

        assert sale.grand_total_cents == 2000
        assert sale.paid_amount_cents == 2000
        assert sale.due_amount_cents == 0
        assert sale.status == "completed"
        assert stock_service.get_stock_quantity(oil.id, branch.id) == 10
        last = inventory_log_service.list_inventory_logs(product_id=oil.id, limit=1)[0]
        assert last.note.endswith("1000 cents refunded")

    def test_remove_item_keeps_partial_payment_below_total(self, db_session, branch, stocked):
        rice, oil, _ = stocked
        sale = _sell(branch, [(rice, 1), (oil, 1)], paid_amount_cents=500)

        sale = sales_service.remove_sale_item(sale.id, sale.item_for_product(oil.id).id)

        assert sale.paid_amount_cents == 500
        assert sale.due_amount_cents == 1500
        assert sale.status == "partial"

    def test_remove_item_restocks(self, db_session, branch, stocked):
        rice, oil, _ = stocked
        sale = _sell(branch, [(rice, 1), (oil, 2)], paid_amount_cents=0)
        oil_item = sale.item_for_product(oil.id)

        sale = sales_service.remove_sale_item(sale.id, oil_item.id)

        assert [i.product_id for i in sale.items] == [rice.id]
        assert sale.grand_total_cents == 2000
        assert stock_service.get_stock_quantity(oil.id, branch.id) == 10
        last = inventory_log_service.list_inventory_logs(product_id=oil.id, limit=1)[0]
        assert last.change_type == CHANGE_ADJUSTMENT
        assert last.quantity_change == 2

    def test_cannot_remove_last_item(self, db_session, branch, stocked):
        sale = _sell(branch, [(stocked[0], 1)])
        with pytest.raises(InvalidStateError):
            sales_service.remove_sale_item(sale.id, sale.items[0].id)

    def test_cannot_remove_item_with_returns(self, db_session, branch, stocked):
        rice, oil, _ = stocked
        sale = _sell(branch, [(rice, 2), (oil, 2)], paid_amount_cents=0)
        return_service.create_return(sale_id=sale.id, product_id=oil.id, quantity=1, reason="Leaking")

        with pytest.raises(InvalidStateError):
            sales_service.remove_sale_item(sale.id, sale.item_for_product(oil.id).id)


class TestCancelSale:

    def test_cancel_restores_stock(self, db_session, branch, stocked, user):
        rice, oil, _ = stocked
        sale = _sell(branch, [(rice, 5), (oil, 3)])

        sale = sales_service.cancel_sale(sale.id, reason="Customer walked out", created_by_id=user.id)

        assert sale.status == "cancelled"
        assert sale.cancel_reason == "Customer walked out"
        assert sale.cancelled_at is not None
        assert stock_service.get_stock_quantity(rice.id, branch.id) == 5
        assert stock_service.get_stock_quantity(oil.id, branch.id) == 10

    def test_cancel_skips_units_already_returned(self, db_session, branch, stocked):
        oil = stocked[1]
        sale = _sell(branch, [(oil, 4)])
        return_service.create_return(sale_id=sale.id, product_id=oil.id, quantity=3, reason="Damaged box")
        assert stock_service.get_stock_quantity(oil.id, branch.id) == 9

        sales_service.cancel_sale(sale.id)

        assert stock_service.get_stock_quantity(oil.id, branch.id) == 10

    def test_cancelled_sale_is_terminal(self, db_session, branch, stocked):
        sale = _sell(branch, [(stocked[0], 1)])
        sales_service.cancel_sale(sale.id)

        with pytest.raises(InvalidStateError):
            sales_service.cancel_sale(sale.id)
        with pytest.raises(InvalidStateError):
            sales_service.update_sale_payment(sale.id, 0)
        with pytest.raises(InvalidStateError):
            sales_service.add_sale_item(sale.id, product_id=stocked[1].id, quantity=1, unit_price_cents=1)

    def test_cancel_unknown_sale(self, db_session):
        with pytest.raises(ReferenceNotFoundError):
            sales_service.cancel_sale(555)
