"""
Sales Service - stock-checked sale processing

WHY: A sale is the one place where money, stock and loyalty points move
together. Creation runs in two phases inside a single transaction:

1. Validation: every line is checked against the locked stock row for
   (product, branch). Any shortfall fails the whole sale before a single
   row is written.
2. Commit: header + items are persisted, each line decrements stock and
   appends an inventory log row, and (when configured) the customer's
   points are credited.

INVARIANTS:
- invoice_no is unique across sales (DuplicateInvoiceError).
- grand_total = total_amount - discount + tax and due = grand_total - paid,
  derived only by derive_sale_totals.
- 0 <= paid_amount <= grand_total (InvalidPaymentError).
- Status: cancelled is terminal; otherwise due == 0 => completed,
  paid > 0 => partial, else pending.
"""

from __future__ import annotations

from typing import NamedTuple

from flask import current_app, has_app_context
from sqlalchemy import func

from ..errors import (
    DuplicateInvoiceError,
    InsufficientStockError,
    InvalidPaymentError,
    InvalidStateError,
    ReferenceNotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Sale, SaleItem, SaleReturn
from ..models.inventory import CHANGE_ADJUSTMENT, CHANGE_SALE
from ..models.purchases import PAYMENT_METHODS
from ..models.sales import (
    RETURN_STATUS_REJECTED,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PARTIAL,
    SALE_STATUS_PENDING,
)
from ..references import SaleRef
from branchpos.time_utils import utcnow
from ..validation import (
    enforce_rules_amounts,
    enforce_rules_payment_method,
    normalize_line_items,
    require_int,
    require_text,
)
from .concurrency import flush_document, lock_for_update, run_in_transaction
from .loyalty_service import _process_sale_points
from .lookups import ensure_branch, ensure_customer, ensure_product, ensure_products, ensure_user
from .stock_service import _apply_stock_delta, _get_entry_locked


class SaleTotals(NamedTuple):
    total_amount_cents: int
    grand_total_cents: int
    due_amount_cents: int


def derive_sale_totals(subtotals, *, discount_cents: int, tax_cents: int, paid_amount_cents: int) -> SaleTotals:
    """
    Pure: the only place sale money is derived.

    Raises ValidationError for a negative grand total and InvalidPaymentError
    when paid is negative or above the grand total.
    """
    total = sum(subtotals)
    grand_total = total - discount_cents + tax_cents
    if grand_total < 0:
        raise ValidationError(
            "Discount exceeds sale total",
            details={"total_amount_cents": total, "discount_cents": discount_cents, "tax_cents": tax_cents},
        )
    if paid_amount_cents < 0:
        raise InvalidPaymentError(
            "Paid amount cannot be negative",
            details={"paid_amount_cents": paid_amount_cents},
        )
    if paid_amount_cents > grand_total:
        raise InvalidPaymentError(
            f"Paid amount ({paid_amount_cents}) exceeds grand total ({grand_total})",
            details={"paid_amount_cents": paid_amount_cents, "grand_total_cents": grand_total},
        )
    return SaleTotals(total, grand_total, grand_total - paid_amount_cents)


def derive_sale_status(*, due_amount_cents: int, paid_amount_cents: int) -> str:
    if due_amount_cents == 0:
        return SALE_STATUS_COMPLETED
    if paid_amount_cents > 0:
        return SALE_STATUS_PARTIAL
    return SALE_STATUS_PENDING


def _apply_totals(sale: Sale, paid_amount_cents: int | None = None) -> None:
    if paid_amount_cents is None:
        paid_amount_cents = sale.paid_amount_cents
    totals = derive_sale_totals(
        [item.subtotal_cents for item in sale.items],
        discount_cents=sale.discount_cents,
        tax_cents=sale.tax_cents,
        paid_amount_cents=paid_amount_cents,
    )
    sale.total_amount_cents = totals.total_amount_cents
    sale.grand_total_cents = totals.grand_total_cents
    sale.paid_amount_cents = paid_amount_cents
    sale.due_amount_cents = totals.due_amount_cents
    sale.status = derive_sale_status(
        due_amount_cents=totals.due_amount_cents,
        paid_amount_cents=paid_amount_cents,
    )


def _get_sale_locked(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise ReferenceNotFoundError("sale", sale_id)
    return sale


def _require_open(sale: Sale) -> None:
    if sale.status == SALE_STATUS_CANCELLED:
        raise InvalidStateError(
            f"Sale {sale.invoice_no} is cancelled",
            details={"sale_id": sale.id, "status": sale.status},
        )


def returned_quantity(sale_id: int, product_id: int, *, exclude_return_id: int | None = None) -> int:
    """Units of (sale, product) covered by non-rejected returns."""
    q = db.session.query(func.coalesce(func.sum(SaleReturn.quantity), 0)).filter(
        SaleReturn.sale_id == sale_id,
        SaleReturn.product_id == product_id,
        SaleReturn.status != RETURN_STATUS_REJECTED,
    )
    if exclude_return_id is not None:
        q = q.filter(SaleReturn.id != exclude_return_id)
    return int(q.scalar() or 0)


def _validate_on_hand(branch_id: int, lines: list[dict]) -> None:
    """
    Validation phase: every line against its locked stock row.

    Collects every shortfall; the first one is reported as the error and
    the full list goes into details["items"].
    """
    insufficient = []
    for line in lines:
        entry = _get_entry_locked(line["product_id"], branch_id)
        available = entry.quantity if entry is not None else 0
        if available < line["quantity"]:
            insufficient.append({
                "product_id": line["product_id"],
                "available": available,
                "requested": line["quantity"],
            })

    if insufficient:
        first = insufficient[0]
        raise InsufficientStockError(
            product_id=first["product_id"],
            branch_id=branch_id,
            available=first["available"],
            requested=first["requested"],
            items=insufficient,
        )


def _auto_award_enabled() -> bool:
    if not has_app_context():
        return False
    return bool(current_app.config.get("LOYALTY_AUTO_AWARD", True))


# =============================================================================
# CREATE
# =============================================================================

def create_sale(
    *,
    branch_id: int,
    invoice_no: str,
    items: list[dict],
    payment_method: str,
    customer_id: int | None = None,
    discount_cents: int = 0,
    tax_cents: int = 0,
    paid_amount_cents: int | None = None,
    created_by_id: int | None = None,
    award_points: bool | None = None,
) -> Sale:
    """
    Create a sale and take its lines out of the branch's stock.

    items: [{"product_id", "quantity", "unit_price_cents"}, ...]
    paid_amount_cents defaults to the full grand total.
    award_points: None follows LOYALTY_AUTO_AWARD; only applies with a customer.

    Raises:
        ValidationError / InvalidPaymentError: bad input or payment
        ReferenceNotFoundError: branch, customer, product or user missing
        DuplicateInvoiceError: invoice_no already used
        InsufficientStockError: any line short; no stock is touched
    """
    invoice_no = require_text("invoice_no", invoice_no, max_length=64)
    lines = normalize_line_items(items, price_field="unit_price_cents")
    seen = set()
    for line in lines:
        if line["product_id"] in seen:
            raise ValidationError(
                f"Product {line['product_id']} appears more than once; combine the quantities into one line",
                details={"product_id": line["product_id"]},
            )
        seen.add(line["product_id"])
    if not payment_method:
        raise ValidationError("payment_method is required")
    enforce_rules_payment_method({"payment_method": payment_method}, PAYMENT_METHODS)
    enforce_rules_amounts({"discount_cents": discount_cents, "tax_cents": tax_cents})
    if paid_amount_cents is not None:
        paid_amount_cents = require_int("paid_amount_cents", paid_amount_cents)

    if award_points is None:
        award_points = _auto_award_enabled()

    def _op():
        # Phase 1: validation, nothing written yet
        ensure_branch(branch_id)
        if customer_id is not None:
            ensure_customer(customer_id)
        ensure_user(created_by_id)
        ensure_products([line["product_id"] for line in lines])

        if get_sale_by_invoice(invoice_no) is not None:
            raise DuplicateInvoiceError(invoice_no, document="sale")

        _validate_on_hand(branch_id, lines)

        # Phase 2: commit
        sale = Sale(
            branch_id=branch_id,
            customer_id=customer_id,
            invoice_no=invoice_no,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            payment_method=payment_method,
            created_by_id=created_by_id,
        )
        for line in lines:
            sale.items.append(SaleItem(
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                subtotal_cents=line["quantity"] * line["unit_price_cents"],
            ))

        paid = paid_amount_cents
        if paid is None:
            paid = sum(item.subtotal_cents for item in sale.items) - discount_cents + tax_cents
        _apply_totals(sale, paid_amount_cents=paid)

        db.session.add(sale)
        flush_document(invoice_no=invoice_no, document="sale")

        for item in sale.items:
            _apply_stock_delta(
                product_id=item.product_id,
                branch_id=branch_id,
                delta=-item.quantity,
                change_type=CHANGE_SALE,
                reference=SaleRef(sale.id),
                created_by_id=created_by_id,
                note=f"Sale {invoice_no}",
            )

        if award_points and customer_id is not None:
            _process_sale_points(sale, created_by_id=created_by_id)

        return sale

    return run_in_transaction(_op)


# =============================================================================
# PAYMENT
# =============================================================================

def update_sale_payment(
    sale_id: int,
    paid_amount_cents: int,
    *,
    payment_method: str | None = None,
) -> Sale:
    """Set the paid amount; due and status are re-derived."""
    paid_amount_cents = require_int("paid_amount_cents", paid_amount_cents)
    if paid_amount_cents < 0:
        raise InvalidPaymentError(
            "Paid amount cannot be negative",
            details={"paid_amount_cents": paid_amount_cents},
        )
    enforce_rules_payment_method({"payment_method": payment_method}, PAYMENT_METHODS)

    def _op():
        sale = _get_sale_locked(sale_id)
        _require_open(sale)
        _apply_totals(sale, paid_amount_cents=paid_amount_cents)
        if payment_method is not None:
            sale.payment_method = payment_method
        db.session.flush()
        return sale

    return run_in_transaction(_op)


# =============================================================================
# LINE ITEMS
# =============================================================================

def add_sale_item(
    sale_id: int,
    *,
    product_id: int,
    quantity: int,
    unit_price_cents: int,
    created_by_id: int | None = None,
) -> Sale:
    """Append a line: stock -quantity, totals and due re-derived."""
    line = normalize_line_items(
        [{"product_id": product_id, "quantity": quantity, "unit_price_cents": unit_price_cents}],
        price_field="unit_price_cents",
    )[0]

    def _op():
        sale = _get_sale_locked(sale_id)
        _require_open(sale)
        ensure_product(line["product_id"])
        ensure_user(created_by_id)

        if sale.item_for_product(line["product_id"]) is not None:
            raise ValidationError(
                f"Product {line['product_id']} is already on sale {sale.invoice_no}",
                details={"sale_id": sale.id, "product_id": line["product_id"]},
            )

        item = SaleItem(
            product_id=line["product_id"],
            quantity=line["quantity"],
            unit_price_cents=line["unit_price_cents"],
            subtotal_cents=line["quantity"] * line["unit_price_cents"],
        )
        sale.items.append(item)
        _apply_totals(sale)
        db.session.flush()

        _apply_stock_delta(
            product_id=item.product_id,
            branch_id=sale.branch_id,
            delta=-item.quantity,
            change_type=CHANGE_SALE,
            reference=SaleRef(sale.id),
            created_by_id=created_by_id,
            note=f"Sale {sale.invoice_no} item added",
        )
        return sale

    return run_in_transaction(_op)


def remove_sale_item(sale_id: int, item_id: int, *, created_by_id: int | None = None) -> Sale:
    """
    Drop a line: stock +quantity, totals and due re-derived.

    When the sale was paid above the new grand total, paid is lowered to
    the grand total and the difference is recorded on the stock log note
    as a refund to the customer.
    """
    def _op():
        sale = _get_sale_locked(sale_id)
        _require_open(sale)
        ensure_user(created_by_id)

        item = next((i for i in sale.items if i.id == item_id), None)
        if item is None:
            raise ReferenceNotFoundError("sale item", item_id)
        if len(sale.items) == 1:
            raise InvalidStateError(
                "Cannot remove the last item of a sale; cancel the sale instead",
                details={"sale_id": sale.id, "item_id": item_id},
            )
        if returned_quantity(sale.id, item.product_id) > 0:
            raise InvalidStateError(
                "Cannot remove an item that has returns",
                details={"sale_id": sale.id, "product_id": item.product_id},
            )

        sale.items.remove(item)
        grand_total = derive_sale_totals(
            [i.subtotal_cents for i in sale.items],
            discount_cents=sale.discount_cents,
            tax_cents=sale.tax_cents,
            paid_amount_cents=0,
        ).grand_total_cents
        refunded = max(sale.paid_amount_cents - grand_total, 0)
        _apply_totals(sale, paid_amount_cents=sale.paid_amount_cents - refunded)

        note = f"Sale {sale.invoice_no} item removed"
        if refunded:
            note += f"; {refunded} cents refunded"
        _apply_stock_delta(
            product_id=item.product_id,
            branch_id=sale.branch_id,
            delta=item.quantity,
            change_type=CHANGE_ADJUSTMENT,
            reference=SaleRef(sale.id),
            created_by_id=created_by_id,
            note=note,
        )
        return sale

    return run_in_transaction(_op)


# =============================================================================
# CANCEL
# =============================================================================

def cancel_sale(sale_id: int, *, reason: str | None = None, created_by_id: int | None = None) -> Sale:
    """
    Put every line's units back into stock and mark the sale cancelled.

    Units already restocked by a non-rejected return are not restored twice.
    """
    if reason is not None:
        reason = require_text("reason", reason)

    def _op():
        sale = _get_sale_locked(sale_id)
        _require_open(sale)
        ensure_user(created_by_id)

        for item in sale.items:
            outstanding = item.quantity - returned_quantity(sale.id, item.product_id)
            if outstanding <= 0:
                continue
            _apply_stock_delta(
                product_id=item.product_id,
                branch_id=sale.branch_id,
                delta=outstanding,
                change_type=CHANGE_ADJUSTMENT,
                reference=SaleRef(sale.id),
                created_by_id=created_by_id,
                note=f"Sale {sale.invoice_no} cancelled",
            )

        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancel_reason = reason
        db.session.flush()
        return sale

    return run_in_transaction(_op)


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if sale is None:
        raise ReferenceNotFoundError("sale", sale_id)
    return sale


def get_sale_by_invoice(invoice_no: str) -> Sale | None:
    return db.session.query(Sale).filter_by(invoice_no=invoice_no).first()
