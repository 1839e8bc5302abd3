# Overview: Service-layer operations for supplier purchases; inbound mirror of the sale transaction.

"""
Purchase Service

WHY: A purchase is the only way supplier stock enters a branch. The header,
its line items, the stock increments and the inventory log rows are written
as one unit so a failed receipt leaves nothing behind.

LIFECYCLE:
1. pending: created (stock already booked in)
2. received: goods checked in; informational, no stock effect
3. cancelled: every line's stock taken back out; terminal

INVARIANTS:
- invoice_no is unique across purchases (DuplicateInvoiceError).
- grand_total = total_amount - discount + tax, derived only by
  derive_purchase_totals on every mutating path.
- Removing stock (item removal, cancellation) can fail with
  InsufficientStockError when the units were already sold elsewhere.
"""

from __future__ import annotations

from typing import NamedTuple

from ..errors import DuplicateInvoiceError, InvalidStateError, ReferenceNotFoundError, ValidationError
from ..extensions import db
from ..models import Purchase, PurchaseItem
from ..models.inventory import CHANGE_ADJUSTMENT, CHANGE_PURCHASE
from ..models.purchases import (
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    PAYMENT_STATUS_UNPAID,
    PURCHASE_STATUS_CANCELLED,
    PURCHASE_STATUS_PENDING,
    PURCHASE_STATUS_RECEIVED,
)
from ..references import PurchaseRef
from branchpos.time_utils import coerce_business_datetime
from ..validation import (
    enforce_rules_amounts,
    enforce_rules_payment_method,
    normalize_line_items,
    require_int,
    require_text,
)
from .concurrency import flush_document, lock_for_update, run_in_transaction
from .lookups import ensure_branch, ensure_product, ensure_products, ensure_supplier, ensure_user
from .stock_service import _apply_stock_delta


class PurchaseTotals(NamedTuple):
    total_amount_cents: int
    grand_total_cents: int


def derive_purchase_totals(subtotals, *, discount_cents: int, tax_cents: int) -> PurchaseTotals:
    """Pure: sum of line subtotals, minus discount, plus tax."""
    total = sum(subtotals)
    grand_total = total - discount_cents + tax_cents
    if grand_total < 0:
        raise ValidationError(
            "Discount exceeds purchase total",
            details={"total_amount_cents": total, "discount_cents": discount_cents, "tax_cents": tax_cents},
        )
    return PurchaseTotals(total, grand_total)


def _apply_totals(purchase: Purchase) -> None:
    totals = derive_purchase_totals(
        [item.subtotal_cents for item in purchase.items],
        discount_cents=purchase.discount_cents,
        tax_cents=purchase.tax_cents,
    )
    purchase.total_amount_cents = totals.total_amount_cents
    purchase.grand_total_cents = totals.grand_total_cents


def _get_purchase_locked(purchase_id: int) -> Purchase:
    purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
    if purchase is None:
        raise ReferenceNotFoundError("purchase", purchase_id)
    return purchase


def _require_open(purchase: Purchase) -> None:
    if purchase.status == PURCHASE_STATUS_CANCELLED:
        raise InvalidStateError(
            f"Purchase {purchase.invoice_no} is cancelled",
            details={"purchase_id": purchase.id, "status": purchase.status},
        )


def _book_item(purchase: Purchase, item: PurchaseItem, created_by_id: int | None) -> None:
    _apply_stock_delta(
        product_id=item.product_id,
        branch_id=purchase.branch_id,
        delta=item.quantity,
        change_type=CHANGE_PURCHASE,
        reference=PurchaseRef(purchase.id),
        created_by_id=created_by_id,
        note=f"Purchase {purchase.invoice_no}",
    )


# =============================================================================
# CREATE
# =============================================================================

def create_purchase(
    *,
    supplier_id: int,
    branch_id: int,
    invoice_no: str,
    items: list[dict],
    discount_cents: int = 0,
    tax_cents: int = 0,
    purchase_date=None,
    payment_status: str = PAYMENT_STATUS_UNPAID,
    payment_method: str | None = None,
    created_by_id: int | None = None,
) -> Purchase:
    """
    Record a supplier receipt and book every line into the branch's stock.

    items: [{"product_id", "quantity", "unit_cost_cents"}, ...]

    Raises:
        ValidationError: bad items/amounts/status
        ReferenceNotFoundError: supplier, branch, product or user missing
        DuplicateInvoiceError: invoice_no already used
    """
    invoice_no = require_text("invoice_no", invoice_no, max_length=64)
    lines = normalize_line_items(items, price_field="unit_cost_cents")
    enforce_rules_amounts({"discount_cents": discount_cents, "tax_cents": tax_cents})
    enforce_rules_payment_method({"payment_method": payment_method}, PAYMENT_METHODS)
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment_status. Must be one of: {', '.join(PAYMENT_STATUSES)}")
    try:
        business_date = coerce_business_datetime(purchase_date)
    except ValueError:
        raise ValidationError("purchase_date must be an ISO-8601 datetime")

    def _op():
        ensure_supplier(supplier_id)
        ensure_branch(branch_id)
        ensure_user(created_by_id)
        ensure_products([line["product_id"] for line in lines])

        if get_purchase_by_invoice(invoice_no) is not None:
            raise DuplicateInvoiceError(invoice_no, document="purchase")

        purchase = Purchase(
            supplier_id=supplier_id,
            branch_id=branch_id,
            invoice_no=invoice_no,
            purchase_date=business_date,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            payment_status=payment_status,
            payment_method=payment_method,
            status=PURCHASE_STATUS_PENDING,
            created_by_id=created_by_id,
        )
        for line in lines:
            purchase.items.append(PurchaseItem(
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_cost_cents=line["unit_cost_cents"],
                subtotal_cents=line["quantity"] * line["unit_cost_cents"],
            ))
        _apply_totals(purchase)

        db.session.add(purchase)
        flush_document(invoice_no=invoice_no, document="purchase")

        for item in purchase.items:
            _book_item(purchase, item, created_by_id)
        return purchase

    return run_in_transaction(_op)


# =============================================================================
# LINE ITEMS
# =============================================================================

def add_purchase_item(
    purchase_id: int,
    *,
    product_id: int,
    quantity: int,
    unit_cost_cents: int,
    created_by_id: int | None = None,
) -> Purchase:
    """Append a line, re-derive totals, book +quantity into stock."""
    line = normalize_line_items(
        [{"product_id": product_id, "quantity": quantity, "unit_cost_cents": unit_cost_cents}],
        price_field="unit_cost_cents",
    )[0]

    def _op():
        purchase = _get_purchase_locked(purchase_id)
        _require_open(purchase)
        ensure_product(line["product_id"])
        ensure_user(created_by_id)

        item = PurchaseItem(
            product_id=line["product_id"],
            quantity=line["quantity"],
            unit_cost_cents=line["unit_cost_cents"],
            subtotal_cents=line["quantity"] * line["unit_cost_cents"],
        )
        purchase.items.append(item)
        _apply_totals(purchase)
        db.session.flush()

        _book_item(purchase, item, created_by_id)
        return purchase

    return run_in_transaction(_op)


def remove_purchase_item(purchase_id: int, item_id: int, *, created_by_id: int | None = None) -> Purchase:
    """
    Remove a line, re-derive totals, take its quantity back out of stock.

    Fails with InsufficientStockError if those units are no longer on hand.
    """
    def _op():
        purchase = _get_purchase_locked(purchase_id)
        _require_open(purchase)
        ensure_user(created_by_id)

        item = next((i for i in purchase.items if i.id == item_id), None)
        if item is None:
            raise ReferenceNotFoundError("purchase item", item_id)
        if len(purchase.items) == 1:
            raise InvalidStateError(
                "Cannot remove the last item of a purchase; cancel the purchase instead",
                details={"purchase_id": purchase.id, "item_id": item_id},
            )

        _apply_stock_delta(
            product_id=item.product_id,
            branch_id=purchase.branch_id,
            delta=-item.quantity,
            change_type=CHANGE_ADJUSTMENT,
            reference=PurchaseRef(purchase.id),
            created_by_id=created_by_id,
            note=f"Purchase {purchase.invoice_no} item removed",
        )
        purchase.items.remove(item)
        _apply_totals(purchase)
        db.session.flush()
        return purchase

    return run_in_transaction(_op)


# =============================================================================
# STATUS
# =============================================================================

def cancel_purchase(purchase_id: int, *, created_by_id: int | None = None) -> Purchase:
    """Reverse every line's stock and mark the purchase cancelled."""
    def _op():
        purchase = _get_purchase_locked(purchase_id)
        _require_open(purchase)
        ensure_user(created_by_id)

        for item in purchase.items:
            _apply_stock_delta(
                product_id=item.product_id,
                branch_id=purchase.branch_id,
                delta=-item.quantity,
                change_type=CHANGE_ADJUSTMENT,
                reference=PurchaseRef(purchase.id),
                created_by_id=created_by_id,
                note=f"Purchase {purchase.invoice_no} cancelled",
            )
        purchase.status = PURCHASE_STATUS_CANCELLED
        db.session.flush()
        return purchase

    return run_in_transaction(_op)


def update_purchase_status(purchase_id: int, status: str) -> Purchase:
    """pending <-> received. Cancellation goes through cancel_purchase."""
    if status not in (PURCHASE_STATUS_PENDING, PURCHASE_STATUS_RECEIVED):
        raise ValidationError(
            f"Invalid status. Must be one of: {PURCHASE_STATUS_PENDING}, {PURCHASE_STATUS_RECEIVED}"
        )

    def _op():
        purchase = _get_purchase_locked(purchase_id)
        _require_open(purchase)
        purchase.status = status
        db.session.flush()
        return purchase

    return run_in_transaction(_op)


def update_purchase_payment_status(
    purchase_id: int,
    payment_status: str,
    payment_method: str | None = None,
) -> Purchase:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment_status. Must be one of: {', '.join(PAYMENT_STATUSES)}")
    enforce_rules_payment_method({"payment_method": payment_method}, PAYMENT_METHODS)

    def _op():
        purchase = _get_purchase_locked(purchase_id)
        _require_open(purchase)
        purchase.payment_status = payment_status
        if payment_method is not None:
            purchase.payment_method = payment_method
        db.session.flush()
        return purchase

    return run_in_transaction(_op)


# =============================================================================
# READS
# =============================================================================

def get_purchase(purchase_id: int) -> Purchase:
    purchase_id = require_int("purchase_id", purchase_id, minimum=1)
    purchase = db.session.query(Purchase).filter_by(id=purchase_id).first()
    if purchase is None:
        raise ReferenceNotFoundError("purchase", purchase_id)
    return purchase


def get_purchase_by_invoice(invoice_no: str) -> Purchase | None:
    return db.session.query(Purchase).filter_by(invoice_no=invoice_no).first()
