"""
Sale Return Service

WHY: A return reverses part of one sale line. The eligibility arithmetic
(sold, already returned, refund ceiling) lives in a single function that
both validate_return (read-only pre-check) and create_return/update_return
(the guards) call, so the pre-check can never disagree with the guard.

DESIGN PRINCIPLES:
- Returns reference the original sale and one product on it
- Stock comes back at the sale's branch when the return is recorded
- Only non-rejected returns count toward the returned total
- Refund never exceeds quantity x the line's unit price

LIFECYCLE:
1. Create return (pending, or approved when SALE_RETURN_AUTO_APPROVE is on)
2. Approve / reject (pending only); rejecting takes the restocked units back out
3. Delete reverses whatever stock the return still holds

Once the sale is cancelled its returns are frozen: the cancellation already
restored every unit the returns did not.
"""

from __future__ import annotations

from typing import NamedTuple

from flask import current_app, has_app_context

from ..errors import (
    InvalidStateError,
    RefundExceedsValueError,
    ReferenceNotFoundError,
    ReturnExceedsQuantityError,
    ValidationError,
)
from ..extensions import db
from ..models import Sale, SaleReturn
from ..models.inventory import CHANGE_ADJUSTMENT, CHANGE_RETURN
from ..models.sales import (
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_PENDING,
    RETURN_STATUS_REJECTED,
    RETURN_STATUSES,
    SALE_STATUS_CANCELLED,
)
from ..references import SaleReturnRef
from branchpos.time_utils import utcnow
from ..validation import enforce_rules_amounts, require_int, require_text
from .concurrency import lock_for_update, run_in_transaction
from .lookups import ensure_user
from .sales_service import returned_quantity
from .stock_service import _apply_stock_delta


class ReturnEligibility(NamedTuple):
    sale_id: int
    product_id: int
    requested: int
    sold_quantity: int
    already_returned: int
    unit_price_cents: int

    @property
    def available_to_return(self) -> int:
        return self.sold_quantity - self.already_returned

    @property
    def is_valid(self) -> bool:
        return self.requested <= self.available_to_return

    @property
    def max_refund_cents(self) -> int:
        return self.requested * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "requested": self.requested,
            "is_valid": self.is_valid,
            "sold_quantity": self.sold_quantity,
            "already_returned": self.already_returned,
            "available_to_return": self.available_to_return,
            "unit_price_cents": self.unit_price_cents,
            "max_refund_cents": self.max_refund_cents,
        }


# =============================================================================
# ELIGIBILITY
# =============================================================================

def _eligibility(
    sale: Sale,
    product_id: int,
    quantity: int,
    *,
    exclude_return_id: int | None = None,
) -> ReturnEligibility:
    """Shared by validate_return and every mutating guard. Never writes.

    A cancelled sale has nothing left to return; its stock was settled by
    the cancellation.
    """
    _require_sale_open(sale)
    item = sale.item_for_product(product_id)
    if item is None:
        raise ReferenceNotFoundError(
            "sale item",
            product_id,
            message=f"Product {product_id} was not sold on sale {sale.invoice_no}",
        )
    return ReturnEligibility(
        sale_id=sale.id,
        product_id=product_id,
        requested=quantity,
        sold_quantity=item.quantity,
        already_returned=returned_quantity(sale.id, product_id, exclude_return_id=exclude_return_id),
        unit_price_cents=item.unit_price_cents,
    )


def _require_sale_open(sale: Sale) -> None:
    if sale.status == SALE_STATUS_CANCELLED:
        raise InvalidStateError(
            f"Sale {sale.invoice_no} is cancelled",
            details={"sale_id": sale.id, "status": sale.status},
        )


def _enforce(eligibility: ReturnEligibility, refund_amount_cents: int) -> None:
    if not eligibility.is_valid:
        raise ReturnExceedsQuantityError(
            sale_id=eligibility.sale_id,
            product_id=eligibility.product_id,
            requested=eligibility.requested,
            sold=eligibility.sold_quantity,
            already_returned=eligibility.already_returned,
        )
    if refund_amount_cents > eligibility.max_refund_cents:
        raise RefundExceedsValueError(
            refund_amount_cents=refund_amount_cents,
            max_refund_cents=eligibility.max_refund_cents,
        )


def _auto_approve() -> bool:
    if not has_app_context():
        return False
    return bool(current_app.config.get("SALE_RETURN_AUTO_APPROVE", False))


def _get_sale_locked(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise ReferenceNotFoundError("sale", sale_id)
    return sale


def _get_return_locked(return_id: int) -> SaleReturn:
    sale_return = lock_for_update(db.session.query(SaleReturn).filter_by(id=return_id)).first()
    if sale_return is None:
        raise ReferenceNotFoundError("sale return", return_id)
    return sale_return


def _move_return_stock(sale_return: SaleReturn, delta: int, *, created_by_id: int | None, note: str) -> None:
    _apply_stock_delta(
        product_id=sale_return.product_id,
        branch_id=sale_return.sale.branch_id,
        delta=delta,
        change_type=CHANGE_RETURN if delta > 0 else CHANGE_ADJUSTMENT,
        reference=SaleReturnRef(sale_return.id),
        created_by_id=created_by_id,
        note=note,
    )


# =============================================================================
# RETURN CREATION
# =============================================================================

def validate_return(sale_id: int, product_id: int, quantity: int) -> ReturnEligibility:
    """
    Read-only pre-check for clients.

    Same arithmetic as the create_return guard. Returns the eligibility
    (is_valid, available_to_return, already_returned, sold_quantity,
    unit_price_cents, max_refund_cents); never raises for overage. A
    cancelled sale raises InvalidStateError, as create_return does.
    """
    quantity = require_int("quantity", quantity, minimum=1)
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if sale is None:
        raise ReferenceNotFoundError("sale", sale_id)
    return _eligibility(sale, product_id, quantity)


def create_return(
    *,
    sale_id: int,
    product_id: int,
    quantity: int,
    reason: str,
    refund_amount_cents: int | None = None,
    processed_by_id: int | None = None,
) -> SaleReturn:
    """
    Record a return and put the units back into the sale branch's stock.

    refund_amount_cents defaults to quantity x the line's unit price.

    Raises:
        ReturnExceedsQuantityError: quantity > sold - already returned
        RefundExceedsValueError: refund > quantity x unit price
        InvalidStateError: sale cancelled
    """
    quantity = require_int("quantity", quantity, minimum=1)
    reason = require_text("reason", reason)
    if refund_amount_cents is not None:
        refund_amount_cents = require_int("refund_amount_cents", refund_amount_cents)
        enforce_rules_amounts({"refund_amount_cents": refund_amount_cents})

    def _op():
        ensure_user(processed_by_id)
        sale = _get_sale_locked(sale_id)
        eligibility = _eligibility(sale, product_id, quantity)
        refund = refund_amount_cents
        if refund is None:
            refund = eligibility.max_refund_cents
        _enforce(eligibility, refund)

        status = RETURN_STATUS_APPROVED if _auto_approve() else RETURN_STATUS_PENDING
        sale_return = SaleReturn(
            sale_id=sale.id,
            product_id=product_id,
            quantity=quantity,
            reason=reason,
            refund_amount_cents=refund,
            status=status,
            processed_by_id=processed_by_id,
            processed_at=utcnow() if status == RETURN_STATUS_APPROVED else None,
        )
        sale_return.sale = sale
        db.session.add(sale_return)
        db.session.flush()

        _move_return_stock(
            sale_return,
            quantity,
            created_by_id=processed_by_id,
            note=f"Return on sale {sale.invoice_no}",
        )
        return sale_return

    return run_in_transaction(_op)


# =============================================================================
# RETURN UPDATES
# =============================================================================

def update_return(
    return_id: int,
    *,
    quantity: int | None = None,
    reason: str | None = None,
    refund_amount_cents: int | None = None,
    processed_by_id: int | None = None,
) -> SaleReturn:
    """
    Edit a pending return. A quantity change is re-validated against the
    line (excluding this return) and its difference applied to stock.
    """
    if quantity is not None:
        quantity = require_int("quantity", quantity, minimum=1)
    if reason is not None:
        reason = require_text("reason", reason)
    if refund_amount_cents is not None:
        refund_amount_cents = require_int("refund_amount_cents", refund_amount_cents)
        enforce_rules_amounts({"refund_amount_cents": refund_amount_cents})

    def _op():
        ensure_user(processed_by_id)
        sale_return = _get_return_locked(return_id)
        if sale_return.status != RETURN_STATUS_PENDING:
            raise InvalidStateError(
                f"Only pending returns can be edited. Return {return_id} is {sale_return.status}",
                details={"return_id": return_id, "status": sale_return.status},
            )
        sale = _get_sale_locked(sale_return.sale_id)

        new_quantity = quantity if quantity is not None else sale_return.quantity
        new_refund = refund_amount_cents if refund_amount_cents is not None else sale_return.refund_amount_cents

        eligibility = _eligibility(sale, sale_return.product_id, new_quantity, exclude_return_id=sale_return.id)
        _enforce(eligibility, new_refund)

        delta = new_quantity - sale_return.quantity
        if delta:
            _move_return_stock(
                sale_return,
                delta,
                created_by_id=processed_by_id,
                note=f"Return {sale_return.id} quantity changed",
            )

        sale_return.quantity = new_quantity
        sale_return.refund_amount_cents = new_refund
        if reason is not None:
            sale_return.reason = reason
        db.session.flush()
        return sale_return

    return run_in_transaction(_op)


def update_return_status(return_id: int, status: str, *, processed_by_id: int | None = None) -> SaleReturn:
    """
    pending -> approved | rejected.

    Rejecting removes the units restocked at creation; that can fail with
    InsufficientStockError if they were sold again in the meantime.
    Raises InvalidStateError once the sale is cancelled.
    """
    if status not in RETURN_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(RETURN_STATUSES)}")
    if status == RETURN_STATUS_PENDING:
        raise ValidationError("A return cannot be moved back to pending")

    def _op():
        ensure_user(processed_by_id)
        sale_return = _get_return_locked(return_id)
        if sale_return.status != RETURN_STATUS_PENDING:
            raise InvalidStateError(
                f"Return {return_id} is already {sale_return.status}",
                details={"return_id": return_id, "status": sale_return.status},
            )
        _require_sale_open(_get_sale_locked(sale_return.sale_id))

        if status == RETURN_STATUS_REJECTED:
            _move_return_stock(
                sale_return,
                -sale_return.quantity,
                created_by_id=processed_by_id,
                note=f"Return {sale_return.id} rejected",
            )

        sale_return.status = status
        sale_return.processed_by_id = processed_by_id
        sale_return.processed_at = utcnow()
        db.session.flush()
        return sale_return

    return run_in_transaction(_op)


def delete_return(return_id: int, *, created_by_id: int | None = None) -> None:
    """
    Remove a return and take its restocked units back out.

    A rejected return no longer holds stock, so nothing moves. An
    InsufficientStockError here is surfaced to the caller. Returns on a
    cancelled sale are frozen.
    """
    def _op():
        ensure_user(created_by_id)
        sale_return = _get_return_locked(return_id)
        _require_sale_open(_get_sale_locked(sale_return.sale_id))
        if sale_return.status != RETURN_STATUS_REJECTED:
            _move_return_stock(
                sale_return,
                -sale_return.quantity,
                created_by_id=created_by_id,
                note=f"Return {sale_return.id} deleted",
            )
        db.session.delete(sale_return)
        db.session.flush()

    run_in_transaction(_op)


# =============================================================================
# QUERY HELPERS
# =============================================================================

def get_return(return_id: int) -> SaleReturn:
    sale_return = db.session.query(SaleReturn).filter_by(id=return_id).first()
    if sale_return is None:
        raise ReferenceNotFoundError("sale return", return_id)
    return sale_return


def list_sale_returns(sale_id: int, status: str | None = None) -> list[SaleReturn]:
    """Returns recorded against a sale, oldest first."""
    q = db.session.query(SaleReturn).filter_by(sale_id=sale_id)
    if status is not None:
        q = q.filter_by(status=status)
    return q.order_by(SaleReturn.id.asc()).all()
