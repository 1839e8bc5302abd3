# Overview: Stock ledger; per (product, branch) on-hand quantity with locked, non-negative adjustment.

from __future__ import annotations

from sqlalchemy import func

from ..errors import InsufficientStockError, ValidationError
from ..extensions import db
from ..models import Product, StockEntry
from ..models.inventory import CHANGE_ADJUSTMENT, CHANGE_TYPES
from ..references import MANUAL, Reference
from .concurrency import lock_for_update, run_in_transaction
from .inventory_log_service import append_inventory_log
from .lookups import ensure_branch, ensure_product, ensure_user
"""
Stock Ledger Invariants (authoritative)

- One StockEntry per (product_id, branch_id), created by the first movement.
- quantity >= 0 after every committed transaction. The check and the write
  happen under the same row lock, so two concurrent decrements of the same
  key cannot both pass the check.
- A missing entry reads as zero; decrementing it fails like any other
  shortfall.
- Every movement appends exactly one InventoryLogEntry in the same transaction.
- Only this module writes StockEntry.quantity.
"""


def _get_entry_locked(product_id: int, branch_id: int) -> StockEntry | None:
    return lock_for_update(
        db.session.query(StockEntry).filter_by(product_id=product_id, branch_id=branch_id)
    ).first()


def _apply_stock_delta(
    *,
    product_id: int,
    branch_id: int,
    delta: int,
    change_type: str,
    reference: Reference,
    created_by_id: int | None = None,
    note: str | None = None,
) -> StockEntry:
    """Core adjust: lock, check, write, log. No transaction handling or commit.

    Called by the public adjust_stock() and by the purchase/sale/return
    services inside their own transaction.
    """
    entry = _get_entry_locked(product_id, branch_id)
    previous = entry.quantity if entry is not None else 0
    new_quantity = previous + delta

    if new_quantity < 0:
        raise InsufficientStockError(
            product_id=product_id,
            branch_id=branch_id,
            available=previous,
            requested=-delta,
        )

    if entry is None:
        entry = StockEntry(product_id=product_id, branch_id=branch_id, quantity=new_quantity)
        db.session.add(entry)
    else:
        entry.quantity = new_quantity
    db.session.flush()

    if delta != 0:
        append_inventory_log(
            product_id=product_id,
            branch_id=branch_id,
            change_type=change_type,
            quantity_change=delta,
            previous_stock=previous,
            new_stock=new_quantity,
            reference=reference,
            created_by_id=created_by_id,
            note=note,
        )
    return entry


def adjust_stock(
    *,
    product_id: int,
    branch_id: int,
    delta: int,
    change_type: str = CHANGE_ADJUSTMENT,
    reference: Reference = MANUAL,
    created_by_id: int | None = None,
    note: str | None = None,
) -> StockEntry:
    """
    Atomically apply quantity += delta at (product, branch).

    Creates the entry with max(delta, 0) when absent. Raises
    InsufficientStockError when the result would be negative.
    A zero delta moves nothing and writes no log row.
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("delta must be an integer")
    if change_type not in CHANGE_TYPES:
        raise ValidationError(f"Invalid change_type. Must be one of: {', '.join(CHANGE_TYPES)}")

    def _op():
        ensure_product(product_id)
        ensure_branch(branch_id)
        ensure_user(created_by_id)
        return _apply_stock_delta(
            product_id=product_id,
            branch_id=branch_id,
            delta=delta,
            change_type=change_type,
            reference=reference,
            created_by_id=created_by_id,
            note=note,
        )

    return run_in_transaction(_op)


def set_stock_quantity(
    *,
    product_id: int,
    branch_id: int,
    quantity: int,
    created_by_id: int | None = None,
    note: str | None = None,
) -> StockEntry:
    """
    Administrative correction to an absolute count.

    Still goes through the ledger: the difference is applied as an
    adjustment and logged with previous/new stock.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise ValidationError("quantity must be an integer >= 0")

    def _op():
        ensure_product(product_id)
        ensure_branch(branch_id)
        ensure_user(created_by_id)
        entry = _get_entry_locked(product_id, branch_id)
        current = entry.quantity if entry is not None else 0
        return _apply_stock_delta(
            product_id=product_id,
            branch_id=branch_id,
            delta=quantity - current,
            change_type=CHANGE_ADJUSTMENT,
            reference=MANUAL,
            created_by_id=created_by_id,
            note=note or "Stock count correction",
        )

    return run_in_transaction(_op)


def get_stock_quantity(product_id: int, branch_id: int) -> int:
    """Current on-hand quantity; zero when no entry exists. Never writes."""
    quantity = db.session.query(StockEntry.quantity).filter_by(
        product_id=product_id,
        branch_id=branch_id,
    ).scalar()
    return int(quantity or 0)


def get_stock_entry(product_id: int, branch_id: int) -> StockEntry | None:
    return db.session.query(StockEntry).filter_by(product_id=product_id, branch_id=branch_id).first()


def list_branch_stock(branch_id: int) -> list[StockEntry]:
    ensure_branch(branch_id)
    return db.session.query(StockEntry).filter_by(branch_id=branch_id).order_by(StockEntry.product_id).all()


def find_low_stock(branch_id: int) -> list[StockEntry]:
    """
    Entries at or below their product's stock_alert_quantity.

    Column-to-column comparison done in SQL through the product join.
    """
    ensure_branch(branch_id)
    return (
        db.session.query(StockEntry)
        .join(Product, Product.id == StockEntry.product_id)
        .filter(
            StockEntry.branch_id == branch_id,
            StockEntry.quantity <= Product.stock_alert_quantity,
        )
        .order_by(StockEntry.quantity.asc(), StockEntry.product_id.asc())
        .all()
    )


def get_branch_stock_value(branch_id: int) -> dict:
    ensure_branch(branch_id)
    row = (
        db.session.query(
            func.count(StockEntry.id).label("items"),
            func.coalesce(func.sum(StockEntry.quantity), 0).label("units"),
            func.coalesce(func.sum(StockEntry.quantity * Product.cost_price_cents), 0).label("value"),
        )
        .join(Product, Product.id == StockEntry.product_id)
        .filter(StockEntry.branch_id == branch_id)
        .one()
    )
    return {
        "branch_id": branch_id,
        "total_items": int(row.items or 0),
        "total_quantity": int(row.units or 0),
        "total_value_cents": int(row.value or 0),
    }
