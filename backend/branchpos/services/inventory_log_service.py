# Overview: Append-only inventory log; one row per stock movement, written in the mover's transaction.

from __future__ import annotations

from ..errors import ValidationError
from ..extensions import db
from ..models import InventoryLogEntry
from ..models.inventory import CHANGE_TYPES
from ..references import Reference, to_columns
"""
Inventory Log Invariants (authoritative)

- Append-only audit trail: no updates, no deletes (enforced by a mapper guard).
- Rows are written inside the same DB transaction as the stock change they
  record, so a rolled-back movement leaves no log row behind.
- previous_stock/new_stock come from the locked ledger row, never from
  an estimate.
"""


def append_inventory_log(
    *,
    product_id: int,
    branch_id: int,
    change_type: str,
    quantity_change: int,
    previous_stock: int,
    new_stock: int,
    reference: Reference,
    created_by_id: int | None = None,
    note: str | None = None,
) -> InventoryLogEntry:
    """
    Append one inventory log row.

    - No stock logic here; the caller already applied the movement.
    - Flushes so the row id is available without committing.
    """
    if change_type not in CHANGE_TYPES:
        raise ValidationError(f"Invalid change_type. Must be one of: {', '.join(CHANGE_TYPES)}")

    reference_type, reference_id = to_columns(reference)

    entry = InventoryLogEntry(
        product_id=product_id,
        branch_id=branch_id,
        change_type=change_type,
        quantity_change=quantity_change,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reference_type=reference_type,
        reference_id=reference_id,
        created_by_id=created_by_id,
        note=note,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_inventory_logs(
    *,
    product_id: int | None = None,
    branch_id: int | None = None,
    reference: Reference | None = None,
    change_type: str | None = None,
    limit: int = 200,
) -> list[InventoryLogEntry]:
    q = db.session.query(InventoryLogEntry)
    if product_id is not None:
        q = q.filter(InventoryLogEntry.product_id == product_id)
    if branch_id is not None:
        q = q.filter(InventoryLogEntry.branch_id == branch_id)
    if change_type is not None:
        q = q.filter(InventoryLogEntry.change_type == change_type)
    if reference is not None:
        reference_type, reference_id = to_columns(reference)
        q = q.filter(
            InventoryLogEntry.reference_type == reference_type,
            InventoryLogEntry.reference_id == reference_id,
        )

    return q.order_by(InventoryLogEntry.id.desc()).limit(limit).all()


def find_shrinking_movements(*, branch_id: int | None = None, limit: int = 200) -> list[InventoryLogEntry]:
    """Log rows where stock went down (new_stock < previous_stock), compared in SQL."""
    q = db.session.query(InventoryLogEntry).filter(
        InventoryLogEntry.new_stock < InventoryLogEntry.previous_stock
    )
    if branch_id is not None:
        q = q.filter(InventoryLogEntry.branch_id == branch_id)
    return q.order_by(InventoryLogEntry.id.desc()).limit(limit).all()
