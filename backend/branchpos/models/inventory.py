from __future__ import annotations

from ..extensions import db
from ..references import from_columns
from branchpos.time_utils import to_utc_z
from .guards import append_only


CHANGE_PURCHASE = "purchase"
CHANGE_SALE = "sale"
CHANGE_ADJUSTMENT = "adjustment"
CHANGE_RETURN = "return"

CHANGE_TYPES = (CHANGE_PURCHASE, CHANGE_SALE, CHANGE_ADJUSTMENT, CHANGE_RETURN)


class StockEntry(db.Model):
    """
    On-hand quantity of one product at one branch.

    INVARIANTS:
    - At most one row per (product_id, branch_id); created on first movement.
    - quantity >= 0, enforced by stock_service under a row lock and by a
      CHECK constraint as the last line.
    - Only stock_service mutates quantity. version_id turns a lost update
      into a StaleDataError instead of a silent overwrite.
    """
    __tablename__ = "stock_entries"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_stock_entries_product_branch"),
        db.CheckConstraint("quantity >= 0", name="quantity_non_negative"),
        db.Index("ix_stock_entries_branch_quantity", "branch_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stock_entries", lazy=True))
    branch = db.relationship("Branch", backref=db.backref("stock_entries", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<StockEntry product_id={self.product_id} branch_id={self.branch_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity": self.quantity,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


@append_only
class InventoryLogEntry(db.Model):
    """
    Append-only audit row for every stock movement.

    previous_stock/new_stock are the ledger quantities immediately before and
    after the movement, read under the same lock that applied it.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.Index("ix_inventory_logs_product_branch_created", "product_id", "branch_id", "created_at"),
        db.Index("ix_inventory_logs_reference", "reference_type", "reference_id"),
        db.CheckConstraint("new_stock = previous_stock + quantity_change", name="stock_delta_consistent"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    change_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(16), nullable=False, default="manual")
    reference_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product")
    branch = db.relationship("Branch")

    @property
    def reference(self):
        return from_columns(self.reference_type, self.reference_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "change_type": self.change_type,
            "quantity_change": self.quantity_change,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
