from __future__ import annotations

from ..extensions import db
from branchpos.time_utils import to_utc_z


PURCHASE_STATUS_PENDING = "pending"
PURCHASE_STATUS_RECEIVED = "received"
PURCHASE_STATUS_CANCELLED = "cancelled"
PURCHASE_STATUSES = (PURCHASE_STATUS_PENDING, PURCHASE_STATUS_RECEIVED, PURCHASE_STATUS_CANCELLED)

PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUSES = (PAYMENT_STATUS_PAID, PAYMENT_STATUS_PARTIAL, PAYMENT_STATUS_UNPAID)

PAYMENT_METHODS = ("cash", "card", "bank_transfer", "bkash", "nagad")


class Purchase(db.Model):
    """
    Supplier receipt into one branch.

    grand_total_cents = total_amount_cents - discount_cents + tax_cents, always
    written through purchase_service.derive_purchase_totals.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("invoice_no", name="uq_purchases_invoice_no"),
        db.Index("ix_purchases_branch_date", "branch_id", "purchase_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    invoice_no = db.Column(db.String(64), nullable=False)
    purchase_date = db.Column(db.DateTime(timezone=True), nullable=False)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_UNPAID)
    payment_method = db.Column(db.String(16), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=PURCHASE_STATUS_PENDING, index=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("purchases", lazy=True))
    branch = db.relationship("Branch", backref=db.backref("purchases", lazy=True))
    items = db.relationship(
        "PurchaseItem",
        back_populates="purchase",
        order_by="PurchaseItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "branch_id": self.branch_id,
            "invoice_no": self.invoice_no,
            "purchase_date": to_utc_z(self.purchase_date),
            "total_amount_cents": self.total_amount_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "grand_total_cents": self.grand_total_cents,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "status": self.status,
            "created_by_id": self.created_by_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="quantity_positive"),
        db.CheckConstraint("unit_cost_cents >= 0", name="unit_cost_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    purchase = db.relationship("Purchase", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "subtotal_cents": self.subtotal_cents,
            "created_at": to_utc_z(self.created_at),
        }
