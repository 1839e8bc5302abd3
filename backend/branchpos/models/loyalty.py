from __future__ import annotations

from ..extensions import db
from ..references import from_columns
from branchpos.time_utils import to_utc_z
from .guards import append_only


TX_EARNED = "EARNED"
TX_REDEEMED = "REDEEMED"
TX_ADJUSTMENT_ADD = "ADJUSTMENT_ADD"
TX_ADJUSTMENT_REMOVE = "ADJUSTMENT_REMOVE"
TX_RESET = "RESET"
TX_EXPIRED = "EXPIRED"

TRANSACTION_TYPES = (TX_EARNED, TX_REDEEMED, TX_ADJUSTMENT_ADD, TX_ADJUSTMENT_REMOVE, TX_RESET, TX_EXPIRED)


class LoyaltyAccount(db.Model):
    """
    Loyalty points account for a customer. One account per customer.

    points_balance = total_earned - total_redeemed at all times; every
    removal path (redeem, negative adjustment, reset, expiry) moves its points
    into total_redeemed so both totals only ever grow.
    """
    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        db.UniqueConstraint("customer_id", name="uq_loyalty_accounts_customer"),
        db.CheckConstraint("points_balance >= 0", name="balance_non_negative"),
        db.CheckConstraint("total_earned >= 0", name="earned_non_negative"),
        db.CheckConstraint("total_redeemed >= 0", name="redeemed_non_negative"),
        db.CheckConstraint("points_balance = total_earned - total_redeemed", name="balance_consistent"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    points_balance = db.Column(db.Integer, nullable=False, default=0)
    total_earned = db.Column(db.Integer, nullable=False, default=0)
    total_redeemed = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("loyalty_account", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "points_balance": self.points_balance,
            "total_earned": self.total_earned,
            "total_redeemed": self.total_redeemed,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


@append_only
class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of point movements.

    points is always a magnitude; the type says which way it moved.
    balance_after is the account balance right after this movement.
    A sale can be credited at most once (partial unique index).
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_transactions_customer_created", "customer_id", "created_at"),
        db.Index(
            "uq_loyalty_transactions_earned_sale",
            "reference_type",
            "reference_id",
            unique=True,
            sqlite_where=db.text("type = 'EARNED' AND reference_type = 'sale'"),
            postgresql_where=db.text("type = 'EARNED' AND reference_type = 'sale'"),
        ),
        db.CheckConstraint("points >= 0", name="points_non_negative"),
        db.CheckConstraint("balance_after >= 0", name="balance_after_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("loyalty_accounts.id"), nullable=False, index=True)

    type = db.Column(db.String(24), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    reference_type = db.Column(db.String(16), nullable=False, default="manual")
    reference_id = db.Column(db.Integer, nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    account = db.relationship("LoyaltyAccount", backref=db.backref("transactions", lazy=True))

    @property
    def reference(self):
        return from_columns(self.reference_type, self.reference_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "account_id": self.account_id,
            "type": self.type,
            "points": self.points,
            "balance_after": self.balance_after,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
