# Overview: Loyalty ledger; per-customer points balance driven by an append-only transaction log.

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, InvalidOperation

from flask import current_app, has_app_context

from ..errors import InsufficientPointsError, InvalidStateError, ReferenceNotFoundError, ValidationError
from ..extensions import db
from ..models import LoyaltyAccount, LoyaltyTransaction, Sale
from ..models.loyalty import (
    TX_ADJUSTMENT_ADD,
    TX_ADJUSTMENT_REMOVE,
    TX_EARNED,
    TX_EXPIRED,
    TX_REDEEMED,
    TX_RESET,
)
from ..models.sales import SALE_STATUS_CANCELLED
from ..references import MANUAL, REFERENCE_SALE, Reference, SaleRef, to_columns
from ..validation import require_int, require_text
from .concurrency import lock_for_update, run_in_transaction
from .lookups import ensure_customer, ensure_user
"""
Loyalty Ledger Invariants (authoritative)

- One LoyaltyAccount per customer.
- points_balance = total_earned - total_redeemed after every operation.
  Additions go through total_earned, every removal through total_redeemed,
  so both totals are monotonic non-decreasing.
- Each balance change appends exactly one LoyaltyTransaction carrying the
  magnitude and the balance right after it, in the same transaction.
- The account row is read under a row lock before any check-then-write.
- A sale earns points at most once (pre-check plus partial unique index).
"""

DEFAULT_EARN_RATE = Decimal("0.1")


def _earn_rate() -> Decimal:
    raw = current_app.config.get("LOYALTY_EARN_RATE") if has_app_context() else None
    if raw is None:
        return DEFAULT_EARN_RATE
    try:
        rate = Decimal(str(raw))
    except InvalidOperation:
        raise ValidationError(f"LOYALTY_EARN_RATE is not a number: {raw!r}")
    if rate < 0:
        raise ValidationError("LOYALTY_EARN_RATE must be >= 0")
    return rate


def calculate_sale_points(grand_total_cents: int, rate: Decimal | None = None) -> int:
    """floor(grand_total x rate), with grand_total in currency units."""
    if rate is None:
        rate = _earn_rate()
    points = (Decimal(grand_total_cents) / 100 * rate).to_integral_value(rounding=ROUND_FLOOR)
    return max(int(points), 0)


def _require_points(points) -> int:
    return require_int("points", points, minimum=1)


def _get_account_locked(customer_id: int) -> LoyaltyAccount | None:
    return lock_for_update(db.session.query(LoyaltyAccount).filter_by(customer_id=customer_id)).first()


def _require_account_locked(customer_id: int) -> LoyaltyAccount:
    account = _get_account_locked(customer_id)
    if account is None:
        raise ReferenceNotFoundError(
            "loyalty account",
            customer_id,
            message=f"Loyalty account not found for customer {customer_id}",
        )
    return account


def _get_or_create_account_locked(customer_id: int) -> LoyaltyAccount:
    account = _get_account_locked(customer_id)
    if account is None:
        ensure_customer(customer_id)
        account = LoyaltyAccount(customer_id=customer_id, points_balance=0, total_earned=0, total_redeemed=0)
        db.session.add(account)
        db.session.flush()
    return account


def _append_transaction(
    account: LoyaltyAccount,
    *,
    tx_type: str,
    points: int,
    reason: str,
    reference: Reference = MANUAL,
    created_by_id: int | None = None,
) -> LoyaltyTransaction:
    reference_type, reference_id = to_columns(reference)
    tx = LoyaltyTransaction(
        customer_id=account.customer_id,
        account_id=account.id,
        type=tx_type,
        points=points,
        balance_after=account.points_balance,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        created_by_id=created_by_id,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def _add_points(account, *, tx_type, points, reason, reference=MANUAL, created_by_id=None) -> LoyaltyTransaction:
    account.points_balance += points
    account.total_earned += points
    return _append_transaction(
        account, tx_type=tx_type, points=points, reason=reason, reference=reference, created_by_id=created_by_id,
    )


def _remove_points(account, *, tx_type, points, reason, reference=MANUAL, created_by_id=None) -> LoyaltyTransaction:
    if account.points_balance < points:
        raise InsufficientPointsError(
            customer_id=account.customer_id,
            available=account.points_balance,
            requested=points,
        )
    account.points_balance -= points
    account.total_redeemed += points
    return _append_transaction(
        account, tx_type=tx_type, points=points, reason=reason, reference=reference, created_by_id=created_by_id,
    )


# =============================================================================
# ACCOUNTS
# =============================================================================

def initialize_account(customer_id: int) -> LoyaltyAccount:
    """Create the customer's account with zero balances; returns the existing one if present."""
    def _op():
        return _get_or_create_account_locked(customer_id)

    return run_in_transaction(_op)


def get_account(customer_id: int) -> LoyaltyAccount | None:
    ensure_customer(customer_id)
    return db.session.query(LoyaltyAccount).filter_by(customer_id=customer_id).first()


def list_transactions(customer_id: int, *, limit: int = 100) -> list[LoyaltyTransaction]:
    ensure_customer(customer_id)
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(customer_id=customer_id)
        .order_by(LoyaltyTransaction.id.desc())
        .limit(limit)
        .all()
    )


# =============================================================================
# MOVEMENTS
# =============================================================================

def earn_points(
    customer_id: int,
    points: int,
    reason: str,
    *,
    reference: Reference = MANUAL,
    created_by_id: int | None = None,
) -> LoyaltyTransaction:
    """Credit points; opens the account on first earn."""
    points = _require_points(points)
    reason = require_text("reason", reason)

    def _op():
        ensure_user(created_by_id)
        account = _get_or_create_account_locked(customer_id)
        return _add_points(
            account, tx_type=TX_EARNED, points=points, reason=reason,
            reference=reference, created_by_id=created_by_id,
        )

    return run_in_transaction(_op)


def redeem_points(
    customer_id: int,
    points: int,
    reason: str,
    *,
    reference: Reference = MANUAL,
    created_by_id: int | None = None,
) -> LoyaltyTransaction:
    """Debit points. InsufficientPointsError leaves the balance untouched."""
    points = _require_points(points)
    reason = require_text("reason", reason)

    def _op():
        ensure_user(created_by_id)
        account = _require_account_locked(customer_id)
        return _remove_points(
            account, tx_type=TX_REDEEMED, points=points, reason=reason,
            reference=reference, created_by_id=created_by_id,
        )

    return run_in_transaction(_op)


def adjust_points(
    customer_id: int,
    points: int,
    reason: str,
    *,
    created_by_id: int | None = None,
) -> LoyaltyTransaction:
    """
    Admin correction with a signed amount.

    Positive goes through total_earned (ADJUSTMENT_ADD), negative through
    total_redeemed (ADJUSTMENT_REMOVE).
    """
    points = require_int("points", points)
    if points == 0:
        raise ValidationError("points must be non-zero")
    reason = require_text("reason", reason)

    def _op():
        ensure_user(created_by_id)
        account = _require_account_locked(customer_id)
        if points > 0:
            return _add_points(
                account, tx_type=TX_ADJUSTMENT_ADD, points=points, reason=reason, created_by_id=created_by_id,
            )
        return _remove_points(
            account, tx_type=TX_ADJUSTMENT_REMOVE, points=-points, reason=reason, created_by_id=created_by_id,
        )

    return run_in_transaction(_op)


def reset_account(customer_id: int, reason: str, *, created_by_id: int | None = None) -> LoyaltyTransaction:
    """Move the whole balance into total_redeemed; logs RESET with the prior balance."""
    reason = require_text("reason", reason)

    def _op():
        ensure_user(created_by_id)
        account = _require_account_locked(customer_id)
        prior = account.points_balance
        account.points_balance = 0
        account.total_redeemed += prior
        return _append_transaction(
            account, tx_type=TX_RESET, points=prior, reason=reason, created_by_id=created_by_id,
        )

    return run_in_transaction(_op)


def expire_points(
    customer_id: int,
    points: int,
    reason: str = "Points expired",
    *,
    created_by_id: int | None = None,
) -> LoyaltyTransaction:
    points = _require_points(points)
    reason = require_text("reason", reason)

    def _op():
        ensure_user(created_by_id)
        account = _require_account_locked(customer_id)
        return _remove_points(
            account, tx_type=TX_EXPIRED, points=points, reason=reason, created_by_id=created_by_id,
        )

    return run_in_transaction(_op)


# =============================================================================
# SALES
# =============================================================================

def _sale_already_credited(sale_id: int) -> LoyaltyTransaction | None:
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(type=TX_EARNED, reference_type=REFERENCE_SALE, reference_id=sale_id)
        .first()
    )


def _process_sale_points(sale: Sale, created_by_id: int | None = None) -> dict:
    """
    Credit floor(grand_total x rate) for a sale. No commit.

    Used by process_sale_points and inside create_sale's transaction.
    """
    if sale.customer_id is None:
        raise InvalidStateError(
            f"Sale {sale.invoice_no} has no customer",
            details={"sale_id": sale.id},
        )
    if sale.status == SALE_STATUS_CANCELLED:
        raise InvalidStateError(
            f"Sale {sale.invoice_no} is cancelled",
            details={"sale_id": sale.id, "status": sale.status},
        )

    result = {
        "sale_id": sale.id,
        "customer_id": sale.customer_id,
        "points": 0,
        "already_processed": False,
        "transaction": None,
    }

    existing = _sale_already_credited(sale.id)
    if existing is not None:
        result["points"] = existing.points
        result["already_processed"] = True
        result["transaction"] = existing
        return result

    points = calculate_sale_points(sale.grand_total_cents)
    if points <= 0:
        return result

    account = _get_or_create_account_locked(sale.customer_id)
    result["points"] = points
    result["transaction"] = _add_points(
        account,
        tx_type=TX_EARNED,
        points=points,
        reason=f"Points earned from sale {sale.invoice_no}",
        reference=SaleRef(sale.id),
        created_by_id=created_by_id,
    )
    return result


def process_sale_points(sale_id: int, *, created_by_id: int | None = None) -> dict:
    """
    Award points for a completed sale. Idempotent per sale: a second call
    returns the original credit with already_processed=True.
    """
    def _op():
        ensure_user(created_by_id)
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise ReferenceNotFoundError("sale", sale_id)
        return _process_sale_points(sale, created_by_id=created_by_id)

    return run_in_transaction(_op)
