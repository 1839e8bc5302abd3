# Overview: Transaction boundary, row locking and caller-side retry for the ledger core.

"""
Concurrency model

- One request = one database transaction. Every composite mutation (purchase,
  sale, return, loyalty movement, stock adjust) runs inside run_in_transaction
  and either commits everything or rolls back everything.
- Check-then-write on stock and loyalty rows happens under a row lock
  (SELECT ... FOR UPDATE). SQLite ignores FOR UPDATE, so on SQLite the
  transaction is opened with BEGIN IMMEDIATE, which takes the database write
  lock up front and serializes writers.
- version_id columns catch anything that slips past the locks (StaleDataError).
- The core never retries. Lock timeouts surface as TransactionTimeoutError,
  deadlocks/serialization/stale rows as ConflictError. Callers (the HTTP
  layer) may retry those with run_with_retry.
"""

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, DuplicateInvoiceError, PosError, TransactionTimeoutError
from ..extensions import db


# SQLSTATEs reported by PostgreSQL drivers
_PG_LOCK_NOT_AVAILABLE = "55P03"
_PG_DEADLOCK = "40P01"
_PG_SERIALIZATION_FAILURE = "40001"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction covers it.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Start the unit of work holding whatever lock the backend needs.

    Safe to call when a transaction is already open (nested service calls
    share the outer transaction).
    """
    conn = db.session.connection()
    dialect = conn.dialect.name

    if dialect == "sqlite":
        dbapi_conn = conn.connection.dbapi_connection
        if not dbapi_conn.in_transaction:
            conn.exec_driver_sql("BEGIN IMMEDIATE")
    elif dialect == "postgresql":
        timeout_ms = _config("LOCK_TIMEOUT_MS", 5000)
        conn.exec_driver_sql(f"SET LOCAL lock_timeout = {int(timeout_ms)}")


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _sqlstate(exc: Exception) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _translate_operational_error(exc: OperationalError) -> Exception:
    state = _sqlstate(exc)
    message = str(getattr(exc, "orig", exc)).lower()

    if state == _PG_LOCK_NOT_AVAILABLE or "database is locked" in message or "lock timeout" in message:
        return TransactionTimeoutError("Timed out waiting for a database lock", details={"cause": message})
    if state in (_PG_DEADLOCK, _PG_SERIALIZATION_FAILURE) or "deadlock" in message:
        return ConflictError("Concurrent update conflict; retry the operation", details={"cause": message})
    # Connection loss and other driver failures are infrastructure errors.
    return exc


def run_in_transaction(func):
    """
    Execute func() as one atomic unit and commit.

    Any exception rolls back every write made by func (stock adjustments,
    line items, log entries) and is re-raised as a typed outcome where one
    applies.
    """
    try:
        begin_write_transaction()
        result = func()
        db.session.commit()
        return result
    except PosError:
        db.session.rollback()
        raise
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError("Record was modified concurrently; retry the operation") from exc
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            "Concurrent write violated a uniqueness constraint; retry the operation",
            details={"cause": str(exc.orig)},
        ) from exc
    except OperationalError as exc:
        db.session.rollback()
        translated = _translate_operational_error(exc)
        if translated is exc:
            raise
        raise translated from exc
    except Exception:
        db.session.rollback()
        raise


def flush_document(*, invoice_no: str, document: str) -> None:
    """
    Flush a newly added purchase/sale header so the invoice_no unique index
    is checked now, and report a collision as DuplicateInvoiceError.
    """
    try:
        db.session.flush()
    except IntegrityError as exc:
        if "invoice_no" in str(exc.orig):
            raise DuplicateInvoiceError(invoice_no, document=document) from exc
        raise


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Caller-side retry for transient failures (ConflictError, TransactionTimeoutError).

    Exponential backoff, capped attempt count; the last failure propagates.
    """
    if attempts is None:
        attempts = _config("TRANSACTION_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = _config("TRANSACTION_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except PosError as exc:
            if not exc.retryable or attempt >= attempts - 1:
                raise
            if has_app_context():
                current_app.logger.warning(
                    "Transient %s on attempt %d/%d, retrying: %s",
                    type(exc).__name__, attempt + 1, attempts, exc,
                )
            time.sleep(backoff_base * (2 ** attempt))
