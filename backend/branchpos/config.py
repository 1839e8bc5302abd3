# backend/branchpos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/branchpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///branchpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Points per currency unit of a sale's grand total (0.1 => 1 point per 10.00)
    LOYALTY_EARN_RATE = os.environ.get("LOYALTY_EARN_RATE", "0.1")
    # Award points inside create_sale when the sale has a customer
    LOYALTY_AUTO_AWARD = _env_bool("LOYALTY_AUTO_AWARD", True)

    # Returns start as "approved" instead of "pending" when enabled
    SALE_RETURN_AUTO_APPROVE = _env_bool("SALE_RETURN_AUTO_APPROVE", False)

    # Caller-side retry policy for transient lock/serialization conflicts
    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))
    TRANSACTION_RETRY_BACKOFF = float(os.environ.get("TRANSACTION_RETRY_BACKOFF", "0.1"))

    # Upper bound on waiting for a row/table lock (ms)
    LOCK_TIMEOUT_MS = int(os.environ.get("LOCK_TIMEOUT_MS", "5000"))
