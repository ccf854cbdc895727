# backend/posledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/posledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///posledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Stock ledger policy
    ALLOW_NEGATIVE_STOCK = _env_bool("ALLOW_NEGATIVE_STOCK", False)
    LEDGER_LOCK_WAIT_SECONDS = float(os.environ.get("LEDGER_LOCK_WAIT_SECONDS", "10"))
    LEDGER_TRANSACTION_TIMEOUT_SECONDS = float(os.environ.get("LEDGER_TRANSACTION_TIMEOUT_SECONDS", "30"))
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))

    # Checkout defaults
    DEFAULT_TAX_RATE = os.environ.get("DEFAULT_TAX_RATE", "0")
    CURRENCY = os.environ.get("CURRENCY", "KES")

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", str(24 * 7)))
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Reorder suggestions: average daily sales over the lookback window
    REORDER_LOOKBACK_DAYS = int(os.environ.get("REORDER_LOOKBACK_DAYS", "30"))
    REORDER_LEAD_TIME_DAYS = int(os.environ.get("REORDER_LEAD_TIME_DAYS", "7"))
