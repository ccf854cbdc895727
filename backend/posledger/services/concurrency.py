# Overview: Transaction, locking and retry primitives shared by the stock ledger.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class TransactionTimeout(Exception):
    """Raised when a write transaction runs past its configured deadline."""


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock up front there instead.
    """
    return query.with_for_update()


def transaction_deadline() -> float:
    """Monotonic time by which a ledger mutation must have committed, retries included."""
    return time.monotonic() + current_app.config["LEDGER_TRANSACTION_TIMEOUT_SECONDS"]


def _remaining_ms(deadline: float) -> int:
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise TransactionTimeout("transaction deadline passed before the write lock was requested")
    return max(1, int(remaining * 1000))


def begin_write_transaction(deadline: float) -> None:
    """
    Open a write transaction whose waits end no later than deadline.

    SQLite: busy_timeout is lowered to min(lock wait, time left), then
    BEGIN IMMEDIATE acquires the RESERVED lock before the first read, so
    read-check-write sequences from two connections serialize.
    PostgreSQL: lock_timeout bounds the wait on FOR UPDATE row locks and
    statement_timeout bounds each statement, both capped at the time left;
    both are transaction-local.
    """
    remaining_ms = _remaining_ms(deadline)
    lock_ms = min(int(current_app.config["LEDGER_LOCK_WAIT_SECONDS"] * 1000), remaining_ms)

    dialect = db.engine.dialect.name
    if dialect == "sqlite":
        db.session.execute(text(f"PRAGMA busy_timeout = {lock_ms}"))
        db.session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql":
        db.session.execute(text(f"SET LOCAL lock_timeout = {lock_ms}"))
        db.session.execute(text(f"SET LOCAL statement_timeout = {remaining_ms}"))


def check_deadline(deadline: float) -> None:
    """Refuse to commit a transaction that has outlived its timeout."""
    if time.monotonic() > deadline:
        limit = current_app.config["LEDGER_TRANSACTION_TIMEOUT_SECONDS"]
        raise TransactionTimeout(f"transaction exceeded {limit}s")


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, deadline: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). With a deadline, no attempt starts
    after it; the last failure is re-raised instead.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            if deadline is not None and time.monotonic() + delay >= deadline:
                raise
            time.sleep(delay)
    if last_exc:
        raise last_exc
