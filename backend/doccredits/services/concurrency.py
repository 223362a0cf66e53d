# Overview: Service-layer helpers for concurrency; row locks and time-bounded transactions.

from __future__ import annotations

import math
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, DBAPIError

from ..extensions import db


class TransactionTimeoutError(Exception):
    """Raised when a credit transaction exceeds its time bound and is rolled back."""
    pass


class StoreUnavailableError(Exception):
    """Raised when the database cannot be reached or rejects the transaction."""
    pass


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    SQLite serializes writers at the database level instead.
    """
    return query.with_for_update()


def transaction_timeout_seconds() -> float:
    return float(current_app.config.get("CREDIT_TRANSACTION_TIMEOUT_SECONDS", 10))


def _apply_server_timeout(timeout: float) -> None:
    """
    Push the bound down to the server where supported.

    PostgreSQL cancels the statement (and waits on row locks) past the limit;
    SET LOCAL scopes it to the current transaction only. MySQL gives up on row
    lock waits (whole seconds only). SQLite gets its lock wait from the
    connection busy timeout, which create_app caps at the configured bound.
    """
    dialect = db.engine.dialect.name
    if dialect == "postgresql":
        ms = max(1, int(timeout * 1000))
        db.session.execute(text(f"SET LOCAL statement_timeout = {ms}"))
        db.session.execute(text(f"SET LOCAL lock_timeout = {ms}"))
    elif dialect in ("mysql", "mariadb"):
        seconds = max(1, math.ceil(timeout))
        db.session.execute(text(f"SET SESSION innodb_lock_wait_timeout = {seconds}"))


@contextmanager
def bounded_transaction(timeout: float | None = None):
    """
    Run the enclosed session work as one all-or-nothing unit with an upper time bound.

    - Commits on clean exit if the deadline has not passed.
    - Rolls back on any exception, or when the deadline passed before commit.
    - OperationalError is reported as TransactionTimeoutError once the deadline
      has passed or a lock wait gave up (statement_timeout, busy timeout),
      otherwise as StoreUnavailableError.

    No retries: the caller decides what a failed unit means.
    """
    if timeout is None:
        timeout = transaction_timeout_seconds()
    started = time.monotonic()
    deadline = started + timeout

    try:
        _apply_server_timeout(timeout)
        yield
        if time.monotonic() >= deadline:
            raise TransactionTimeoutError(
                f"Transaction exceeded {timeout:g}s bound and was rolled back"
            )
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        message = str(exc.orig).lower()
        # "database is locked" is SQLite giving up after its busy timeout
        if time.monotonic() >= deadline or "timeout" in message or "locked" in message:
            raise TransactionTimeoutError(
                f"Transaction exceeded {timeout:g}s bound and was rolled back"
            ) from exc
        raise StoreUnavailableError(str(exc.orig)) from exc
    except DBAPIError as exc:
        # Disconnects and driver-level failures that are not integrity violations
        db.session.rollback()
        if exc.connection_invalidated:
            raise StoreUnavailableError("Database connection lost") from exc
        raise
    except BaseException:
        db.session.rollback()
        raise
