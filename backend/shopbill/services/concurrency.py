# Overview: Transaction and retry helpers shared by the billing services.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (writers are serialized by the
    database lock instead), but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def unit_of_work():
    """
    One atomic unit: commit on success, roll back on any exception.

    Services call ledger primitives (which only flush) inside this block, so a
    failure at any point leaves neither stock nor invoice changes behind.
    PostgreSQL gets a statement timeout for the transaction; SQLite's busy
    timeout is configured on the engine in create_app.
    """
    timeout = current_app.config.get("UNIT_OF_WORK_TIMEOUT_SECONDS")
    try:
        if timeout and db.engine.dialect.name == "postgresql":
            db.session.execute(text(f"SET LOCAL statement_timeout = {int(float(timeout) * 1000)}"))
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = (OperationalError, StaleDataError),
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Defaults retry OperationalError (deadlocks, busy/locked databases) and
    StaleDataError (optimistic locking conflicts). Operations that must
    reject stale writes instead of replaying them pass a narrower retry_on.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
