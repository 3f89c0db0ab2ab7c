# Overview: Row locking, guarded updates and retry helpers shared by the workflow services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    Every multi-step order operation locks the order row first, which
    serializes transitions, verification and ledger writes per order.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def guarded_update(query, values: dict | None = None) -> int:
    """
    Single conditional UPDATE; the WHERE clause is the guard.

    `query` is either an ORM Query (SET clause taken from `values`) or a
    Core UPDATE statement that already carries its SET clause, for callers
    that need the assignments in a fixed order.

    Returns the affected row count so callers can tell whether they won
    (1) or lost to a concurrent writer / found the guard already false (0).
    The session is not synchronized: callers refresh what they read back.
    """
    if values is None:
        return db.session.execute(query).rowcount
    return query.update(values, synchronize_session=False)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (version_id conflicts on orders / handover acts). Any other exception
    rolls the session back and propagates unchanged.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
