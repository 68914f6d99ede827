# Overview: Concurrency helpers shared by services: row locks, guarded updates, retry.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for read-check-write paths (order creation, reset).

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the database-level
    write lock taken by the first UPDATE/INSERT serializes writers instead.
    """
    return query.with_for_update()


def execute_guarded(stmt) -> bool:
    """
    Execute a conditional UPDATE and report whether it matched exactly one row.

    The WHERE clause of `stmt` carries the precondition (e.g. status is still
    waiting_to_meet); a zero rowcount means another writer got there first or
    the precondition never held, and the caller re-reads to decide which.
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (database locked, deadlocks) and StaleDataError
    (version_id mismatch). Domain errors are never retried.
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
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
