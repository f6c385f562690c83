# Overview: Retry and row-locking helpers shared by every lifecycle service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Quantity changes never rely on this lock alone; they use conditional UPDATEs.
    """
    return query.with_for_update()


def _configured_attempts() -> int:
    try:
        return int(current_app.config.get("CONCURRENCY_RETRY_ATTEMPTS", 3))
    except RuntimeError:
        # Outside an application context (scripts, bare unit tests)
        return 3


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (optimistic locking conflicts on version_id). The session
    is rolled back before every retry, so func must re-read all state it
    depends on; a retried transition then sees the winner's status.

    Any other exception also rolls the session back before propagating, so
    a rejected transition never leaves half-applied changes pending.

    Only call this at the outermost level of an operation: the rollback
    discards everything the session holds.
    """
    if attempts is None:
        attempts = _configured_attempts()
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
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


def commit_with_retry(*, attempts: int | None = None, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
