# Overview: Row locking and retry helpers around the transactional store.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Transient
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the database-wide write
    lock plus the conditional stamp in sale_materializer carry the guarantee.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, busy/locked database) and
    StaleDataError (optimistic version conflicts). Once attempts are
    exhausted the failure surfaces as Transient.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise Transient(
                    "Transactional store unavailable",
                    details={"attempts": attempts, "cause": type(exc).__name__},
                ) from exc
            current_app.logger.warning(
                "Store contention on attempt %d/%d (%s); retrying",
                attempt + 1, attempts, type(exc).__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
    raise Transient("Transactional store unavailable", details={"attempts": attempts})
