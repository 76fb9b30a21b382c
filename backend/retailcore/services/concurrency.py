# Overview: Row locking, retry and per-tenant deadline helpers shared by the ledger and the jobs.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for read-modify-write sections.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the Product version_id
    check is what serializes concurrent stock writers.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic version check lost). The session is rolled back between
    attempts so func() always starts from fresh rows.
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


def apply_statement_timeout(seconds: float) -> None:
    """
    Bound every statement of the current DB transaction (PostgreSQL only).

    Other dialects rely on the runner's between-entity deadline check.
    """
    if db.engine.dialect.name != "postgresql":
        return
    millis = max(int(seconds * 1000), 1)
    db.session.execute(text(f"SET LOCAL statement_timeout = {millis}"))


class Deadline:
    """Monotonic wall-clock budget for one tenant's share of a job run."""

    def __init__(self, seconds: float, clock=time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self.expires_at = clock() + seconds

    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def remaining(self) -> float:
        return max(self.expires_at - self._clock(), 0.0)
