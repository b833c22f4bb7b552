"""Transaction coordinator for ordering operations.

``run_atomic`` executes one ordering operation's full read-shift-write
sequence inside a single ``engine.begin()`` block: either every write commits
or none does. Concurrent mutations of the same container are serialized:

- SQLite: the transaction opens with ``BEGIN IMMEDIATE`` and holds the
  database write lock until commit.
- PostgreSQL: ``AtomicScope.lock`` takes a transaction-scoped advisory lock
  per container key, in sorted key order.
- Other dialects: ``AtomicScope.lock`` row-locks the container's members.

A write-write conflict reported by the store (serialization failure,
deadlock, lock timeout, SQLite busy) rolls the transaction back and re-runs
the whole operation from its first read, up to ``ordering.max_retries``
times. Every other error propagates unmodified after rollback.
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError

from menu_catalog.config import AppConfig, load_config
from menu_catalog.db.base import WRITE_LOCK_OPTION, get_engine
from menu_catalog.errors import ConcurrentModificationConflict
from menu_catalog.logic import repository_products
from menu_catalog.logic.containers import Container

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}
_SQLITE_BUSY_MARKERS = ("database is locked", "database is busy", "database table is locked")


def container_lock_id(key: str) -> int:
    """Stable signed 64-bit id for a container key (advisory lock argument)."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def is_conflict(exc: BaseException) -> bool:
    """True when ``exc`` is a store-reported concurrent modification."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code and str(code) in CONFLICT_SQLSTATES:
        return True
    msg = str(orig if orig is not None else exc).lower()
    return any(marker in msg for marker in _SQLITE_BUSY_MARKERS)


class AtomicScope:
    """Handle passed to an operation running under ``run_atomic``."""

    def __init__(self, conn: Connection):
        self.conn = conn
        self._locked: set[str] = set()

    @property
    def dialect(self) -> str:
        return (getattr(self.conn.dialect, "name", "") or "").lower()

    def lock(self, *containers: Container) -> None:
        """Serialize structural mutation of ``containers`` until commit.

        Locks already held by this scope are skipped.
        """
        pending = sorted({c.key: c for c in containers if c.key not in self._locked}.items())
        if not pending:
            return
        for key, container in pending:
            if self.dialect == "postgresql":
                self.conn.execute(sql_text("SELECT pg_advisory_xact_lock(:k)"), {"k": container_lock_id(key)})
            elif self.dialect != "sqlite":
                repository_products.lock_member_rows(self.conn, container)
            self._locked.add(key)
        logger.debug("transactions.lock keys=%s", [k for k, _ in pending])


def run_atomic(
    operation: Callable[[AtomicScope], T],
    *,
    label: str,
    engine: Optional[Engine] = None,
    settings: Optional[AppConfig] = None,
) -> T:
    """Run ``operation`` atomically, retrying on concurrent-modification conflicts.

    Container keys are only known after the operation has read the store, so
    the operation locks them through ``scope.lock`` before shifting.
    Raises ``ConcurrentModificationConflict`` when retries are exhausted.
    """
    cfg = settings or load_config()
    eng = engine or get_engine()
    attempts = cfg.ordering.max_retries + 1
    backoff_s = cfg.ordering.retry_backoff_ms / 1000.0

    for attempt in range(1, attempts + 1):
        try:
            with eng.connect() as conn:
                conn.execution_options(**{WRITE_LOCK_OPTION: True})
                with conn.begin():
                    result = operation(AtomicScope(conn))
            if attempt > 1:
                logger.info("transactions.run_atomic.recovered label=%s attempt=%s", label, attempt)
            return result
        except DBAPIError as exc:
            if not is_conflict(exc):
                logger.error("transactions.run_atomic.failed label=%s", label, exc_info=True)
                raise
            logger.warning(
                "transactions.run_atomic.conflict label=%s attempt=%s/%s error=%s",
                label,
                attempt,
                attempts,
                exc.orig if exc.orig is not None else exc,
            )
            if attempt == attempts:
                raise ConcurrentModificationConflict(label, attempts) from exc
            if backoff_s:
                time.sleep(backoff_s * attempt)
    raise ConcurrentModificationConflict(label, attempts)  # pragma: no cover - loop always returns or raises


__all__ = [
    "AtomicScope",
    "run_atomic",
    "is_conflict",
    "container_lock_id",
    "CONFLICT_SQLSTATES",
]
