"""SQLAlchemy engine construction.

The service targets PostgreSQL in production and SQLite for local development
and CI. No declarative models are defined; repositories issue textual SQL
through the shared Engine.

SQLite transaction control is taken over from pysqlite so that write
transactions can open with ``BEGIN IMMEDIATE``: a connection carrying the
``write_lock`` execution option holds the database write lock from its first
statement, which serializes concurrent container mutations.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from menu_catalog.config import load_config

logger = logging.getLogger(__name__)

WRITE_LOCK_OPTION = "write_lock"

_ENGINE: Engine | None = None
_ENGINE_URL: str | None = None


def _db_url() -> str:
    return load_config().database.dsn


def _install_sqlite_hooks(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        # Disable pysqlite's implicit BEGIN; the begin hook below emits it.
        dbapi_connection.isolation_level = None
        cur = dbapi_connection.cursor()
        try:
            cur.execute("PRAGMA foreign_keys=ON")
        finally:
            cur.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        if conn.get_execution_options().get(WRITE_LOCK_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def get_engine(url: str | None = None, busy_timeout_s: Optional[float] = None) -> Engine:
    """Return a cached SQLAlchemy Engine for the given URL.

    A new Engine is built when the resolved URL changes. In-memory SQLite
    uses a StaticPool so every session sees the same database.
    """
    global _ENGINE, _ENGINE_URL
    resolved_url = url or _db_url()

    if _ENGINE is None or _ENGINE_URL != resolved_url:
        kwargs: dict = {"future": True, "pool_pre_ping": True}
        is_sqlite = resolved_url.startswith("sqlite")
        if is_sqlite:
            timeout = busy_timeout_s if busy_timeout_s is not None else load_config().database.sqlite_busy_timeout_s
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": float(timeout)}
            if ":memory:" in resolved_url:
                kwargs["poolclass"] = StaticPool
        if _ENGINE is not None:
            _ENGINE.dispose()
        engine = create_engine(resolved_url, **kwargs)
        if is_sqlite:
            _install_sqlite_hooks(engine)
        logger.info("db.engine.created dialect=%s", engine.dialect.name)
        _ENGINE = engine
        _ENGINE_URL = resolved_url

    return _ENGINE


def reset_engine() -> None:
    """Dispose the cached Engine; the next ``get_engine`` call rebuilds it."""
    global _ENGINE, _ENGINE_URL
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _ENGINE_URL = None


__all__ = ["WRITE_LOCK_OPTION", "get_engine", "reset_engine"]
