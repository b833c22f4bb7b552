"""Database bootstrap: cached engine construction and the SQL migrations runner.

Repositories receive a Connection from the transaction coordinator; no ORM
models are defined.
"""

from menu_catalog.db.base import WRITE_LOCK_OPTION, get_engine, reset_engine
from menu_catalog.db.migrations_runner import apply_migrations

__all__ = [
    "WRITE_LOCK_OPTION",
    "get_engine",
    "reset_engine",
    "apply_migrations",
]
