"""Process-wide logging for the catalog service.

One stdout handler on the root logger; every record carries the request id
of the HTTP call that produced it (``-`` outside a request). The level comes
from ``LOG_LEVEL`` (default INFO). uvicorn's loggers share the handler and
SQLAlchemy's statement echo stays at WARNING.
"""
from __future__ import annotations
import logging
import os
from logging.config import dictConfig

from menu_catalog.http.request_id import current_request_id

LOG_FORMAT = "%(asctime)s %(levelname)s:%(name)s:[%(request_id)s] %(message)s"


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = current_request_id()
        return True


def _logging_dict(level: str) -> dict:
    shared = {"level": level, "handlers": ["stdout"], "propagate": False}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_id": {"()": RequestIdFilter}},
        "formatters": {"catalog": {"format": LOG_FORMAT}},
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "catalog",
                "filters": ["request_id"],
                "stream": "ext://sys.stdout",
            }
        },
        "root": {"level": level, "handlers": ["stdout"]},
        "loggers": {
            "menu_catalog": {"level": level},
            "uvicorn": dict(shared),
            "uvicorn.error": dict(shared),
            "uvicorn.access": dict(shared),
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    }


def configure_logging(level: str | None = None) -> None:
    """Install the stdout handler unless the root logger already has one.

    Reloaders and pytest's capture install their own handlers first; in that
    case nothing is changed.
    """
    if logging.getLogger().handlers:
        return
    resolved = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    dictConfig(_logging_dict(resolved))


__all__ = ["configure_logging", "RequestIdFilter", "LOG_FORMAT"]
