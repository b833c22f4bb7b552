"""Liveness/readiness check."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter
from sqlalchemy import text as sql_text
from sqlalchemy.exc import SQLAlchemyError

from menu_catalog.db.base import get_engine

router = APIRouter()
logger = logging.getLogger(__name__)

_STARTED = time.monotonic()


@router.get("/healthz")
def healthz() -> dict:
    db_ok = True
    try:
        with get_engine().connect() as conn:
            conn.execute(sql_text("SELECT 1")).fetchone()
    except SQLAlchemyError:
        logger.error("Health DB check failed", exc_info=True)
        db_ok = False
    return {"ok": db_ok, "db": db_ok, "uptime": round(time.monotonic() - _STARTED, 3)}


__all__ = ["router"]
