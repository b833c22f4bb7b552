"""FastAPI application factory."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from menu_catalog.config import load_config
from menu_catalog.db.base import get_engine
from menu_catalog.db.migrations_runner import apply_migrations
from menu_catalog.errors import CatalogError
from menu_catalog.http.problem import (
    handle_catalog_error,
    handle_http_exception,
    handle_request_validation_error,
    handle_unexpected_error,
)
from menu_catalog.http.request_id import RequestIdMiddleware
from menu_catalog.logging_setup import configure_logging
from menu_catalog.logic import events
from menu_catalog.routes import api_router, health_router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    cfg = load_config()
    events.set_buffer_size(cfg.events.buffer_size)
    if cfg.database.auto_apply_migrations:
        applied = apply_migrations(get_engine(cfg.database.dsn))
        logger.info("startup.migrations applied=%s", applied)

    app = FastAPI(title="Menu Catalog", version="0.1.0")
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(CatalogError, handle_catalog_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(health_router)
    app.include_router(api_router, prefix="/api/v1")
    return app


__all__ = ["create_app"]
