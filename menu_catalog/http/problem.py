"""Problem+JSON utilities and global exception handlers.

Defines the RFC 7807 media type and handler callables that produce
application/problem+json responses for HTTP errors, request validation
errors, catalog errors and unexpected failures.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from menu_catalog.config.error_mapping import CATALOG_ERROR_MAP, DEFAULT_ERROR
from menu_catalog.errors import CatalogError, InvariantViolation
from menu_catalog.http.request_id import current_request_id

PROBLEM_MEDIA_TYPE = "application/problem+json"

logger = logging.getLogger(__name__)


def problem(status: int, title: str, detail: str = "", code: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"type": "about:blank", "title": title, "status": int(status)}
    if detail:
        body["detail"] = detail
    if code:
        body["code"] = code
    body.update(extra)
    return body


def problem_response(body: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(body, status_code=int(body.get("status", 500)), media_type=PROBLEM_MEDIA_TYPE)


async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:  # noqa: D401
    status_code = int(getattr(exc, "status_code", 500) or 500)
    if isinstance(exc.detail, dict):
        body = dict(exc.detail)
        body.setdefault("status", status_code)
        body.setdefault("title", "Error")
    else:
        body = problem(status_code, "Error", str(exc.detail or ""))
    headers = {str(k): str(v) for k, v in (exc.headers or {}).items()}
    return JSONResponse(body, status_code=status_code, media_type=PROBLEM_MEDIA_TYPE, headers=headers or None)


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:  # noqa: D401
    errors = [
        {"path": "$." + ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg", "")}
        for e in exc.errors()
    ]
    return problem_response(problem(422, "Invalid Request", "Request validation failed", errors=errors))


async def handle_catalog_error(request: Request, exc: CatalogError) -> JSONResponse:  # noqa: D401
    mapping = CATALOG_ERROR_MAP.get(exc.code, DEFAULT_ERROR)
    if isinstance(exc, InvariantViolation):
        logger.error("invariant_violation request_id=%s detail=%s", current_request_id(), exc.message, exc_info=exc)
        body = problem(mapping["status"], mapping["title"], "Ordering invariant check failed", code=exc.code)
    else:
        logger.info("catalog_error code=%s detail=%s", exc.code, exc.message)
        body = problem(mapping["status"], mapping["title"], exc.message, code=exc.code)
    return problem_response(body)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:  # noqa: D401
    logger.error("unexpected_error request_id=%s", current_request_id(), exc_info=exc)
    return problem_response(problem(500, "Internal Server Error"))


__all__ = [
    "PROBLEM_MEDIA_TYPE",
    "problem",
    "problem_response",
    "handle_http_exception",
    "handle_request_validation_error",
    "handle_catalog_error",
    "handle_unexpected_error",
]
