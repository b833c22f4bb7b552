"""Agent tool routes.

``GET /tools`` lists the callable tools with their argument schemas;
``POST /tools/{name}`` runs one tool with the JSON body as its arguments.
Handlers are synchronous so FastAPI runs them in its threadpool; each call
runs its own store transaction.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse

from menu_catalog.config.error_mapping import TOOL_ARGUMENTS_INVALID, TOOL_NOT_FOUND
from menu_catalog.http.problem import problem, problem_response
from menu_catalog.logic.tools import ToolArgumentsError, UnknownToolError, call_tool, list_tools

# The parent application mounts this router under '/api/v1'.
router = APIRouter(prefix="/tools")
logger = logging.getLogger(__name__)


@router.get("")
def get_tools() -> Dict[str, Any]:
    return {"tools": list_tools()}


@router.post("/{name}")
def post_tool(name: str, arguments: Optional[Dict[str, Any]] = Body(default=None)) -> JSONResponse:
    try:
        result = call_tool(name, arguments or {})
    except UnknownToolError as exc:
        return problem_response(
            problem(TOOL_NOT_FOUND["status"], TOOL_NOT_FOUND["title"], str(exc), code=TOOL_NOT_FOUND["code"])
        )
    except ToolArgumentsError as exc:
        return problem_response(
            problem(
                TOOL_ARGUMENTS_INVALID["status"],
                TOOL_ARGUMENTS_INVALID["title"],
                str(exc),
                code=TOOL_ARGUMENTS_INVALID["code"],
                errors=exc.errors,
            )
        )
    logger.info("tools.route.result tool=%s status=%s", name, result.get("status"))
    return JSONResponse(result, status_code=200)


__all__ = ["router"]
