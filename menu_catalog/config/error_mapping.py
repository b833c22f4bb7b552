"""Central mapping from catalog error codes to problem+json titles and HTTP statuses.

Route and handler modules import from here instead of hardcoding strings or
numbers. Recoverable outcomes (not found, clarification) are tool results and
never reach this mapping.
"""

from __future__ import annotations

CATALOG_ERROR_MAP = {
    "not_found": {"title": "Not Found", "status": 404},
    "subsection_required": {"title": "Subsection Required", "status": 409},
    "duplicate_name": {"title": "Conflict", "status": 409},
    "concurrent_modification": {"title": "Conflict", "status": 409},
    "invariant_violation": {"title": "Internal Server Error", "status": 500},
}

TOOL_NOT_FOUND = {"code": "tool_not_found", "title": "Not Found", "status": 404}
TOOL_ARGUMENTS_INVALID = {"code": "tool_arguments_invalid", "title": "Invalid Request", "status": 422}

DEFAULT_ERROR = {"title": "Error", "status": 500}

__all__ = ["CATALOG_ERROR_MAP", "TOOL_NOT_FOUND", "TOOL_ARGUMENTS_INVALID", "DEFAULT_ERROR"]
