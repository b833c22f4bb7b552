"""Catalog error taxonomy.

Recoverable outcomes (``NotFoundError``, ``AmbiguousContainerError``,
``DuplicateProductError``) carry enough context for an agent to retry or ask
a clarifying question. ``ConcurrentModificationConflict`` is raised only after
the transaction coordinator has exhausted its retries. ``InvariantViolation``
signals broken shift arithmetic and is always fatal.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence


class CatalogError(Exception):
    """Base class for catalog errors.

    Attributes:
        message: human-readable message
        code: machine-readable error code
        details: optional mapping with extra context
    """

    code = "catalog_error"

    def __init__(self, message: str, details: Optional[Mapping[str, Any]] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        if code:
            self.code = code

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return self.message


class NotFoundError(CatalogError):
    """A product, section or subsection could not be resolved.

    ``candidates`` lists the valid alternatives (e.g. the subsections of the
    resolved section) so the caller can re-prompt.
    """

    code = "not_found"

    def __init__(
        self,
        kind: str,
        ref: Any,
        candidates: Optional[Sequence[Mapping[str, Any]]] = None,
        message: Optional[str] = None,
    ):
        super().__init__(message or f"{kind} not found: {ref}", details={"kind": kind, "ref": ref})
        self.kind = kind
        self.ref = ref
        self.candidates = [dict(c) for c in (candidates or [])]

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["kind"] = self.kind
        if self.candidates:
            payload["candidates"] = self.candidates
        return payload


class AmbiguousContainerError(CatalogError):
    """The target section requires a subsection and none was supplied."""

    code = "subsection_required"

    def __init__(self, section: Mapping[str, Any], candidates: Sequence[Mapping[str, Any]]):
        name = section.get("name")
        super().__init__(
            f"Section '{name}' has subsections; provide subSectionId or subSectionName.",
            details={"section": {"id": section.get("id"), "name": name}},
        )
        self.section = dict(section)
        self.candidates = [dict(c) for c in candidates]

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["subSections"] = self.candidates
        return payload


class DuplicateProductError(CatalogError):
    code = "duplicate_name"

    def __init__(self, name: str):
        super().__init__(f"A product named '{name}' already exists.", details={"name": name})
        self.name = name


class ConcurrentModificationConflict(CatalogError):
    code = "concurrent_modification"

    def __init__(self, label: str, attempts: int):
        super().__init__(
            f"{label} aborted after {attempts} attempts due to concurrent modification",
            details={"operation": label, "attempts": attempts},
        )
        self.attempts = attempts


class InvariantViolation(CatalogError):
    """Post-condition check failed; indicates a bug in the shift arithmetic."""

    code = "invariant_violation"

    def __init__(self, container_key: str, positions: Sequence[int], reason: str = "positions are not dense"):
        super().__init__(
            f"{reason} in {container_key}: {list(positions)}",
            details={"container": container_key, "positions": list(positions)},
        )
        self.container_key = container_key
        self.positions = list(positions)


__all__ = [
    "CatalogError",
    "NotFoundError",
    "AmbiguousContainerError",
    "DuplicateProductError",
    "ConcurrentModificationConflict",
    "InvariantViolation",
]
