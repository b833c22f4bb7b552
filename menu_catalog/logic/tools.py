"""Agent-facing tool registry.

Every tool has a name, a description written for the calling agent, a JSON
schema for its arguments (validated with jsonschema before the handler runs)
and a handler returning a JSON-serialisable envelope:

- ``{"status": "ok", ...}`` on success,
- ``{"status": "not_found", ...}`` with candidates when a lookup fails,
- ``{"status": "clarification_needed", "subSections": [...]}`` when a
  section needs a subsection,
- ``{"status": "error", ...}`` for recoverable input conflicts.

``ConcurrentModificationConflict`` and ``InvariantViolation`` are not
converted here; the HTTP layer maps them to problem+json.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from jsonschema import Draft202012Validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.engine import Engine

from menu_catalog.config import AppConfig
from menu_catalog.errors import AmbiguousContainerError, DuplicateProductError, NotFoundError
from menu_catalog.logic import catalog_reads, ordering
from menu_catalog.logic.containers import ContainerSelector, Ref, ref_from_args
from menu_catalog.models import Product, ProductChanges, ProductDraft, Section

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any], Optional[Engine], Optional[AppConfig]], Dict[str, Any]]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: Handler

    def describe(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


class UnknownToolError(LookupError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolArgumentsError(ValueError):
    """Arguments failed schema or field validation."""

    def __init__(self, tool: str, errors: List[Dict[str, Any]]):
        super().__init__(f"Invalid arguments for {tool}")
        self.tool = tool
        self.errors = errors


TOOLS: Dict[str, Tool] = {}


def register(name: str, description: str, input_schema: Dict[str, Any]) -> Callable[[Handler], Handler]:
    Draft202012Validator.check_schema(input_schema)

    def decorator(fn: Handler) -> Handler:
        TOOLS[name] = Tool(name=name, description=description.strip(), input_schema=input_schema, handler=fn)
        return fn

    return decorator


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------

def product_payload(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": float(product.price),
        "active": product.active,
        "sectionId": product.section_id,
        "subSectionId": product.sub_section_id,
        "order": product.section_order,
        "subSectionOrder": product.sub_section_order,
        "position": product.position,
    }


def section_payload(section: Section) -> Dict[str, Any]:
    return {
        "id": section.id,
        "name": section.name,
        "hasSubsections": section.has_subsections,
        "order": section.section_order,
        "subSections": [{"id": s.id, "name": s.name, "order": s.sub_section_order} for s in section.sub_sections],
    }


def _selector(args: Dict[str, Any]) -> Optional[ContainerSelector]:
    return ContainerSelector.from_args(
        section_id=args.get("sectionId"),
        section_name=args.get("sectionName"),
        sub_section_id=args.get("subSectionId"),
        sub_section_name=args.get("subSectionName"),
    )


def _required_selector(tool: str, args: Dict[str, Any]) -> ContainerSelector:
    selector = _selector(args)
    if selector is None:
        raise ToolArgumentsError(tool, [{"path": "$.sectionId", "message": "sectionId or a non-blank sectionName is required"}])
    return selector


def _product_ref(tool: str, args: Dict[str, Any]) -> Ref:
    ref = ref_from_args(args.get("id"), args.get("name"))
    if ref is None:
        raise ToolArgumentsError(tool, [{"path": "$.id", "message": "id or a non-blank name is required"}])
    return ref


def _field_errors(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {"path": "$." + ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

_ID = {"type": "integer", "minimum": 1}
_NAME = {"type": "string", "minLength": 1, "pattern": "\\S"}
_SECTION_PROPS = {
    "sectionId": dict(_ID, description="Target section id"),
    "sectionName": dict(_NAME, description="Target section name (case-insensitive)"),
    "subSectionId": dict(_ID, description="Target subsection id"),
    "subSectionName": dict(_NAME, description="Target subsection name (case-insensitive)"),
}
_PRODUCT_REF_PROPS = {
    "id": dict(_ID, description="Product id"),
    "name": dict(_NAME, description="Exact product name"),
}
_REQUIRE_PRODUCT_REF = [{"required": ["id"]}, {"required": ["name"]}]
_REQUIRE_SECTION = [{"required": ["sectionId"]}, {"required": ["sectionName"]}]


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@register(
    "getSections",
    """
Returns the menu sections in display order, each with its subsections.
Use it to learn valid section and subsection names before creating or moving products.
""",
    {"type": "object", "properties": {}, "additionalProperties": False},
)
def _get_sections(args: Dict[str, Any], engine: Optional[Engine], settings: Optional[AppConfig]) -> Dict[str, Any]:
    return {"status": "ok", "sections": [section_payload(s) for s in catalog_reads.list_sections(engine=engine)]}


@register(
    "getProducts",
    """
Returns every product ordered by section, section order, subsection and subsection order.
Optional 'active' filters to active (true) or inactive (false) products.
""",
    {
        "type": "object",
        "properties": {"active": {"type": "boolean"}},
        "additionalProperties": False,
    },
)
def _get_products(args: Dict[str, Any], engine: Optional[Engine], settings: Optional[AppConfig]) -> Dict[str, Any]:
    items = catalog_reads.list_products(args.get("active"), engine=engine)
    return {"status": "ok", "products": [product_payload(p) for p in items]}


@register(
    "getProductsCount",
    """
Returns the number of products. Optional filters: sectionId, subSectionId and
active (true for active products, false for inactive ones).
""",
    {
        "type": "object",
        "properties": {"sectionId": _ID, "subSectionId": _ID, "active": {"type": "boolean"}},
        "additionalProperties": False,
    },
)
def _get_products_count(args: Dict[str, Any], engine: Optional[Engine], settings: Optional[AppConfig]) -> Dict[str, Any]:
    count = catalog_reads.count_products(
        args.get("sectionId"), args.get("subSectionId"), args.get("active"), engine=engine
    )
    return {"status": "ok", "count": count}


@register(
    "getProductsBySection",
    """
Returns the products of one section (by id or case-insensitive name) in order.
Sections with subsections are grouped by subsection; 'subSectionId' or 'subSectionName' narrows to one.
""",
    {
        "type": "object",
        "properties": dict(_SECTION_PROPS, active={"type": "boolean"}),
        "anyOf": _REQUIRE_SECTION,
        "additionalProperties": False,
    },
)
def _get_products_by_section(args: Dict[str, Any], engine: Optional[Engine], settings: Optional[AppConfig]) -> Dict[str, Any]:
    selector = _required_selector("getProductsBySection", args)
    result = catalog_reads.section_products(selector.section, selector.sub_section, args.get("active"), engine=engine)
    out: Dict[str, Any] = {"status": "ok", "section": result["section"]}
    if "products" in result:
        out["products"] = [product_payload(p) for p in result["products"]]
    else:
        out["subSections"] = [
            {"id": g["id"], "name": g["name"], "products": [product_payload(p) for p in g["products"]]}
            for g in result["subSections"]
        ]
    return out


@register(
    "createProduct",
    """
Creates a product at the end of its section (or subsection) ordering.
Requires name, price (number or numeric string) and sectionId or sectionName.
If the section has subsections, subSectionId or subSectionName is required; without it
the tool returns the valid subsections so you can ask the user which one to use.
""",
    {
        "type": "object",
        "required": ["name", "price"],
        "properties": dict(
            _SECTION_PROPS,
            name=dict(_NAME, description="Product name"),
            price={"type": ["number", "string"], "description": "Positive price"},
            description={"type": "string"},
            active={"type": "boolean"},
        ),
        "anyOf": _REQUIRE_SECTION,
        "additionalProperties": False,
    },
)
def _create_product(args: Dict[str, Any], engine: Optional[Engine], settings: Optional[AppConfig]) -> Dict[str, Any]:
    try:
        draft = ProductDraft(
            name=args["name"],
            price=args["price"],
            description=args.get("description"),
            active=args.get("active", True),
        )
    except PydanticValidationError as exc:
        raise ToolArgumentsError("createProduct", _field_errors(exc)) from exc
    selector = _required_selector("createProduct", args)
    product = ordering.create_product(draft, selector, engine=engine, settings=settings)
    return {"status": "ok", "product": product_payload(product)}


@register(
    "moveProduct",
    """
Moves a product (by id or exact name) to another section or subsection.
The product is appended at the end of the destination; the source is compacted.
Moving a product to the container it is already in changes nothing.
""",
    {
        "type": "object",
        "properties": dict(_PRODUCT_REF_PROPS, **_SECTION_PROPS),
        "allOf": [{"anyOf": _REQUIRE_PRODUCT_REF}, {"anyOf": _REQUIRE_SECTION}],
        "additionalProperties": False,
    },
)
def _move_product(args: Dict[str, Any], engine: Optional[Engine], settings: Optional[AppConfig]) -> Dict[str, Any]:
    selector = _required_selector("moveProduct", args)
    product = ordering.move_product(_product_ref("moveProduct", args), selector, engine=engine, settings=settings)
    return {"status": "ok", "product": product_payload(product)}


@register(
    "reorderProduct",
    """
Places a product (by id or exact name) at 'position' (1-based) within its current
section or subsection. Positions beyond the end are clamped to the last slot.
To change section or subsection use moveProduct.
""",
    {
        "type": "object",
        "required": ["position"],
        "properties": dict(_PRODUCT_REF_PROPS, position={"type": "integer", "minimum": 1}),
        "anyOf": _REQUIRE_PRODUCT_REF,
        "additionalProperties": False,
    },
)
def _reorder_product(args: Dict[str, Any], engine: Optional[Engine], settings: Optional[AppConfig]) -> Dict[str, Any]:
    product = ordering.reorder_product(_product_ref("reorderProduct", args), int(args["position"]), engine=engine, settings=settings)
    return {"status": "ok", "product": product_payload(product)}


@register(
    "updateProduct",
    """
Updates a product (by id or exact name): newName, description, price, active.
Giving a different section/subsection moves it to the end of that container and
ignores 'position'. Giving 'position' alone reorders it within its current container.
""",
    {
        "type": "object",
        "properties": dict(
            _PRODUCT_REF_PROPS,
            **_SECTION_PROPS,
            newName=_NAME,
            description={"type": "string"},
            price={"type": ["number", "string"]},
            active={"type": "boolean"},
            position={"type": "integer", "minimum": 1},
        ),
        "anyOf": _REQUIRE_PRODUCT_REF,
        "additionalProperties": False,
    },
)
def _update_product(args: Dict[str, Any], engine: Optional[Engine], settings: Optional[AppConfig]) -> Dict[str, Any]:
    try:
        changes = ProductChanges(
            name=args.get("newName"),
            description=args.get("description"),
            price=args.get("price"),
            active=args.get("active"),
        )
    except PydanticValidationError as exc:
        raise ToolArgumentsError("updateProduct", _field_errors(exc)) from exc
    if _selector(args) is None and ("subSectionId" in args or "subSectionName" in args):
        raise ToolArgumentsError(
            "updateProduct",
            [{"path": "$.sectionId", "message": "sectionId or sectionName is required with a subsection"}],
        )
    outcome = ordering.update_product(
        _product_ref("updateProduct", args),
        changes,
        selector=_selector(args),
        position=args.get("position"),
        engine=engine,
        settings=settings,
    )
    return {
        "status": "ok",
        "product": product_payload(outcome.product),
        "moved": outcome.moved,
        "reordered": outcome.reordered,
    }


@register(
    "deleteProduct",
    """
Deletes a product by id or exact name and compacts the positions of the
section or subsection it belonged to.
""",
    {
        "type": "object",
        "properties": dict(_PRODUCT_REF_PROPS),
        "anyOf": _REQUIRE_PRODUCT_REF,
        "additionalProperties": False,
    },
)
def _delete_product(args: Dict[str, Any], engine: Optional[Engine], settings: Optional[AppConfig]) -> Dict[str, Any]:
    summary = ordering.delete_product(_product_ref("deleteProduct", args), engine=engine, settings=settings)
    return {
        "status": "ok",
        "deletedId": summary.deleted_id,
        "name": summary.name,
        "sectionId": summary.section_id,
        "subSectionId": summary.sub_section_id,
        "position": summary.position,
        "compacted": summary.compacted,
    }


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def list_tools() -> List[Dict[str, Any]]:
    return [tool.describe() for tool in TOOLS.values()]


def validate_arguments(tool: Tool, args: Any) -> List[Dict[str, Any]]:
    validator = Draft202012Validator(tool.input_schema)
    errors = []
    for err in sorted(validator.iter_errors(args), key=lambda e: list(e.absolute_path)):
        path = "$" + "".join(f".{p}" if isinstance(p, str) else f"[{p}]" for p in err.absolute_path)
        errors.append({"path": path, "message": err.message})
    return errors


def call_tool(
    name: str,
    args: Optional[Dict[str, Any]] = None,
    *,
    engine: Optional[Engine] = None,
    settings: Optional[AppConfig] = None,
) -> Dict[str, Any]:
    """Validate ``args`` and run tool ``name``, converting recoverable outcomes to envelopes."""
    tool = TOOLS.get(name)
    if tool is None:
        raise UnknownToolError(name)
    arguments = {} if args is None else args
    errors = validate_arguments(tool, arguments)
    if errors:
        logger.info("tools.call.invalid_arguments tool=%s errors=%s", name, len(errors))
        raise ToolArgumentsError(name, errors)
    logger.info("tools.call tool=%s args=%s", name, sorted(arguments))
    try:
        return tool.handler(arguments, engine, settings)
    except AmbiguousContainerError as exc:
        logger.info("tools.call.clarification tool=%s section=%s", name, exc.section.get("name"))
        return {
            "status": "clarification_needed",
            "message": exc.message,
            "section": exc.details.get("section"),
            "subSections": exc.candidates,
        }
    except NotFoundError as exc:
        logger.info("tools.call.not_found tool=%s kind=%s ref=%s", name, exc.kind, exc.ref)
        payload: Dict[str, Any] = {"status": "not_found", "kind": exc.kind, "ref": exc.ref, "message": exc.message}
        if exc.candidates:
            payload["candidates"] = exc.candidates
        return payload
    except DuplicateProductError as exc:
        return {"status": "error", "code": exc.code, "message": exc.message}


__all__ = [
    "Tool",
    "TOOLS",
    "UnknownToolError",
    "ToolArgumentsError",
    "register",
    "list_tools",
    "validate_arguments",
    "call_tool",
    "product_payload",
    "section_payload",
]
