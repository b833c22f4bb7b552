"""Pydantic models shared by the ordering engine and the tool surface."""

from menu_catalog.models.catalog import (
    DeletedSummary,
    Product,
    ProductChanges,
    ProductDraft,
    Section,
    SubSection,
    parse_price,
)

__all__ = [
    "DeletedSummary",
    "Product",
    "ProductChanges",
    "ProductDraft",
    "Section",
    "SubSection",
    "parse_price",
]
