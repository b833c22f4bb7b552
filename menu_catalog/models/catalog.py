"""Pydantic models for catalog rows and engine results."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, field_serializer, field_validator


def parse_price(value: Union[int, float, str, Decimal]) -> Decimal:
    """Accept a number or a string such as ``"$ 1.500"``; must be positive.

    Strings are stripped of everything except digits, ``.`` and ``-``.
    """
    if isinstance(value, bool):
        raise ValueError("price must be a number")
    if isinstance(value, str):
        cleaned = re.sub(r"[^\d.-]", "", value)
        try:
            parsed = Decimal(cleaned)
        except InvalidOperation:
            raise ValueError("price must be a positive number") from None
    else:
        parsed = Decimal(str(value))
    if not parsed.is_finite() or parsed <= 0:
        raise ValueError("price must be a positive number")
    return parsed


def _clean_name(value: str) -> str:
    if not value.strip():
        raise ValueError("name must be a non-empty string")
    return value.strip()


class SubSection(BaseModel):
    id: int
    section_id: int
    name: str
    sub_section_order: int = 0


class Section(BaseModel):
    id: int
    name: str
    has_subsections: bool = False
    section_order: int = 0
    sub_sections: List[SubSection] = Field(default_factory=list)

    def candidates(self) -> list[dict]:
        return [{"id": s.id, "name": s.name} for s in self.sub_sections]


class Product(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    active: bool = True
    section_id: int
    sub_section_id: Optional[int] = None
    section_order: int = 0
    sub_section_order: int = 0

    @property
    def position(self) -> int:
        return self.sub_section_order if self.sub_section_id is not None else self.section_order

    @field_serializer("price")
    def _serialize_price(self, price: Decimal) -> float:
        return float(price)


class ProductDraft(BaseModel):
    name: str = Field(min_length=1)
    price: Decimal
    description: Optional[str] = None
    active: bool = True

    @field_validator("name")
    @classmethod
    def name_must_be_non_blank(cls, v: str) -> str:
        return _clean_name(v)

    @field_validator("price", mode="before")
    @classmethod
    def price_must_be_positive(cls, v: Any) -> Decimal:
        return parse_price(v)


class ProductChanges(BaseModel):
    """Plain field edits applied alongside a move or reorder."""

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def name_must_be_non_blank(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _clean_name(v)

    @field_validator("price", mode="before")
    @classmethod
    def price_must_be_positive(cls, v: Any) -> Optional[Decimal]:
        return None if v is None else parse_price(v)

    def as_columns(self) -> dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class DeletedSummary(BaseModel):
    deleted_id: int
    name: str
    section_id: int
    sub_section_id: Optional[int] = None
    position: int
    compacted: int


__all__ = [
    "parse_price",
    "Section",
    "SubSection",
    "Product",
    "ProductDraft",
    "ProductChanges",
    "DeletedSummary",
]
