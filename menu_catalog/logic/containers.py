"""Containers, container selectors and the container resolver.

A container is the ordered list that directly holds products: a section's
top-level list (``sub_section_id`` is None) or one of its subsections. It is
derived from a product's ``(section_id, sub_section_id)`` pair and is never
stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from sqlalchemy.engine import Connection

from menu_catalog.errors import AmbiguousContainerError, NotFoundError
from menu_catalog.logic import repository_sections
from menu_catalog.models import Section, SubSection

logger = logging.getLogger(__name__)

SECTION_ORDER = "section_order"
SUB_SECTION_ORDER = "sub_section_order"


@dataclass(frozen=True)
class Container:
    section_id: int
    sub_section_id: Optional[int] = None

    @property
    def is_subsection(self) -> bool:
        return self.sub_section_id is not None

    @property
    def key(self) -> str:
        if self.sub_section_id is None:
            return f"section:{self.section_id}"
        return f"section:{self.section_id}/sub:{self.sub_section_id}"

    @property
    def position_column(self) -> str:
        return SUB_SECTION_ORDER if self.is_subsection else SECTION_ORDER

    @property
    def unused_column(self) -> str:
        return SECTION_ORDER if self.is_subsection else SUB_SECTION_ORDER

    def as_dict(self) -> dict[str, Any]:
        return {"sectionId": self.section_id, "subSectionId": self.sub_section_id}


@dataclass(frozen=True)
class ById:
    id: int


@dataclass(frozen=True)
class ByName:
    name: str


Ref = Union[ById, ByName]


def ref_from_args(ident: Optional[int] = None, name: Optional[str] = None) -> Optional[Ref]:
    """Build a ref from an id/name pair; the id wins when both are given."""
    if ident is not None:
        return ById(int(ident))
    if name is not None and str(name).strip():
        return ByName(str(name).strip())
    return None


def describe_ref(ref: Ref) -> Union[int, str]:
    return ref.id if isinstance(ref, ById) else ref.name


@dataclass(frozen=True)
class ContainerSelector:
    section: Ref
    sub_section: Optional[Ref] = None

    @classmethod
    def from_args(
        cls,
        section_id: Optional[int] = None,
        section_name: Optional[str] = None,
        sub_section_id: Optional[int] = None,
        sub_section_name: Optional[str] = None,
    ) -> Optional["ContainerSelector"]:
        section = ref_from_args(section_id, section_name)
        if section is None:
            return None
        return cls(section=section, sub_section=ref_from_args(sub_section_id, sub_section_name))


class ContainerResolver:
    """Resolve selectors to sections, subsections and containers.

    Read-only; bound to the caller's Connection so lookups see the same
    transaction as the subsequent shifts.
    """

    def __init__(self, conn: Connection):
        self.conn = conn

    def resolve(self, ref: Ref) -> Section:
        if isinstance(ref, ById):
            section = repository_sections.get_section_by_id(self.conn, ref.id)
        else:
            section = repository_sections.get_section_by_name(self.conn, ref.name)
        if section is None:
            available = [
                {"id": s.id, "name": s.name, "hasSubsections": s.has_subsections}
                for s in repository_sections.list_sections(self.conn)
            ]
            logger.info("containers.resolve.section_not_found ref=%s", describe_ref(ref))
            raise NotFoundError("section", describe_ref(ref), candidates=available)
        return section

    def resolve_subsection(self, section: Section, ref: Ref) -> SubSection:
        match: Optional[SubSection] = None
        for sub in section.sub_sections:
            if isinstance(ref, ById) and sub.id == ref.id:
                match = sub
                break
            if isinstance(ref, ByName) and sub.name.lower() == ref.name.lower():
                match = sub
                break
        if match is None:
            logger.info(
                "containers.resolve.sub_section_not_found section_id=%s ref=%s",
                section.id,
                describe_ref(ref),
            )
            message = None
            if not section.has_subsections:
                message = f"Section '{section.name}' has no subsections."
            raise NotFoundError("sub_section", describe_ref(ref), candidates=section.candidates(), message=message)
        return match

    @staticmethod
    def requires_subsection(section: Section) -> bool:
        return bool(section.has_subsections)

    def resolve_container(self, selector: ContainerSelector) -> tuple[Section, Container]:
        """Resolve a selector to its section and concrete container.

        Raises ``AmbiguousContainerError`` when the section requires a
        subsection and the selector names none.
        """
        section = self.resolve(selector.section)
        if selector.sub_section is None:
            if self.requires_subsection(section):
                raise AmbiguousContainerError(section.model_dump(include={"id", "name"}), section.candidates())
            return section, Container(section.id)
        if not self.requires_subsection(section):
            raise NotFoundError(
                "sub_section",
                describe_ref(selector.sub_section),
                message=f"Section '{section.name}' has no subsections.",
            )
        sub = self.resolve_subsection(section, selector.sub_section)
        return section, Container(section.id, sub.id)


__all__ = [
    "Container",
    "ById",
    "ByName",
    "Ref",
    "ref_from_args",
    "describe_ref",
    "ContainerSelector",
    "ContainerResolver",
    "SECTION_ORDER",
    "SUB_SECTION_ORDER",
]
