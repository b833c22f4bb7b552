"""Read-only catalog queries exposed as agent tools.

Each call opens its own short read transaction; nothing is cached between
calls.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.engine import Engine

from menu_catalog.db.base import get_engine
from menu_catalog.errors import NotFoundError
from menu_catalog.logic import repository_products as products_repo
from menu_catalog.logic import repository_sections as sections_repo
from menu_catalog.logic.containers import Container, ContainerResolver, Ref, describe_ref
from menu_catalog.models import Product, Section

logger = logging.getLogger(__name__)


def list_sections(*, engine: Optional[Engine] = None) -> list[Section]:
    with (engine or get_engine()).connect() as conn:
        return sections_repo.list_sections(conn)


def list_products(active: Optional[bool] = None, *, engine: Optional[Engine] = None) -> list[Product]:
    with (engine or get_engine()).connect() as conn:
        return products_repo.list_products(conn, active=active)


def count_products(
    section_id: Optional[int] = None,
    sub_section_id: Optional[int] = None,
    active: Optional[bool] = None,
    *,
    engine: Optional[Engine] = None,
) -> int:
    with (engine or get_engine()).connect() as conn:
        return products_repo.count_products(conn, section_id=section_id, sub_section_id=sub_section_id, active=active)


def section_products(
    section_ref: Ref,
    sub_section_ref: Optional[Ref] = None,
    active: Optional[bool] = None,
    *,
    engine: Optional[Engine] = None,
) -> dict[str, Any]:
    """Products of one section in display order.

    Sections without subsections return a flat ``products`` list. Sections
    with subsections return ``subSections``, each holding its ordered
    products; ``sub_section_ref`` narrows the result to one subsection.
    """
    with (engine or get_engine()).connect() as conn:
        resolver = ContainerResolver(conn)
        section = resolver.resolve(section_ref)
        header = {"id": section.id, "name": section.name, "hasSubsections": section.has_subsections}

        if not resolver.requires_subsection(section):
            if sub_section_ref is not None:
                raise NotFoundError(
                    "sub_section",
                    describe_ref(sub_section_ref),
                    message=f"Section '{section.name}' has no subsections.",
                )
            items = products_repo.list_container_products(conn, Container(section.id), active=active)
            return {"section": header, "products": items}

        subs = section.sub_sections
        if sub_section_ref is not None:
            subs = [resolver.resolve_subsection(section, sub_section_ref)]
        groups = []
        for sub in subs:
            items = products_repo.list_container_products(conn, Container(section.id, sub.id), active=active)
            groups.append({"id": sub.id, "name": sub.name, "products": items})
        logger.info("catalog.section_products section_id=%s groups=%s", section.id, len(groups))
        return {"section": header, "subSections": groups}


__all__ = ["list_sections", "list_products", "count_products", "section_products"]
