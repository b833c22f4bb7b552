"""Section and subsection data access helpers.

Read-only lookups used by the container resolver and the catalog reads.
Every function takes an open Connection so lookups run inside the caller's
transaction.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Connection

from menu_catalog.models import Section, SubSection

logger = logging.getLogger(__name__)

_SECTION_COLUMNS = "id, name, has_subsections, section_order"
_SUB_SECTION_COLUMNS = "id, section_id, name, sub_section_order"


def _sub_section_from_row(row) -> SubSection:  # type: ignore[no-untyped-def]
    return SubSection(id=int(row[0]), section_id=int(row[1]), name=str(row[2]), sub_section_order=int(row[3] or 0))


def list_sub_sections(conn: Connection, section_id: int) -> list[SubSection]:
    rows = conn.execute(
        sql_text(
            f"SELECT {_SUB_SECTION_COLUMNS} FROM sub_sections WHERE section_id = :sid ORDER BY sub_section_order ASC, id ASC"
        ),
        {"sid": int(section_id)},
    ).fetchall()
    return [_sub_section_from_row(r) for r in rows]


def _section_from_row(conn: Connection, row) -> Section:  # type: ignore[no-untyped-def]
    section_id = int(row[0])
    return Section(
        id=section_id,
        name=str(row[1]),
        has_subsections=bool(row[2]),
        section_order=int(row[3] or 0),
        sub_sections=list_sub_sections(conn, section_id),
    )


def get_section_by_id(conn: Connection, section_id: int) -> Optional[Section]:
    row = conn.execute(
        sql_text(f"SELECT {_SECTION_COLUMNS} FROM sections WHERE id = :sid"),
        {"sid": int(section_id)},
    ).fetchone()
    return _section_from_row(conn, row) if row else None


def get_section_by_name(conn: Connection, name: str) -> Optional[Section]:
    """Case-insensitive exact match on the section name."""
    row = conn.execute(
        sql_text(f"SELECT {_SECTION_COLUMNS} FROM sections WHERE lower(name) = lower(:name) ORDER BY id ASC"),
        {"name": str(name).strip()},
    ).fetchone()
    return _section_from_row(conn, row) if row else None


def list_sections(conn: Connection) -> list[Section]:
    rows = conn.execute(
        sql_text(f"SELECT {_SECTION_COLUMNS} FROM sections ORDER BY section_order ASC, id ASC")
    ).fetchall()
    return [_section_from_row(conn, r) for r in rows]


def create_section(conn: Connection, *, name: str, has_subsections: bool = False) -> Section:
    """Insert a section at the end of the section ordering."""
    row = conn.execute(sql_text("SELECT COALESCE(MAX(section_order), 0) FROM sections")).fetchone()
    order_value = int(row[0] or 0) + 1
    conn.execute(
        sql_text("INSERT INTO sections (name, has_subsections, section_order) VALUES (:name, :hs, :ord)"),
        {"name": name, "hs": bool(has_subsections), "ord": order_value},
    )
    created = get_section_by_name(conn, name)
    if created is None:  # pragma: no cover - insert just succeeded
        raise RuntimeError(f"section insert not visible: {name}")
    logger.info("sections.create id=%s name=%s has_subsections=%s", created.id, name, has_subsections)
    return created


def create_sub_section(conn: Connection, *, section_id: int, name: str) -> SubSection:
    row = conn.execute(
        sql_text("SELECT COALESCE(MAX(sub_section_order), 0) FROM sub_sections WHERE section_id = :sid"),
        {"sid": int(section_id)},
    ).fetchone()
    order_value = int(row[0] or 0) + 1
    conn.execute(
        sql_text("INSERT INTO sub_sections (section_id, name, sub_section_order) VALUES (:sid, :name, :ord)"),
        {"sid": int(section_id), "name": name, "ord": order_value},
    )
    created = conn.execute(
        sql_text(f"SELECT {_SUB_SECTION_COLUMNS} FROM sub_sections WHERE section_id = :sid AND name = :name"),
        {"sid": int(section_id), "name": name},
    ).fetchone()
    logger.info("sub_sections.create section_id=%s name=%s", section_id, name)
    return _sub_section_from_row(created)


__all__ = [
    "get_section_by_id",
    "get_section_by_name",
    "list_sections",
    "list_sub_sections",
    "create_section",
    "create_sub_section",
]
