"""Product data access helpers.

Encapsulates the SQL used by the ordering engine and the catalog reads. All
functions take an open Connection; transaction boundaries belong to the
caller. Position shifts are applied as one bulk UPDATE per shift range, so a
plan touches each affected row exactly once.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy import Numeric, bindparam
from sqlalchemy import text as sql_text
from sqlalchemy.engine import Connection

from menu_catalog.logic.containers import SECTION_ORDER, SUB_SECTION_ORDER, ById, ByName, Container, Ref
from menu_catalog.logic.positions import ShiftPlan
from menu_catalog.models import Product, ProductDraft

logger = logging.getLogger(__name__)

_PRODUCT_COLUMNS = (
    "id, name, description, price, active, section_id, sub_section_id, section_order, sub_section_order"
)
_EDITABLE_COLUMNS = {"name", "description", "price", "active"}
_POSITION_COLUMNS = {SECTION_ORDER, SUB_SECTION_ORDER}


def _container_filter(container: Container) -> tuple[str, dict[str, Any]]:
    if container.sub_section_id is None:
        return "section_id = :c_sid AND sub_section_id IS NULL", {"c_sid": container.section_id}
    return (
        "section_id = :c_sid AND sub_section_id = :c_sub",
        {"c_sid": container.section_id, "c_sub": container.sub_section_id},
    )


def _position_column(container: Container) -> str:
    col = container.position_column
    if col not in _POSITION_COLUMNS:  # pragma: no cover - Container only yields known columns
        raise ValueError(f"unknown position column: {col}")
    return col


def product_from_row(row: Mapping[str, Any]) -> Product:
    sub = row["sub_section_id"]
    return Product(
        id=int(row["id"]),
        name=str(row["name"]),
        description=row["description"],
        price=Decimal(str(row["price"])),
        active=bool(row["active"]),
        section_id=int(row["section_id"]),
        sub_section_id=int(sub) if sub is not None else None,
        section_order=int(row["section_order"] or 0),
        sub_section_order=int(row["sub_section_order"] or 0),
    )


def get_product(conn: Connection, ref: Ref, *, for_update: bool = False) -> Optional[Product]:
    """Return the product named by ``ref`` (id, or exact name), or None.

    ``for_update`` row-locks the product on dialects that support it.
    """
    lock = " FOR UPDATE" if for_update and conn.dialect.name != "sqlite" else ""
    if isinstance(ref, ById):
        stmt = sql_text(f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE id = :pid{lock}")
        params: dict[str, Any] = {"pid": int(ref.id)}
    else:
        stmt = sql_text(f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE name = :name{lock}")
        params = {"name": ref.name}
    row = conn.execute(stmt, params).mappings().fetchone()
    return product_from_row(row) if row else None


def name_taken(conn: Connection, name: str, exclude_id: Optional[int] = None) -> bool:
    row = conn.execute(
        sql_text("SELECT id FROM products WHERE name = :name"),
        {"name": name},
    ).fetchone()
    return bool(row) and (exclude_id is None or int(row[0]) != int(exclude_id))


def max_position(conn: Connection, container: Container) -> int:
    """Current max position in ``container``, read fresh inside the transaction."""
    where, params = _container_filter(container)
    col = _position_column(container)
    row = conn.execute(
        sql_text(f"SELECT COALESCE(MAX({col}), 0) FROM products WHERE {where}"),
        params,
    ).fetchone()
    return int(row[0]) if row and row[0] is not None else 0


def count_members(conn: Connection, container: Container) -> int:
    where, params = _container_filter(container)
    row = conn.execute(sql_text(f"SELECT COUNT(*) FROM products WHERE {where}"), params).fetchone()
    return int(row[0]) if row and row[0] is not None else 0


def member_positions(conn: Connection, container: Container) -> dict[int, int]:
    """Return ``{product_id: position}`` for every member, ordered by position."""
    where, params = _container_filter(container)
    col = _position_column(container)
    rows = conn.execute(
        sql_text(f"SELECT id, {col} FROM products WHERE {where} ORDER BY {col} ASC, id ASC"),
        params,
    ).fetchall()
    return {int(r[0]): int(r[1] or 0) for r in rows}


def stray_unused_positions(conn: Connection, container: Container) -> list[int]:
    """Return ids of members whose unused position column is not neutral (0)."""
    where, params = _container_filter(container)
    rows = conn.execute(
        sql_text(f"SELECT id FROM products WHERE {where} AND {container.unused_column} <> 0 ORDER BY id ASC"),
        params,
    ).fetchall()
    return [int(r[0]) for r in rows]


def lock_member_rows(conn: Connection, container: Container) -> None:
    """Row-lock every member of ``container`` (SELECT ... FOR UPDATE)."""
    where, params = _container_filter(container)
    conn.execute(sql_text(f"SELECT id FROM products WHERE {where} FOR UPDATE"), params).fetchall()


def apply_shifts(
    conn: Connection,
    container: Container,
    plan: ShiftPlan,
    *,
    exclude_id: Optional[int] = None,
) -> int:
    """Apply ``plan``'s range shifts to the other members of ``container``.

    Returns the number of rows shifted. The moving product is excluded by id.
    """
    if plan.noop:
        return 0
    where, base_params = _container_filter(container)
    col = _position_column(container)
    shifted = 0
    for shift in plan.shifts:
        clauses = [where, f"{col} >= :lo"]
        params: dict[str, Any] = dict(base_params, lo=int(shift.lower), delta=int(shift.delta))
        if shift.upper is not None:
            clauses.append(f"{col} <= :hi")
            params["hi"] = int(shift.upper)
        if exclude_id is not None:
            clauses.append("id <> :xid")
            params["xid"] = int(exclude_id)
        result = conn.execute(
            sql_text(f"UPDATE products SET {col} = {col} + :delta WHERE {' AND '.join(clauses)}"),
            params,
        )
        shifted += int(result.rowcount or 0)
    return shifted


def insert_product(conn: Connection, draft: ProductDraft, container: Container, position: int) -> Product:
    """Insert a product at ``position`` in ``container``; the unused column is 0."""
    values = {
        "name": draft.name,
        "description": draft.description,
        "price": draft.price,
        "active": bool(draft.active),
        "sid": container.section_id,
        "sub": container.sub_section_id,
        SECTION_ORDER: 0,
        SUB_SECTION_ORDER: 0,
    }
    values[container.position_column] = int(position)
    stmt = sql_text(
        "INSERT INTO products (name, description, price, active, section_id, sub_section_id, section_order, sub_section_order) "
        "VALUES (:name, :description, :price, :active, :sid, :sub, :section_order, :sub_section_order)"
    ).bindparams(bindparam("price", type_=Numeric(12, 2)))
    conn.execute(stmt, values)
    created = get_product(conn, ByName(draft.name))
    if created is None:  # pragma: no cover - insert just succeeded
        raise RuntimeError(f"product insert not visible: {draft.name}")
    return created


def place_product(conn: Connection, product_id: int, container: Container, position: int) -> None:
    """Assign ``product_id`` to ``container`` at ``position`` and zero the unused column."""
    conn.execute(
        sql_text(
            f"UPDATE products SET section_id = :sid, sub_section_id = :sub, "
            f"{container.position_column} = :pos, {container.unused_column} = 0 WHERE id = :pid"
        ),
        {
            "sid": container.section_id,
            "sub": container.sub_section_id,
            "pos": int(position),
            "pid": int(product_id),
        },
    )


def set_position(conn: Connection, product_id: int, container: Container, position: int) -> None:
    col = _position_column(container)
    conn.execute(
        sql_text(f"UPDATE products SET {col} = :pos WHERE id = :pid"),
        {"pos": int(position), "pid": int(product_id)},
    )


def update_fields(conn: Connection, product_id: int, columns: Mapping[str, Any]) -> None:
    """Update plain product fields (name, description, price, active)."""
    unknown = set(columns) - _EDITABLE_COLUMNS
    if unknown:
        raise ValueError(f"not editable: {sorted(unknown)}")
    if not columns:
        return
    assignments = ", ".join(f"{c} = :{c}" for c in sorted(columns))
    stmt = sql_text(f"UPDATE products SET {assignments} WHERE id = :pid")
    if "price" in columns:
        stmt = stmt.bindparams(bindparam("price", type_=Numeric(12, 2)))
    params = dict(columns, pid=int(product_id))
    if "active" in params:
        params["active"] = bool(params["active"])
    conn.execute(stmt, params)


def delete_product_row(conn: Connection, product_id: int) -> int:
    result = conn.execute(sql_text("DELETE FROM products WHERE id = :pid"), {"pid": int(product_id)})
    return int(result.rowcount or 0)


def count_products(
    conn: Connection,
    *,
    section_id: Optional[int] = None,
    sub_section_id: Optional[int] = None,
    active: Optional[bool] = None,
) -> int:
    """Count products, optionally filtered by section, subsection and active flag."""
    clauses: list[str] = []
    params: dict[str, Any] = {}
    if section_id is not None:
        clauses.append("section_id = :sid")
        params["sid"] = int(section_id)
    if sub_section_id is not None:
        clauses.append("sub_section_id = :sub")
        params["sub"] = int(sub_section_id)
    if active is not None:
        clauses.append("active = :active")
        params["active"] = bool(active)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    row = conn.execute(sql_text(f"SELECT COUNT(*) FROM products {where}"), params).fetchone()
    return int(row[0]) if row and row[0] is not None else 0


def list_products(conn: Connection, active: Optional[bool] = None) -> list[Product]:
    """All products ordered by section, top-level order, subsection, subsection order."""
    where = ""
    params: dict[str, Any] = {}
    if active is not None:
        where = "WHERE active = :active"
        params["active"] = bool(active)
    rows = conn.execute(
        sql_text(
            f"SELECT {_PRODUCT_COLUMNS} FROM products {where} "
            "ORDER BY section_id ASC, section_order ASC, sub_section_id ASC, sub_section_order ASC, id ASC"
        ),
        params,
    ).mappings().fetchall()
    return [product_from_row(r) for r in rows]


def list_container_products(conn: Connection, container: Container, active: Optional[bool] = None) -> list[Product]:
    where, params = _container_filter(container)
    col = _position_column(container)
    if active is not None:
        where = f"{where} AND active = :active"
        params = dict(params, active=bool(active))
    rows = conn.execute(
        sql_text(f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE {where} ORDER BY {col} ASC, id ASC"),
        params,
    ).mappings().fetchall()
    return [product_from_row(r) for r in rows]


__all__ = [
    "product_from_row",
    "get_product",
    "name_taken",
    "max_position",
    "count_members",
    "member_positions",
    "stray_unused_positions",
    "lock_member_rows",
    "apply_shifts",
    "insert_product",
    "place_product",
    "set_position",
    "update_fields",
    "delete_product_row",
    "count_products",
    "list_products",
    "list_container_products",
]
