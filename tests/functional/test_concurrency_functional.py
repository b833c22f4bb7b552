"""Concurrency and transaction-coordinator tests.

The first test shows the hazard the coordinator exists for: two appends that
read the same snapshot outside a serialized transaction both claim the same
slot. The remaining tests drive the real engine from several threads and
check that every container stays dense, and exercise ``run_atomic``'s retry
and rollback behaviour directly.
"""

from __future__ import annotations

import logging
import random
import sqlite3
import threading

import pytest
from sqlalchemy import text as sql_text
from sqlalchemy.exc import IntegrityError, OperationalError

from menu_catalog.errors import ConcurrentModificationConflict
from menu_catalog.logic import ordering
from menu_catalog.logic import repository_products
from menu_catalog.logic.containers import ByName, Container, ContainerSelector
from menu_catalog.logic.positions import is_dense, plan_append
from menu_catalog.logic.transactions import container_lock_id, is_conflict, run_atomic
from menu_catalog.models import ProductDraft


@pytest.fixture
def section_a(catalog) -> Container:
    section = catalog.section("Section A")
    return Container(section.id)


def _busy() -> OperationalError:
    return OperationalError("BEGIN IMMEDIATE", {}, sqlite3.OperationalError("database is locked"))


def test_unserialized_appends_from_one_snapshot_collide(catalog, section_a, engine) -> None:
    catalog.product("P1", "Section A")
    with engine.connect() as conn:
        snapshot_max = repository_products.max_position(conn, section_a)

    # Both writers computed their slot from the same read.
    for name in ("Late A", "Late B"):
        with engine.begin() as conn:
            plan = plan_append(snapshot_max)
            repository_products.insert_product(conn, ProductDraft(name=name, price="1"), section_a, plan.target)

    assert catalog.positions(section_a) == [1, 2, 2]
    assert not is_dense(catalog.positions(section_a))


def test_concurrent_creates_get_distinct_slots(catalog, section_a, engine, settings) -> None:
    errors: list[BaseException] = []

    def worker(i: int) -> None:
        try:
            ordering.create_product(
                ProductDraft(name=f"Item {i}", price="2"),
                ContainerSelector(ByName("Section A")),
                engine=engine,
                settings=settings,
            )
        except Exception as exc:  # surfaced through the errors list
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert catalog.positions(section_a) == list(range(1, 9))


def test_concurrent_reorders_and_moves_keep_containers_dense(catalog, engine, settings) -> None:
    catalog.section("Section A")
    catalog.section("Section B", "Drinks")
    names = [f"Item {i}" for i in range(10)]
    for name in names:
        catalog.product(name, "Section A")
    targets = [ContainerSelector(ByName("Section A")), ContainerSelector(ByName("Section B"), ByName("Drinks"))]
    errors: list[BaseException] = []

    def worker(seed: int) -> None:
        rng = random.Random(seed)
        try:
            for _ in range(8):
                name = rng.choice(names)
                if rng.random() < 0.3:
                    ordering.move_product(ByName(name), rng.choice(targets), engine=engine, settings=settings)
                else:
                    ordering.reorder_product(ByName(name), rng.randint(1, 10), engine=engine, settings=settings)
        except Exception as exc:  # surfaced through the errors list
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(seed,)) for seed in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    catalog.assert_all_dense()
    total = sum(len(catalog.positions(c)) for c in catalog.containers())
    assert total == len(names)


def test_run_atomic_retries_conflicts_from_first_read(catalog, section_a, engine, settings) -> None:
    calls = {"n": 0}

    def op(scope):
        calls["n"] += 1
        scope.conn.execute(
            sql_text("UPDATE sections SET name = :n WHERE id = :id"),
            {"n": f"Attempt {calls['n']}", "id": section_a.section_id},
        )
        if calls["n"] == 1:
            raise _busy()
        return calls["n"]

    assert run_atomic(op, label="test_retry", engine=engine, settings=settings) == 2
    with engine.connect() as conn:
        name = conn.execute(sql_text("SELECT name FROM sections WHERE id = :id"), {"id": section_a.section_id}).scalar()
    assert name == "Attempt 2"


def test_run_atomic_gives_up_after_max_retries(section_a, engine, settings) -> None:
    calls = {"n": 0}

    def op(scope):
        calls["n"] += 1
        raise _busy()

    with pytest.raises(ConcurrentModificationConflict) as excinfo:
        run_atomic(op, label="test_exhaust", engine=engine, settings=settings)
    assert calls["n"] == settings.ordering.max_retries + 1
    assert excinfo.value.attempts == calls["n"]


def test_run_atomic_propagates_other_store_errors(section_a, engine, settings) -> None:
    calls = {"n": 0}

    def op(scope):
        calls["n"] += 1
        raise IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed"))

    with pytest.raises(IntegrityError):
        run_atomic(op, label="test_integrity", engine=engine, settings=settings)
    assert calls["n"] == 1


def test_conflict_classification() -> None:
    assert is_conflict(_busy())
    assert not is_conflict(IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed")))
    assert not is_conflict(ValueError("database is locked"))


def test_container_lock_ids_are_stable_and_distinct() -> None:
    a = Container(1)
    sub = Container(1, 2)
    assert container_lock_id(a.key) == container_lock_id("section:1")
    assert container_lock_id(a.key) != container_lock_id(sub.key)
    assert -(2**63) <= container_lock_id(sub.key) < 2**63


def test_run_atomic_operations_lock_their_own_containers(section_a, engine, settings, caplog) -> None:
    sub = Container(section_a.section_id, 99)

    def op(scope):
        scope.lock(section_a)
        scope.lock(section_a, sub)
        scope.lock(sub)
        return scope.dialect

    with caplog.at_level(logging.DEBUG, logger="menu_catalog.logic.transactions"):
        assert run_atomic(op, label="test_lock", engine=engine, settings=settings) == engine.dialect.name
    locks = [r.getMessage() for r in caplog.records if r.getMessage().startswith("transactions.lock")]
    assert locks == [f"transactions.lock keys={[section_a.key]}", f"transactions.lock keys={[sub.key]}"]
