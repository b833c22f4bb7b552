"""Functional tests for the ordering engine against a real SQLite store.

Covers append, move, reorder and delete-with-compaction, the container
resolver's clarification and not-found outcomes, and all-or-nothing
behaviour when a step fails mid-transaction.
"""

from __future__ import annotations

import random
from decimal import Decimal

import pytest

from menu_catalog.errors import AmbiguousContainerError, DuplicateProductError, InvariantViolation, NotFoundError
from menu_catalog.logic import events, ordering
from menu_catalog.logic import repository_products
from menu_catalog.logic.containers import ById, ByName, Container, ContainerSelector
from menu_catalog.models import ProductChanges, ProductDraft


@pytest.fixture
def menu(catalog):
    """Section A (flat) and Section B with subsections Drinks and Desserts."""
    a = catalog.section("Section A")
    b = catalog.section("Section B", "Drinks", "Desserts")
    return {
        "a": Container(a.id),
        "drinks": Container(b.id, b.sub_sections[0].id),
        "desserts": Container(b.id, b.sub_sections[1].id),
        "a_id": a.id,
        "b_id": b.id,
    }


def _to(section: str, sub_section: str | None = None) -> ContainerSelector:
    return ContainerSelector(ByName(section), ByName(sub_section) if sub_section else None)


# --------------------
# Append
# --------------------


def test_create_appends_at_max_plus_one(catalog, menu) -> None:
    first = catalog.product("Fries", "Section A")
    assert first.position == 1
    assert first.section_order == 1 and first.sub_section_order == 0
    catalog.product("Nuggets", "Section A")
    third = catalog.product("Wings", "Section A")
    assert third.position == 3
    assert catalog.positions(menu["a"]) == [1, 2, 3]


def test_create_into_subsection_uses_subsection_column(catalog, menu) -> None:
    cola = catalog.product("Cola", "Section B", "drinks")
    assert cola.sub_section_id == menu["drinks"].sub_section_id
    assert cola.sub_section_order == 1
    assert cola.section_order == 0


def test_create_without_required_subsection_asks_for_clarification(catalog, menu) -> None:
    with pytest.raises(AmbiguousContainerError) as excinfo:
        catalog.product("Cola", "Section B")
    assert [c["name"] for c in excinfo.value.candidates] == ["Drinks", "Desserts"]
    assert excinfo.value.section["name"] == "Section B"
    assert catalog.get("Cola") is None
    assert events.get_buffered_events() == []


def test_create_in_unknown_section_lists_candidates(catalog, menu) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        catalog.product("Cola", "Section Z")
    assert excinfo.value.kind == "section"
    assert {c["name"] for c in excinfo.value.candidates} == {"Section A", "Section B"}


def test_create_with_subsection_on_flat_section_is_not_found(catalog, menu) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        catalog.product("Cola", "Section A", "Drinks")
    assert excinfo.value.kind == "sub_section"
    assert catalog.get("Cola") is None


def test_create_with_unknown_subsection_lists_subsections(catalog, menu) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        catalog.product("Cola", "Section B", "Mains")
    assert [c["name"] for c in excinfo.value.candidates] == ["Drinks", "Desserts"]


def test_create_duplicate_name_is_rejected(catalog, menu) -> None:
    catalog.product("Fries", "Section A")
    with pytest.raises(DuplicateProductError):
        catalog.product("Fries", "Section A")
    assert catalog.positions(menu["a"]) == [1]


# --------------------
# Reorder
# --------------------


def test_reorder_last_to_second(catalog, menu, engine, settings) -> None:
    for name in ("P1", "P2", "P3", "P4"):
        catalog.product(name, "Section A")
    events.get_buffered_events()

    moved = ordering.reorder_product(ByName("P4"), 2, engine=engine, settings=settings)

    assert moved.position == 2
    assert catalog.names(menu["a"]) == ["P1", "P4", "P2", "P3"]
    assert catalog.positions(menu["a"]) == [1, 2, 3, 4]
    published = events.get_buffered_events()
    assert [e["type"] for e in published] == [events.PRODUCT_REORDERED]


def test_reorder_towards_end(catalog, menu, engine, settings) -> None:
    for name in ("P1", "P2", "P3", "P4"):
        catalog.product(name, "Section A")
    ordering.reorder_product(ByName("P1"), 3, engine=engine, settings=settings)
    assert catalog.names(menu["a"]) == ["P2", "P3", "P1", "P4"]


def test_reorder_to_current_position_changes_nothing(catalog, menu, engine, settings) -> None:
    for name in ("P1", "P2", "P3"):
        catalog.product(name, "Section A")
    events.get_buffered_events()

    for _ in range(2):
        same = ordering.reorder_product(ByName("P2"), 2, engine=engine, settings=settings)
        assert same.position == 2
        assert catalog.names(menu["a"]) == ["P1", "P2", "P3"]
    assert events.get_buffered_events() == []


def test_reorder_clamps_out_of_range_targets(catalog, menu, engine, settings) -> None:
    for name in ("P1", "P2", "P3"):
        catalog.product(name, "Section A")
    assert ordering.reorder_product(ByName("P1"), 99, engine=engine, settings=settings).position == 3
    assert ordering.reorder_product(ByName("P2"), 0, engine=engine, settings=settings).position == 1
    assert catalog.names(menu["a"]) == ["P2", "P3", "P1"]


def test_reorder_inside_subsection(catalog, menu, engine, settings) -> None:
    for name in ("Cola", "Water", "Juice"):
        catalog.product(name, "Section B", "Drinks")
    catalog.product("Cake", "Section B", "Desserts")
    ordering.reorder_product(ByName("Juice"), 1, engine=engine, settings=settings)
    assert catalog.names(menu["drinks"]) == ["Juice", "Cola", "Water"]
    assert catalog.positions(menu["desserts"]) == [1]
    catalog.assert_all_dense()


def test_reorder_unknown_product_is_not_found(catalog, menu, engine, settings) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        ordering.reorder_product(ByName("Ghost"), 1, engine=engine, settings=settings)
    assert excinfo.value.kind == "product"


# --------------------
# Delete
# --------------------


def test_delete_compacts_container(catalog, menu, engine, settings) -> None:
    for name in ("P1", "P2", "P3"):
        catalog.product(name, "Section A")

    summary = ordering.delete_product(ByName("P2"), engine=engine, settings=settings)

    assert summary.position == 2
    assert summary.compacted == 1
    assert catalog.get("P2") is None
    assert catalog.names(menu["a"]) == ["P1", "P3"]
    assert catalog.positions(menu["a"]) == [1, 2]


def test_delete_only_touches_its_container(catalog, menu, engine, settings) -> None:
    catalog.product("P1", "Section A")
    catalog.product("Cola", "Section B", "Drinks")
    catalog.product("Water", "Section B", "Drinks")
    ordering.delete_product(ByName("Cola"), engine=engine, settings=settings)
    assert catalog.names(menu["drinks"]) == ["Water"]
    assert catalog.positions(menu["a"]) == [1]
    catalog.assert_all_dense()


def test_delete_unknown_product_is_not_found(catalog, menu, engine, settings) -> None:
    with pytest.raises(NotFoundError):
        ordering.delete_product(ById(999), engine=engine, settings=settings)


# --------------------
# Move
# --------------------


def test_move_compacts_source_and_appends_to_destination(catalog, menu, engine, settings) -> None:
    catalog.product("P1", "Section A")
    catalog.product("P2", "Section A")

    moved = ordering.move_product(ByName("P1"), _to("Section B", "Drinks"), engine=engine, settings=settings)

    assert moved.section_id == menu["b_id"]
    assert moved.sub_section_id == menu["drinks"].sub_section_id
    assert moved.sub_section_order == 1
    assert moved.section_order == 0
    assert catalog.names(menu["a"]) == ["P2"]
    assert catalog.positions(menu["a"]) == [1]
    assert catalog.names(menu["drinks"]) == ["P1"]


def test_move_from_subsection_to_flat_section_resets_subsection_column(catalog, menu, engine, settings) -> None:
    catalog.product("P1", "Section A")
    catalog.product("Cola", "Section B", "Drinks")
    catalog.product("Water", "Section B", "Drinks")

    moved = ordering.move_product(ByName("Cola"), _to("Section A"), engine=engine, settings=settings)

    assert moved.sub_section_id is None
    assert moved.section_order == 2
    assert moved.sub_section_order == 0
    assert catalog.names(menu["drinks"]) == ["Water"]
    catalog.assert_all_dense()


def test_move_between_subsections_of_same_section(catalog, menu, engine, settings) -> None:
    catalog.product("Cola", "Section B", "Drinks")
    catalog.product("Cake", "Section B", "Desserts")
    moved = ordering.move_product(ByName("Cola"), _to("Section B", "Desserts"), engine=engine, settings=settings)
    assert moved.sub_section_order == 2
    assert catalog.names(menu["desserts"]) == ["Cake", "Cola"]
    assert catalog.names(menu["drinks"]) == []


def test_move_to_own_container_is_noop(catalog, menu, engine, settings) -> None:
    for name in ("P1", "P2", "P3"):
        catalog.product(name, "Section A")
    events.get_buffered_events()

    same = ordering.move_product(ByName("P1"), _to("Section A"), engine=engine, settings=settings)

    assert same.position == 1
    assert catalog.names(menu["a"]) == ["P1", "P2", "P3"]
    assert events.get_buffered_events() == []


def test_move_to_section_needing_subsection_changes_nothing(catalog, menu, engine, settings) -> None:
    catalog.product("P1", "Section A")
    with pytest.raises(AmbiguousContainerError):
        ordering.move_product(ByName("P1"), _to("Section B"), engine=engine, settings=settings)
    assert catalog.names(menu["a"]) == ["P1"]


def test_move_conserves_membership(catalog, menu, engine, settings) -> None:
    for name in ("P1", "P2", "P3"):
        catalog.product(name, "Section A")
    catalog.product("Cola", "Section B", "Drinks")

    ordering.move_product(ByName("P2"), _to("Section B", "Drinks"), engine=engine, settings=settings)

    assert len(catalog.names(menu["a"])) == 2
    assert len(catalog.names(menu["drinks"])) == 2
    assert catalog.names(menu["a"]) == ["P1", "P3"]


# --------------------
# Update (fields plus relocation)
# --------------------


def test_update_with_new_container_moves_and_ignores_position(catalog, menu, engine, settings) -> None:
    catalog.product("P1", "Section A")
    catalog.product("Cola", "Section B", "Drinks")
    catalog.product("Water", "Section B", "Drinks")

    outcome = ordering.update_product(
        ByName("P1"),
        ProductChanges(price="12.00"),
        selector=_to("Section B", "Drinks"),
        position=1,
        engine=engine,
        settings=settings,
    )

    assert outcome.moved and not outcome.reordered
    assert outcome.product.sub_section_order == 3
    assert outcome.product.price == Decimal("12")
    assert catalog.names(menu["drinks"]) == ["Cola", "Water", "P1"]
    assert catalog.names(menu["a"]) == []


def test_update_with_position_only_reorders(catalog, menu, engine, settings) -> None:
    for name in ("P1", "P2", "P3"):
        catalog.product(name, "Section A")
    outcome = ordering.update_product(ByName("P3"), position=1, engine=engine, settings=settings)
    assert outcome.reordered and not outcome.moved
    assert catalog.names(menu["a"]) == ["P3", "P1", "P2"]


def test_update_with_same_container_and_position_reorders(catalog, menu, engine, settings) -> None:
    for name in ("P1", "P2", "P3"):
        catalog.product(name, "Section A")
    outcome = ordering.update_product(
        ByName("P1"), selector=_to("Section A"), position=3, engine=engine, settings=settings
    )
    assert outcome.reordered and not outcome.moved
    assert catalog.names(menu["a"]) == ["P2", "P3", "P1"]


def test_update_fields_keeps_position(catalog, menu, engine, settings) -> None:
    catalog.product("P1", "Section A")
    catalog.product("P2", "Section A")
    events.get_buffered_events()
    outcome = ordering.update_product(
        ByName("P2"), ProductChanges(name="P2 Large", active=False), engine=engine, settings=settings
    )
    assert outcome.fields_changed
    assert outcome.product.name == "P2 Large"
    assert outcome.product.active is False
    assert outcome.product.position == 2
    assert [e["type"] for e in events.get_buffered_events()] == [events.PRODUCT_UPDATED]


def test_update_rename_to_existing_name_is_rejected(catalog, menu, engine, settings) -> None:
    catalog.product("P1", "Section A")
    catalog.product("P2", "Section A")
    with pytest.raises(DuplicateProductError):
        ordering.update_product(ByName("P2"), ProductChanges(name="P1"), engine=engine, settings=settings)
    assert catalog.get("P2") is not None


# --------------------
# Atomicity and post-conditions
# --------------------


def test_failure_mid_move_rolls_back_both_containers(catalog, menu, engine, settings, monkeypatch) -> None:
    catalog.product("P1", "Section A")
    catalog.product("P2", "Section A")
    catalog.product("Cola", "Section B", "Drinks")

    def fail_place(*args, **kwargs):
        raise RuntimeError("store went away")

    monkeypatch.setattr(repository_products, "place_product", fail_place)
    with pytest.raises(RuntimeError):
        ordering.move_product(ByName("P1"), _to("Section B", "Drinks"), engine=engine, settings=settings)

    assert catalog.names(menu["a"]) == ["P1", "P2"]
    assert catalog.positions(menu["a"]) == [1, 2]
    assert catalog.names(menu["drinks"]) == ["Cola"]


def test_broken_shift_raises_invariant_violation_and_rolls_back(catalog, menu, engine, settings, monkeypatch) -> None:
    for name in ("P1", "P2", "P3"):
        catalog.product(name, "Section A")

    monkeypatch.setattr(repository_products, "apply_shifts", lambda *a, **k: 0)
    with pytest.raises(InvariantViolation) as excinfo:
        ordering.delete_product(ByName("P1"), engine=engine, settings=settings)

    assert excinfo.value.container_key == menu["a"].key
    assert catalog.names(menu["a"]) == ["P1", "P2", "P3"]


def test_random_operation_sequence_keeps_every_container_dense(catalog, menu, engine, settings) -> None:
    rng = random.Random(7)
    targets = [_to("Section A"), _to("Section B", "Drinks"), _to("Section B", "Desserts")]
    live: list[str] = []
    for i in range(12):
        name = f"Item {i}"
        catalog.product(name, "Section A")
        live.append(name)

    for step in range(60):
        op = rng.choice(["move", "reorder", "delete", "create"])
        if op == "create" or not live:
            name = f"New {step}"
            selector = rng.choice(targets)
            ordering.create_product(ProductDraft(name=name, price="3"), selector, engine=engine, settings=settings)
            live.append(name)
        elif op == "move":
            before = sum(len(catalog.names(c)) for c in (menu["a"], menu["drinks"], menu["desserts"]))
            ordering.move_product(ByName(rng.choice(live)), rng.choice(targets), engine=engine, settings=settings)
            after = sum(len(catalog.names(c)) for c in (menu["a"], menu["drinks"], menu["desserts"]))
            assert before == after
        elif op == "reorder":
            ordering.reorder_product(ByName(rng.choice(live)), rng.randint(-1, 15), engine=engine, settings=settings)
        else:
            victim = rng.choice(live)
            live.remove(victim)
            ordering.delete_product(ByName(victim), engine=engine, settings=settings)
        catalog.assert_all_dense()
