"""Ordering engine: create, move, reorder and delete products.

Each operation is one terminal transaction run through ``run_atomic``. Inside
it the engine resolves containers, locks them, reads current positions fresh
from the store, computes a shift plan (``positions``), applies it with bulk
UPDATEs and re-checks the density invariant of every container it touched.
No intermediate state is visible outside the transaction.

Not-found and clarification outcomes are raised as ``NotFoundError`` and
``AmbiguousContainerError``; callers turn them into structured results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from menu_catalog.config import AppConfig, load_config
from menu_catalog.errors import ConcurrentModificationConflict, DuplicateProductError, InvariantViolation, NotFoundError
from menu_catalog.logic import events
from menu_catalog.logic import repository_products as products_repo
from menu_catalog.logic.containers import ById, Container, ContainerResolver, ContainerSelector, Ref, describe_ref
from menu_catalog.logic.positions import is_dense, plan_append, plan_remove, plan_reorder
from menu_catalog.logic.transactions import AtomicScope, run_atomic
from menu_catalog.models import DeletedSummary, Product, ProductChanges, ProductDraft

logger = logging.getLogger(__name__)

# Bound on re-reads when a product changes container between read and lock.
_LOAD_ATTEMPTS = 3


def container_of(product: Product) -> Container:
    return Container(product.section_id, product.sub_section_id)


@dataclass
class UpdateOutcome:
    product: Product
    moved: bool = False
    reordered: bool = False
    fields_changed: bool = False


def _verify(scope: AtomicScope, settings: AppConfig, *containers: Container) -> None:
    """Post-condition: every touched container is dense and its unused column is neutral."""
    if not settings.ordering.verify_invariants:
        return
    for container in containers:
        positions = products_repo.member_positions(scope.conn, container)
        if not is_dense(positions.values()):
            logger.error(
                "ordering.invariant_violation container=%s positions=%s",
                container.key,
                positions,
            )
            raise InvariantViolation(container.key, sorted(positions.values()))
        strays = products_repo.stray_unused_positions(scope.conn, container)
        if strays:
            logger.error(
                "ordering.invariant_violation container=%s unused_column=%s product_ids=%s",
                container.key,
                container.unused_column,
                strays,
            )
            raise InvariantViolation(
                container.key,
                sorted(positions.values()),
                reason=f"{container.unused_column} not neutral for products {strays}",
            )


def _load_locked(scope: AtomicScope, ref: Ref, *also: Container) -> tuple[Product, Container]:
    """Read the product, lock its container (plus ``also``) and re-read it.

    The re-read after locking yields the product's current position; if the
    product changed container before the lock was taken, the new container
    is locked and the read repeated.
    """
    product = products_repo.get_product(scope.conn, ref, for_update=True)
    if product is None:
        raise NotFoundError("product", describe_ref(ref))
    for _ in range(_LOAD_ATTEMPTS):
        container = container_of(product)
        scope.lock(container, *also)
        fresh = products_repo.get_product(scope.conn, ById(product.id))
        if fresh is None:
            raise NotFoundError("product", describe_ref(ref))
        if container_of(fresh) == container:
            return fresh, container
        product = fresh
    raise ConcurrentModificationConflict("load_product", _LOAD_ATTEMPTS)


def _move_in_scope(scope: AtomicScope, product: Product, source: Container, dest: Container) -> Product:
    """Compact ``source`` at the product's old position and append it to ``dest``."""
    scope.lock(source, dest)
    compacted = products_repo.apply_shifts(
        scope.conn, source, plan_remove(product.position), exclude_id=product.id
    )
    plan = plan_append(products_repo.max_position(scope.conn, dest))
    products_repo.place_product(scope.conn, product.id, dest, plan.target)
    logger.info(
        "ordering.move.applied product_id=%s from=%s@%s to=%s@%s compacted=%s",
        product.id,
        source.key,
        product.position,
        dest.key,
        plan.target,
        compacted,
    )
    return products_repo.get_product(scope.conn, ById(product.id))  # type: ignore[return-value]


def _reorder_in_scope(scope: AtomicScope, product: Product, container: Container, requested: int) -> Optional[Product]:
    """Move the product to ``requested`` (clamped) within its container.

    Returns None when the clamped target equals the current position.
    """
    size = products_repo.count_members(scope.conn, container)
    plan = plan_reorder(size, product.position, requested)
    if plan.noop:
        logger.info(
            "ordering.reorder.noop product_id=%s container=%s position=%s requested=%s",
            product.id,
            container.key,
            product.position,
            requested,
        )
        return None
    shifted = products_repo.apply_shifts(scope.conn, container, plan, exclude_id=product.id)
    products_repo.set_position(scope.conn, product.id, container, plan.target)  # type: ignore[arg-type]
    logger.info(
        "ordering.reorder.applied product_id=%s container=%s from=%s to=%s requested=%s shifted=%s",
        product.id,
        container.key,
        product.position,
        plan.target,
        requested,
        shifted,
    )
    return products_repo.get_product(scope.conn, ById(product.id))


def create_product(
    draft: ProductDraft,
    selector: ContainerSelector,
    *,
    engine: Optional[Engine] = None,
    settings: Optional[AppConfig] = None,
) -> Product:
    """Append a new product to the container named by ``selector``.

    Raises ``AmbiguousContainerError`` (nothing is created) when the section
    requires a subsection and the selector names none.
    """
    cfg = settings or load_config()

    def op(scope: AtomicScope) -> Product:
        _, container = ContainerResolver(scope.conn).resolve_container(selector)
        scope.lock(container)
        if products_repo.name_taken(scope.conn, draft.name):
            raise DuplicateProductError(draft.name)
        plan = plan_append(products_repo.max_position(scope.conn, container))
        product = products_repo.insert_product(scope.conn, draft, container, plan.target)  # type: ignore[arg-type]
        _verify(scope, cfg, container)
        return product

    product = run_atomic(op, label="create_product", engine=engine, settings=cfg)
    logger.info(
        "ordering.create.success product_id=%s container=%s position=%s",
        product.id,
        container_of(product).key,
        product.position,
    )
    events.publish(events.PRODUCT_CREATED, {"product_id": product.id, "container": container_of(product).as_dict(), "position": product.position})
    return product


def delete_product(
    ref: Ref,
    *,
    engine: Optional[Engine] = None,
    settings: Optional[AppConfig] = None,
) -> DeletedSummary:
    """Delete a product and compact its container in the same transaction."""
    cfg = settings or load_config()

    def op(scope: AtomicScope) -> DeletedSummary:
        product, container = _load_locked(scope, ref)
        products_repo.delete_product_row(scope.conn, product.id)
        compacted = products_repo.apply_shifts(scope.conn, container, plan_remove(product.position))
        _verify(scope, cfg, container)
        return DeletedSummary(
            deleted_id=product.id,
            name=product.name,
            section_id=product.section_id,
            sub_section_id=product.sub_section_id,
            position=product.position,
            compacted=compacted,
        )

    summary = run_atomic(op, label="delete_product", engine=engine, settings=cfg)
    logger.info(
        "ordering.delete.success product_id=%s position=%s compacted=%s",
        summary.deleted_id,
        summary.position,
        summary.compacted,
    )
    events.publish(events.PRODUCT_DELETED, summary.model_dump())
    return summary


def move_product(
    ref: Ref,
    selector: ContainerSelector,
    *,
    engine: Optional[Engine] = None,
    settings: Optional[AppConfig] = None,
) -> Product:
    """Move a product to another container, appending it at the destination.

    Moving to the product's own container (same section id and subsection id)
    is a no-op that leaves its position unchanged.
    """
    cfg = settings or load_config()

    def op(scope: AtomicScope) -> tuple[Product, bool]:
        _, dest = ContainerResolver(scope.conn).resolve_container(selector)
        product, source = _load_locked(scope, ref, dest)
        if source == dest:
            logger.info("ordering.move.noop product_id=%s container=%s", product.id, source.key)
            return product, False
        result = _move_in_scope(scope, product, source, dest)
        _verify(scope, cfg, source, dest)
        return result, True

    product, moved = run_atomic(op, label="move_product", engine=engine, settings=cfg)
    if moved:
        events.publish(events.PRODUCT_MOVED, {"product_id": product.id, "container": container_of(product).as_dict(), "position": product.position})
    return product


def reorder_product(
    ref: Ref,
    target_position: int,
    *,
    engine: Optional[Engine] = None,
    settings: Optional[AppConfig] = None,
) -> Product:
    """Place a product at ``target_position`` within its current container.

    The target is clamped into ``[1, n]``; a clamped target equal to the
    current position leaves every position unchanged.
    """
    cfg = settings or load_config()

    def op(scope: AtomicScope) -> tuple[Product, bool]:
        product, container = _load_locked(scope, ref)
        result = _reorder_in_scope(scope, product, container, int(target_position))
        if result is None:
            return product, False
        _verify(scope, cfg, container)
        return result, True

    product, changed = run_atomic(op, label="reorder_product", engine=engine, settings=cfg)
    if changed:
        events.publish(events.PRODUCT_REORDERED, {"product_id": product.id, "container": container_of(product).as_dict(), "position": product.position})
    return product


def update_product(
    ref: Ref,
    changes: Optional[ProductChanges] = None,
    *,
    selector: Optional[ContainerSelector] = None,
    position: Optional[int] = None,
    engine: Optional[Engine] = None,
    settings: Optional[AppConfig] = None,
) -> UpdateOutcome:
    """Edit fields and optionally relocate a product in one transaction.

    A selector naming another container makes this a move: the product is
    appended at the destination and ``position`` is ignored. Otherwise a
    ``position`` reorders the product within its current container.
    """
    cfg = settings or load_config()
    columns = (changes or ProductChanges()).as_columns()

    def op(scope: AtomicScope) -> UpdateOutcome:
        dest: Optional[Container] = None
        if selector is not None:
            _, dest = ContainerResolver(scope.conn).resolve_container(selector)
        product, source = _load_locked(scope, ref, *(d for d in (dest,) if d is not None))
        new_name = columns.get("name")
        if new_name is not None and products_repo.name_taken(scope.conn, new_name, exclude_id=product.id):
            raise DuplicateProductError(new_name)
        products_repo.update_fields(scope.conn, product.id, columns)
        outcome = UpdateOutcome(product=product, fields_changed=bool(columns))
        if dest is not None and dest != source:
            if position is not None:
                logger.info(
                    "ordering.update.position_ignored product_id=%s requested=%s dest=%s",
                    product.id,
                    position,
                    dest.key,
                )
            _move_in_scope(scope, product, source, dest)
            _verify(scope, cfg, source, dest)
            outcome.moved = True
        elif position is not None:
            if _reorder_in_scope(scope, product, source, int(position)) is not None:
                _verify(scope, cfg, source)
                outcome.reordered = True
        outcome.product = products_repo.get_product(scope.conn, ById(product.id))  # type: ignore[assignment]
        return outcome

    outcome = run_atomic(op, label="update_product", engine=engine, settings=cfg)
    product = outcome.product
    payload = {"product_id": product.id, "container": container_of(product).as_dict(), "position": product.position}
    if outcome.moved:
        events.publish(events.PRODUCT_MOVED, payload)
    elif outcome.reordered:
        events.publish(events.PRODUCT_REORDERED, payload)
    if outcome.fields_changed:
        events.publish(events.PRODUCT_UPDATED, dict(payload, fields=sorted(columns)))
    return outcome


__all__ = [
    "UpdateOutcome",
    "container_of",
    "create_product",
    "delete_product",
    "move_product",
    "reorder_product",
    "update_product",
]
