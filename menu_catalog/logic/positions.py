"""Position index rules for product containers.

A container (a section's top-level list or one subsection's list) keeps its
members at dense, 1-based positions ``{1..n}``. This module computes shift
plans for the four structural changes a container undergoes and applies them
to in-memory position maps. It performs no I/O; the ordering engine turns a
plan into bulk UPDATE statements against whichever position column the
container uses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, Mapping, Optional, Tuple

from menu_catalog.errors import InvariantViolation


@dataclass(frozen=True)
class Shift:
    """Add ``delta`` to every member whose position lies in ``[lower, upper]``.

    ``upper`` of None means unbounded.
    """

    lower: int
    upper: Optional[int]
    delta: int

    def covers(self, position: int) -> bool:
        if position < self.lower:
            return False
        return self.upper is None or position <= self.upper


@dataclass(frozen=True)
class ShiftPlan:
    """Range shifts for the other members plus the moving item's final slot.

    ``target`` is None for removals (the item leaves the container).
    """

    shifts: Tuple[Shift, ...] = field(default_factory=tuple)
    target: Optional[int] = None
    noop: bool = False

    def shifted(self, position: int) -> int:
        for s in self.shifts:
            if s.covers(position):
                return position + s.delta
        return position


NOOP = ShiftPlan(noop=True)


def clamp_position(requested: int, size: int) -> int:
    """Clamp ``requested`` into ``[1, max(size, 1)]``.

    Out-of-range targets are clamped rather than rejected.
    """
    return max(1, min(int(requested), max(int(size), 1)))


def append_position(max_position: Optional[int]) -> int:
    return int(max_position or 0) + 1


def plan_insert(size: int, requested: Optional[int] = None) -> ShiftPlan:
    """Plan insertion of an item that is not yet a member.

    With no ``requested`` position the item is appended at ``size + 1``.
    Requested positions are clamped into ``[1, size + 1]``.
    """
    if requested is None:
        return ShiftPlan(target=append_position(size))
    target = max(1, min(int(requested), int(size) + 1))
    if target > size:
        return ShiftPlan(target=target)
    return ShiftPlan(shifts=(Shift(target, None, 1),), target=target)


def plan_append(max_position: Optional[int]) -> ShiftPlan:
    return ShiftPlan(target=append_position(max_position))


def plan_reorder(size: int, current: int, requested: int) -> ShiftPlan:
    """Plan moving a member from ``current`` to ``requested`` inside one container."""
    target = clamp_position(requested, size)
    if target == current:
        return NOOP
    if current < target:
        return ShiftPlan(shifts=(Shift(current + 1, target, -1),), target=target)
    return ShiftPlan(shifts=(Shift(target, current - 1, 1),), target=target)


def plan_remove(position: int) -> ShiftPlan:
    return ShiftPlan(shifts=(Shift(int(position) + 1, None, -1),))


def apply_plan(
    positions: Mapping[Hashable, int],
    plan: ShiftPlan,
    moving_id: Optional[Hashable] = None,
) -> Dict[Hashable, int]:
    """Return the position map that results from applying ``plan``.

    ``moving_id`` names the item the plan relocates: it is placed at
    ``plan.target``, or dropped from the map when the plan is a removal. When
    the moving item is not in ``positions`` it is treated as incoming.
    """
    if plan.noop:
        return dict(positions)
    out: Dict[Hashable, int] = {}
    for member, pos in positions.items():
        if moving_id is not None and member == moving_id:
            continue
        out[member] = plan.shifted(pos)
    if moving_id is not None and plan.target is not None:
        out[moving_id] = plan.target
    return out


def is_dense(positions: Iterable[int]) -> bool:
    ordered = sorted(positions)
    return ordered == list(range(1, len(ordered) + 1))


def assert_dense(positions: Iterable[int], container_key: str) -> None:
    values = list(positions)
    if not is_dense(values):
        raise InvariantViolation(container_key, sorted(values))


__all__ = [
    "Shift",
    "ShiftPlan",
    "NOOP",
    "clamp_position",
    "append_position",
    "plan_insert",
    "plan_append",
    "plan_reorder",
    "plan_remove",
    "apply_plan",
    "is_dense",
    "assert_dense",
]
