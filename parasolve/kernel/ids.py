"""
Identifier handles and the per-system id allocator.

Ids are plain integers wrapped in ``NewType`` aliases so signatures stay
readable.  ``0`` is reserved as the null id and is never handed out.
"""

from __future__ import annotations

from typing import NewType

VariableId = NewType("VariableId", int)
ConstraintId = NewType("ConstraintId", int)
EntityId = NewType("EntityId", int)

NULL_ID = 0


def is_null(id_value: int) -> bool:
    return id_value == NULL_ID


class IdAllocator:
    """
    Monotonic id counter owned by a single :class:`ConstraintSystem`.

    Two systems in the same process never share an id space, and a fresh
    allocator always starts at ``1`` so ids are reproducible in tests.
    """

    def __init__(self, start: int = 1):
        if start <= NULL_ID:
            raise ValueError(f"Allocator must start above {NULL_ID}, got {start}")
        self._next: int = start

    @property
    def peek(self) -> int:
        """The id the next call to :meth:`next` will return."""
        return self._next

    def next(self) -> int:
        value = self._next
        self._next += 1
        return value

    def observe(self, id_value: int):
        """Make sure ids handed out later never collide with *id_value*."""
        if id_value >= self._next:
            self._next = id_value + 1

    def __repr__(self) -> str:
        return f"IdAllocator(next={self._next})"
