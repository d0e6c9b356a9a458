"""
Design variables — the scalar parameters the solver is allowed to move.

A :class:`Variable` carries optional bounds and a lock flag.  All writes
from outside the solver go through :meth:`Variable.set_value`, which
enforces both.  The :class:`VariableStore` owns variables by id and keeps
them in insertion order, which is also the order the Newton solver lays
out its variable vector.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from .ids import NULL_ID, IdAllocator, VariableId


class VariableError(ValueError):
    """Raised when a value cannot be written to a variable."""


@dataclass
class Variable:
    """A named scalar design parameter."""
    name: str
    value: float
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    locked: bool = False
    description: str = ""
    # Assigned by the store on add; NULL_ID until then
    id: VariableId = VariableId(NULL_ID)

    def in_bounds(self, value: float) -> bool:
        if not math.isfinite(value):
            return False
        if self.min_value is not None and value < self.min_value:
            return False
        if self.max_value is not None and value > self.max_value:
            return False
        return True

    def set_value(self, value: float):
        """
        Write *value*, enforcing bounds and the lock flag.

        Raises:
            VariableError: the value is not finite, is out of range or the
                variable is locked.
        """
        if not math.isfinite(value):
            raise VariableError(f"Value {value} is not finite")
        if self.min_value is not None and value < self.min_value:
            raise VariableError(f"Value {value} is below minimum {self.min_value}")
        if self.max_value is not None and value > self.max_value:
            raise VariableError(f"Value {value} is above maximum {self.max_value}")
        if self.locked:
            raise VariableError("Variable is locked")
        self.value = float(value)

    def set_range(self, min_value: Optional[float], max_value: Optional[float]):
        self.min_value = min_value
        self.max_value = max_value

    def set_locked(self, locked: bool):
        self.locked = locked

    # -- Serialisation ---------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "name": self.name,
            "value": self.value,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "locked": self.locked,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Variable":
        return cls(
            name=d["name"],
            value=float(d["value"]),
            min_value=d.get("min_value"),
            max_value=d.get("max_value"),
            locked=d.get("locked", False),
            description=d.get("description", ""),
            id=VariableId(d.get("id", NULL_ID)),
        )


class VariableStore:
    """
    Owns all :class:`Variable` objects of one constraint system.

    Ids come from the store's :class:`IdAllocator`; a variable added with a
    non-null id (e.g. restored from a dict) keeps it.
    """

    def __init__(self, allocator: Optional[IdAllocator] = None):
        self._variables: Dict[VariableId, Variable] = {}
        self._ids = allocator or IdAllocator()

    # ── Queries ─────────────────────────────────────────────────────────────

    def get(self, variable_id: VariableId) -> Optional[Variable]:
        return self._variables.get(variable_id)

    def __contains__(self, variable_id: VariableId) -> bool:
        return variable_id in self._variables

    def __len__(self) -> int:
        return len(self._variables)

    def iter(self) -> Iterator[Variable]:
        """Fresh read-only traversal in insertion order."""
        return iter(list(self._variables.values()))

    def __iter__(self) -> Iterator[Variable]:
        return self.iter()

    @property
    def ids(self):
        return list(self._variables.keys())

    # ── Mutations ───────────────────────────────────────────────────────────

    def add(self, variable: Variable) -> VariableId:
        """
        Add a variable and return its id.

        Re-adding an id that is already present replaces the stored variable.
        """
        if variable.id == NULL_ID:
            variable.id = VariableId(self._ids.next())
        else:
            self._ids.observe(variable.id)
        self._variables[variable.id] = variable
        return variable.id

    def remove(self, variable_id: VariableId) -> Optional[Variable]:
        """Remove and return a variable by id, or None if not found."""
        return self._variables.pop(variable_id, None)

    def set_value(self, variable_id: VariableId, value: float):
        """
        Validated write of a single variable.

        Raises:
            VariableError: unknown id, out of range or locked.
        """
        variable = self._variables.get(variable_id)
        if variable is None:
            raise VariableError(f"Variable {variable_id} not found")
        variable.set_value(value)

    def clear(self):
        self._variables.clear()
