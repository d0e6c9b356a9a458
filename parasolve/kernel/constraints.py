"""
Constraint definitions, the constraint store and convenience builders.

Architecture
------------
* A :class:`Constraint` is a typed relation over an ordered list of
  :class:`ConstraintTarget` references (a variable, a geometric entity by
  id, or a literal constant) with an optional target value and a weight.
* The :class:`ConstraintStore` owns constraints by id and maintains two
  reverse indices (variable -> constraints, entity -> constraints) so the
  UI can ask "what depends on this?" with a dictionary lookup.
* Entity targets are references only.  Nothing here reads geometry.

Builders
--------
``distance``, ``angle``, ``horizontal``, ``vertical``, ``parallel``,
``perpendicular``, ``equal``, ``coincident``, ``collinear``, ``fixed`` and
``symmetric`` return ready-made, named :class:`Constraint` objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional

from .ids import NULL_ID, ConstraintId, EntityId, IdAllocator, VariableId


# =========================================================================
# Targets
# =========================================================================

class TargetKind(Enum):
    POINT = auto()
    LINE = auto()
    CIRCLE = auto()
    ARC = auto()
    VARIABLE = auto()
    CONSTANT = auto()


_ENTITY_KINDS = (TargetKind.POINT, TargetKind.LINE, TargetKind.CIRCLE, TargetKind.ARC)


@dataclass(frozen=True)
class ConstraintTarget:
    """
    What a constraint acts on.

    ``ref`` holds the entity or variable id; ``constant`` is only
    meaningful for :attr:`TargetKind.CONSTANT` targets.
    """
    kind: TargetKind
    ref: int = NULL_ID
    constant: float = 0.0

    @classmethod
    def point(cls, entity_id: EntityId) -> "ConstraintTarget":
        return cls(TargetKind.POINT, ref=entity_id)

    @classmethod
    def line(cls, entity_id: EntityId) -> "ConstraintTarget":
        return cls(TargetKind.LINE, ref=entity_id)

    @classmethod
    def circle(cls, entity_id: EntityId) -> "ConstraintTarget":
        return cls(TargetKind.CIRCLE, ref=entity_id)

    @classmethod
    def arc(cls, entity_id: EntityId) -> "ConstraintTarget":
        return cls(TargetKind.ARC, ref=entity_id)

    @classmethod
    def variable(cls, variable_id: VariableId) -> "ConstraintTarget":
        return cls(TargetKind.VARIABLE, ref=variable_id)

    @classmethod
    def const(cls, value: float) -> "ConstraintTarget":
        return cls(TargetKind.CONSTANT, constant=float(value))

    @property
    def is_entity(self) -> bool:
        return self.kind in _ENTITY_KINDS

    @property
    def is_variable(self) -> bool:
        return self.kind == TargetKind.VARIABLE

    @property
    def is_constant(self) -> bool:
        return self.kind == TargetKind.CONSTANT

    def to_dict(self) -> dict:
        if self.is_constant:
            return {"kind": self.kind.name, "value": self.constant}
        return {"kind": self.kind.name, "ref": int(self.ref)}

    @classmethod
    def from_dict(cls, d: dict) -> "ConstraintTarget":
        kind = TargetKind[d["kind"]]
        if kind == TargetKind.CONSTANT:
            return cls.const(d["value"])
        return cls(kind, ref=int(d["ref"]))

    def __repr__(self) -> str:
        if self.is_constant:
            return f"Constant({self.constant})"
        return f"{self.kind.name.capitalize()}({self.ref})"


# =========================================================================
# Constraint definitions
# =========================================================================

class ConstraintType(Enum):
    DISTANCE = auto()
    ANGLE = auto()
    HORIZONTAL = auto()
    VERTICAL = auto()
    PARALLEL = auto()
    PERPENDICULAR = auto()       # two lines
    EQUAL = auto()
    COLLINEAR = auto()
    COINCIDENT = auto()
    FIXED = auto()
    SYMMETRIC = auto()           # two elements + axis


# (exact target count or None, minimum target count, needs a value)
_ARITY = {
    ConstraintType.DISTANCE: (2, 2, True),
    ConstraintType.ANGLE: (2, 2, True),
    ConstraintType.HORIZONTAL: (1, 1, False),
    ConstraintType.VERTICAL: (1, 1, False),
    ConstraintType.PARALLEL: (2, 2, False),
    ConstraintType.PERPENDICULAR: (2, 2, False),
    ConstraintType.EQUAL: (2, 2, False),
    ConstraintType.COLLINEAR: (None, 2, False),
    ConstraintType.COINCIDENT: (2, 2, False),
    ConstraintType.FIXED: (1, 1, False),
    ConstraintType.SYMMETRIC: (3, 3, False),
}


@dataclass
class Constraint:
    """A typed relation over one or more targets."""
    constraint_type: ConstraintType
    targets: List[ConstraintTarget] = field(default_factory=list)
    value: Optional[float] = None     # target distance / angle
    weight: float = 1.0               # < 1.0 for soft constraints
    enabled: bool = True
    name: str = ""
    description: str = ""
    # Assigned by the store on add; NULL_ID until then
    id: ConstraintId = ConstraintId(NULL_ID)

    def with_value(self, value: float) -> "Constraint":
        self.value = float(value)
        return self

    def with_weight(self, weight: float) -> "Constraint":
        self.weight = float(weight)
        return self

    def with_name(self, name: str) -> "Constraint":
        self.name = name
        return self

    def set_enabled(self, enabled: bool):
        self.enabled = enabled

    def is_valid(self) -> bool:
        """True if the target count and value match the type's contract."""
        exact, minimum, needs_value = _ARITY[self.constraint_type]
        n = len(self.targets)
        if exact is not None and n != exact:
            return False
        if n < minimum:
            return False
        if needs_value and self.value is None:
            return False
        return True

    @property
    def participates(self) -> bool:
        return self.enabled and self.is_valid()

    def variable_ids(self) -> List[VariableId]:
        return [VariableId(t.ref) for t in self.targets if t.is_variable]

    def entity_ids(self) -> List[EntityId]:
        return [EntityId(t.ref) for t in self.targets if t.is_entity]

    # -- Serialisation ---------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "constraint_type": self.constraint_type.name,
            "targets": [t.to_dict() for t in self.targets],
            "value": self.value,
            "weight": self.weight,
            "enabled": self.enabled,
            "name": self.name,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Constraint":
        return cls(
            constraint_type=ConstraintType[d["constraint_type"]],
            targets=[ConstraintTarget.from_dict(t) for t in d.get("targets", [])],
            value=d.get("value"),
            weight=d.get("weight", 1.0),
            enabled=d.get("enabled", True),
            name=d.get("name", ""),
            description=d.get("description", ""),
            id=ConstraintId(d.get("id", NULL_ID)),
        )


# =========================================================================
# Store
# =========================================================================

class ConstraintStore:
    """
    Owns all constraints of one system plus the two reverse indices.

    Every add/remove keeps ``variable_constraints`` and
    ``entity_constraints`` consistent with the forward map.
    """

    def __init__(self, allocator: Optional[IdAllocator] = None):
        self._constraints: Dict[ConstraintId, Constraint] = {}
        self._variable_constraints: Dict[VariableId, List[ConstraintId]] = {}
        self._entity_constraints: Dict[EntityId, List[ConstraintId]] = {}
        self._ids = allocator or IdAllocator()

    # ── Queries ─────────────────────────────────────────────────────────────

    def get(self, constraint_id: ConstraintId) -> Optional[Constraint]:
        return self._constraints.get(constraint_id)

    def __contains__(self, constraint_id: ConstraintId) -> bool:
        return constraint_id in self._constraints

    def __len__(self) -> int:
        return len(self._constraints)

    def iter(self) -> Iterator[Constraint]:
        """Fresh read-only traversal in insertion order."""
        return iter(list(self._constraints.values()))

    def __iter__(self) -> Iterator[Constraint]:
        return self.iter()

    def get_variable_constraints(self, variable_id: VariableId) -> List[Constraint]:
        ids = self._variable_constraints.get(variable_id, [])
        return [self._constraints[cid] for cid in ids if cid in self._constraints]

    def get_entity_constraints(self, entity_id: EntityId) -> List[Constraint]:
        ids = self._entity_constraints.get(entity_id, [])
        return [self._constraints[cid] for cid in ids if cid in self._constraints]

    @property
    def variable_index(self) -> Dict[VariableId, List[ConstraintId]]:
        """Copy of the variable -> constraint ids index."""
        return {k: list(v) for k, v in self._variable_constraints.items()}

    @property
    def entity_index(self) -> Dict[EntityId, List[ConstraintId]]:
        """Copy of the entity -> constraint ids index."""
        return {k: list(v) for k, v in self._entity_constraints.items()}

    # ── Mutations ───────────────────────────────────────────────────────────

    def add(self, constraint: Constraint) -> ConstraintId:
        """Add a constraint, index its targets and return its id."""
        if constraint.id == NULL_ID:
            constraint.id = ConstraintId(self._ids.next())
        else:
            self._ids.observe(constraint.id)
            if constraint.id in self._constraints:
                self.remove(constraint.id)
        self._constraints[constraint.id] = constraint
        self._index(constraint)
        return constraint.id

    def remove(self, constraint_id: ConstraintId) -> Optional[Constraint]:
        """Remove and return a constraint by id, or None if not found."""
        constraint = self._constraints.pop(constraint_id, None)
        if constraint is not None:
            self._unindex(constraint)
        return constraint

    def scrub_variable(self, variable_id: VariableId) -> List[ConstraintId]:
        """
        Drop *variable_id* from every constraint's target list.

        The constraints themselves stay in the store.  Returns the ids of
        the constraints that were touched.
        """
        touched = self._variable_constraints.pop(variable_id, [])
        for cid in touched:
            constraint = self._constraints.get(cid)
            if constraint is None:
                continue
            constraint.targets = [
                t for t in constraint.targets
                if not (t.is_variable and t.ref == variable_id)
            ]
        return list(touched)

    def clear(self):
        self._constraints.clear()
        self._variable_constraints.clear()
        self._entity_constraints.clear()

    # -- Index maintenance -----------------------------------------------------

    def _index(self, constraint: Constraint):
        for target in constraint.targets:
            if target.is_variable:
                bucket = self._variable_constraints.setdefault(VariableId(target.ref), [])
            elif target.is_entity:
                bucket = self._entity_constraints.setdefault(EntityId(target.ref), [])
            else:
                continue
            if constraint.id not in bucket:
                bucket.append(constraint.id)

    def _unindex(self, constraint: Constraint):
        for target in constraint.targets:
            if target.is_variable:
                index = self._variable_constraints
            elif target.is_entity:
                index = self._entity_constraints
            else:
                continue
            bucket = index.get(target.ref)
            if bucket is None:
                continue
            if constraint.id in bucket:
                bucket.remove(constraint.id)
            if not bucket:
                del index[target.ref]


# =========================================================================
# Builders
# =========================================================================

def _build(ctype: ConstraintType, targets: List[ConstraintTarget],
           value: Optional[float] = None) -> Constraint:
    c = Constraint(ctype, list(targets)).with_name(ctype.name.capitalize())
    if value is not None:
        c.with_value(value)
    return c


def distance(target1: ConstraintTarget, target2: ConstraintTarget, dist: float) -> Constraint:
    return _build(ConstraintType.DISTANCE, [target1, target2], dist)


def angle(target1: ConstraintTarget, target2: ConstraintTarget, angle_rad: float) -> Constraint:
    """Angle constraint; *angle_rad* is in radians."""
    return _build(ConstraintType.ANGLE, [target1, target2], angle_rad)


def horizontal(target: ConstraintTarget) -> Constraint:
    return _build(ConstraintType.HORIZONTAL, [target])


def vertical(target: ConstraintTarget) -> Constraint:
    return _build(ConstraintType.VERTICAL, [target])


def parallel(target1: ConstraintTarget, target2: ConstraintTarget) -> Constraint:
    return _build(ConstraintType.PARALLEL, [target1, target2])


def perpendicular(target1: ConstraintTarget, target2: ConstraintTarget) -> Constraint:
    return _build(ConstraintType.PERPENDICULAR, [target1, target2])


def equal(target1: ConstraintTarget, target2: ConstraintTarget) -> Constraint:
    return _build(ConstraintType.EQUAL, [target1, target2])


def coincident(target1: ConstraintTarget, target2: ConstraintTarget) -> Constraint:
    return _build(ConstraintType.COINCIDENT, [target1, target2])


def collinear(*targets: ConstraintTarget) -> Constraint:
    return _build(ConstraintType.COLLINEAR, list(targets))


def fixed(target: ConstraintTarget) -> Constraint:
    return _build(ConstraintType.FIXED, [target])


def symmetric(target1: ConstraintTarget, target2: ConstraintTarget,
              axis: ConstraintTarget) -> Constraint:
    """Two elements symmetric about *axis*."""
    return _build(ConstraintType.SYMMETRIC, [target1, target2, axis])
