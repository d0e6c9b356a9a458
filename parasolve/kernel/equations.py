"""
Equation assembly — turns constraints into scalar residual equations.

Each usable constraint becomes a :class:`ConstraintEquation`: a tagged
variant (:class:`EquationKind`) over a small tuple of :class:`Operand`
values.  An operand is either a slot in the solver's flat variable vector
``x`` or a constant (a ``Constant`` target, or a locked variable frozen at
its current value).  Residuals and analytic gradients are computed by
dispatching on the kind, so equations are plain data: copyable,
comparable and serialisable.

Constraints that cannot be reduced to an equation are not dropped
silently: the builder reports a :class:`SkippedConstraint` with a
:class:`SkipReason` for each of them.

Supported equations
-------------------
* ``DISTANCE(a, b, d)``   ``|a - b| - d``
* ``ANGLE(a, b, θ)``      ``|a - b| - θ``  (no wrapping to [-π, π])
* ``HORIZONTAL(a)``       ``a``
* ``VERTICAL(a)``         ``|a - π/2|``

The ``abs()`` residuals are not differentiable where their argument is
zero; the gradient takes the ``+1`` branch there.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np

from .constraints import Constraint, ConstraintTarget, ConstraintType
from .ids import ConstraintId, VariableId

logger = logging.getLogger(__name__)

HALF_PI = math.pi / 2.0


# =========================================================================
# Operands
# =========================================================================

class OperandKind(Enum):
    SLOT = auto()
    CONSTANT = auto()


@dataclass(frozen=True)
class Operand:
    """A slot index into ``x`` or a literal value."""
    kind: OperandKind
    slot: int = -1
    value: float = 0.0

    @classmethod
    def at(cls, slot: int) -> "Operand":
        return cls(OperandKind.SLOT, slot=slot)

    @classmethod
    def const(cls, value: float) -> "Operand":
        return cls(OperandKind.CONSTANT, value=float(value))

    @property
    def is_slot(self) -> bool:
        return self.kind == OperandKind.SLOT

    def evaluate(self, x) -> float:
        return float(x[self.slot]) if self.is_slot else self.value

    def to_dict(self) -> dict:
        if self.is_slot:
            return {"slot": self.slot}
        return {"value": self.value}

    @classmethod
    def from_dict(cls, d: dict) -> "Operand":
        if "slot" in d:
            return cls.at(int(d["slot"]))
        return cls.const(d["value"])


# =========================================================================
# Equations
# =========================================================================

class EquationKind(Enum):
    DISTANCE = auto()
    ANGLE = auto()
    HORIZONTAL = auto()
    VERTICAL = auto()


_ARITY = {
    EquationKind.DISTANCE: 2,
    EquationKind.ANGLE: 2,
    EquationKind.HORIZONTAL: 1,
    EquationKind.VERTICAL: 1,
}

_KIND_FOR_TYPE = {
    ConstraintType.DISTANCE: EquationKind.DISTANCE,
    ConstraintType.ANGLE: EquationKind.ANGLE,
    ConstraintType.HORIZONTAL: EquationKind.HORIZONTAL,
    ConstraintType.VERTICAL: EquationKind.VERTICAL,
}


@dataclass(frozen=True)
class ConstraintEquation:
    """One scalar equation derived from one constraint."""
    constraint_id: ConstraintId
    kind: EquationKind
    operands: Tuple[Operand, ...]
    target: float = 0.0       # d for DISTANCE, θ for ANGLE
    weight: float = 1.0

    def __post_init__(self):
        expected = _ARITY[self.kind]
        if len(self.operands) != expected:
            raise ValueError(
                f"{self.kind.name} equation takes {expected} operand(s), "
                f"got {len(self.operands)}"
            )

    @property
    def slots(self) -> List[int]:
        return [op.slot for op in self.operands if op.is_slot]

    def residual(self, x) -> float:
        """Unweighted residual at *x*; zero when the constraint holds."""
        if self.kind in (EquationKind.DISTANCE, EquationKind.ANGLE):
            a = self.operands[0].evaluate(x)
            b = self.operands[1].evaluate(x)
            return abs(a - b) - self.target
        a = self.operands[0].evaluate(x)
        if self.kind == EquationKind.HORIZONTAL:
            return a
        return abs(a - HALF_PI)

    def gradient(self, x) -> np.ndarray:
        """Unweighted analytic gradient at *x*, one entry per slot of ``x``."""
        grad = np.zeros(len(x), dtype=np.float64)
        if self.kind in (EquationKind.DISTANCE, EquationKind.ANGLE):
            a = self.operands[0].evaluate(x)
            b = self.operands[1].evaluate(x)
            sign = 1.0 if a - b >= 0.0 else -1.0
            _accumulate(grad, self.operands[0], sign)
            _accumulate(grad, self.operands[1], -sign)
        elif self.kind == EquationKind.HORIZONTAL:
            _accumulate(grad, self.operands[0], 1.0)
        else:
            a = self.operands[0].evaluate(x)
            _accumulate(grad, self.operands[0], 1.0 if a >= HALF_PI else -1.0)
        return grad

    def numeric_gradient(self, x, step: float = 1e-8) -> np.ndarray:
        """Central finite-difference gradient, for checking :meth:`gradient`."""
        x = np.array(x, dtype=np.float64)
        grad = np.zeros(len(x), dtype=np.float64)
        for j in self.slots:
            hi = x.copy()
            lo = x.copy()
            hi[j] += step
            lo[j] -= step
            grad[j] = (self.residual(hi) - self.residual(lo)) / (2.0 * step)
        return grad

    # -- Serialisation ---------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "constraint_id": int(self.constraint_id),
            "kind": self.kind.name,
            "operands": [op.to_dict() for op in self.operands],
            "target": self.target,
            "weight": self.weight,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ConstraintEquation":
        return cls(
            constraint_id=ConstraintId(d["constraint_id"]),
            kind=EquationKind[d["kind"]],
            operands=tuple(Operand.from_dict(o) for o in d["operands"]),
            target=d.get("target", 0.0),
            weight=d.get("weight", 1.0),
        )


def _accumulate(grad: np.ndarray, operand: Operand, value: float):
    # Constants have no slot; a slot used twice sums its contributions
    if operand.is_slot:
        grad[operand.slot] += value


# =========================================================================
# Skip diagnostics
# =========================================================================

class SkipReason(Enum):
    DISABLED = auto()
    INVALID = auto()
    UNSUPPORTED_TYPE = auto()
    ENTITY_TARGET = auto()
    UNKNOWN_VARIABLE = auto()
    NO_FREE_VARIABLE = auto()


@dataclass(frozen=True)
class SkippedConstraint:
    """A constraint that produced no equation, and why."""
    constraint_id: ConstraintId
    constraint_type: ConstraintType
    reason: SkipReason
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "constraint_id": int(self.constraint_id),
            "constraint_type": self.constraint_type.name,
            "reason": self.reason.name,
            "detail": self.detail,
        }


@dataclass
class EquationSet:
    equations: List[ConstraintEquation] = field(default_factory=list)
    skipped: List[SkippedConstraint] = field(default_factory=list)


# =========================================================================
# Builder
# =========================================================================

class EquationBuilder:
    """
    Builds equations against a fixed slot layout.

    Args:
        slot_map: Free variable id -> index into the solver vector.
        frozen: Locked variable id -> value; these become constants.
    """

    def __init__(
        self,
        slot_map: Mapping[VariableId, int],
        frozen: Optional[Mapping[VariableId, float]] = None,
    ):
        self._slot_map: Dict[VariableId, int] = dict(slot_map)
        self._frozen: Dict[VariableId, float] = dict(frozen or {})

    def build(self, constraints: Iterable[Constraint]) -> EquationSet:
        result = EquationSet()
        for c in constraints:
            built = self.create_equation(c)
            if isinstance(built, SkippedConstraint):
                logger.debug(
                    "[parasolve] Skipping constraint %s (%s): %s %s",
                    c.id, c.constraint_type.name, built.reason.name, built.detail,
                )
                result.skipped.append(built)
            else:
                result.equations.append(built)
        return result

    def create_equation(self, c: Constraint) -> Union[ConstraintEquation, SkippedConstraint]:
        """Return the equation for *c*, or a diagnostic explaining the skip."""
        if not c.enabled:
            return self._skip(c, SkipReason.DISABLED)
        if not c.is_valid():
            return self._skip(c, SkipReason.INVALID,
                              f"{len(c.targets)} target(s), value={c.value}")

        kind = _KIND_FOR_TYPE.get(c.constraint_type)
        if kind is None:
            return self._skip(c, SkipReason.UNSUPPORTED_TYPE)

        operands: List[Operand] = []
        for target in c.targets:
            if target.is_entity:
                return self._skip(c, SkipReason.ENTITY_TARGET, repr(target))
            operand = self._resolve(target)
            if operand is None:
                return self._skip(c, SkipReason.UNKNOWN_VARIABLE, repr(target))
            operands.append(operand)

        if not any(op.is_slot for op in operands):
            return self._skip(c, SkipReason.NO_FREE_VARIABLE)

        return ConstraintEquation(
            constraint_id=c.id,
            kind=kind,
            operands=tuple(operands),
            target=c.value if c.value is not None else 0.0,
            weight=c.weight,
        )

    def _resolve(self, target: ConstraintTarget) -> Optional[Operand]:
        if target.is_constant:
            return Operand.const(target.constant)
        vid = VariableId(target.ref)
        if vid in self._slot_map:
            return Operand.at(self._slot_map[vid])
        if vid in self._frozen:
            return Operand.const(self._frozen[vid])
        return None

    @staticmethod
    def _skip(c: Constraint, reason: SkipReason, detail: str = "") -> SkippedConstraint:
        return SkippedConstraint(c.id, c.constraint_type, reason, detail)
