"""
Degrees-of-freedom and redundancy analysis for a seeded solver.

The Newton solver classifies a system by counting equations against free
variables.  Counting is blind to dependent equations, so this module looks
at the Jacobian itself: its numerical rank (from ``scipy.linalg.svdvals``)
gives the number of independent equations, and a row that does not raise
the rank of the rows before it marks a redundant (or conflicting)
constraint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional, Tuple

import numpy as np
from scipy import linalg

from .equations import SkippedConstraint
from .ids import ConstraintId
from .newton_solver import NewtonSolver


class DiagnosisType(Enum):
    FULLY_CONSTRAINED = auto()
    UNDER_CONSTRAINED = auto()
    OVER_CONSTRAINED = auto()


@dataclass
class ConstraintDiagnosis:
    diagnosis_type: DiagnosisType
    free_variables: int
    equations: int
    rank: int
    redundant: List[ConstraintId] = field(default_factory=list)
    # (constraint id, squared weighted residual) at the current values
    errors: List[Tuple[ConstraintId, float]] = field(default_factory=list)
    skipped: List[SkippedConstraint] = field(default_factory=list)

    @property
    def degrees_of_freedom(self) -> int:
        return self.free_variables - self.rank

    @property
    def is_fully_constrained(self) -> bool:
        return self.diagnosis_type == DiagnosisType.FULLY_CONSTRAINED

    @property
    def is_under_constrained(self) -> bool:
        return self.diagnosis_type == DiagnosisType.UNDER_CONSTRAINED

    @property
    def is_over_constrained(self) -> bool:
        return self.diagnosis_type == DiagnosisType.OVER_CONSTRAINED

    def to_dict(self) -> dict:
        return {
            "diagnosis_type": self.diagnosis_type.name,
            "free_variables": self.free_variables,
            "equations": self.equations,
            "rank": self.rank,
            "degrees_of_freedom": self.degrees_of_freedom,
            "redundant": [int(cid) for cid in self.redundant],
            "errors": [[int(cid), err] for cid, err in self.errors],
            "skipped": [s.to_dict() for s in self.skipped],
        }


def jacobian_rank(jacobian: np.ndarray, tol: Optional[float] = None) -> int:
    """Numerical rank of *jacobian*; empty matrices have rank 0."""
    if jacobian.size == 0:
        return 0
    singular = linalg.svdvals(jacobian)
    if tol is None:
        tol = max(jacobian.shape) * np.finfo(np.float64).eps * float(singular[0])
    return int(np.sum(singular > tol))


def analyze(solver: NewtonSolver) -> ConstraintDiagnosis:
    """
    Diagnose the system *solver* was seeded with, at its current values.

    The solver is only read, never iterated.
    """
    x = np.array(solver.get_all_values(), dtype=np.float64)
    equations = solver.equations
    jac = solver.compute_jacobian(x)
    residuals = solver.compute_residuals(x)

    rank = jacobian_rank(jac)

    redundant: List[ConstraintId] = []
    running = 0
    for i, eq in enumerate(equations):
        row_rank = jacobian_rank(jac[: i + 1])
        if row_rank == running:
            redundant.append(eq.constraint_id)
        running = row_rank

    errors = [(eq.constraint_id, float(r * r)) for eq, r in zip(equations, residuals)]

    n_free = solver.variable_count
    if redundant or len(equations) > n_free:
        kind = DiagnosisType.OVER_CONSTRAINED
    elif rank < n_free:
        kind = DiagnosisType.UNDER_CONSTRAINED
    else:
        kind = DiagnosisType.FULLY_CONSTRAINED

    return ConstraintDiagnosis(
        diagnosis_type=kind,
        free_variables=n_free,
        equations=len(equations),
        rank=rank,
        redundant=redundant,
        errors=errors,
        skipped=list(solver.skipped),
    )
