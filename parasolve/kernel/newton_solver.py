"""
Damped Newton-Raphson solver — numpy arrays, hand-rolled linear algebra.

Architecture
------------
* Free variables are laid out in a flat vector ``x``; each gets a slot
  index when it is added (insertion order).
* Each :class:`ConstraintEquation` contributes one weighted residual
  ``r_i = w_i * f_i(x)`` and one weighted Jacobian row ``w_i * ∇f_i(x)``.
* ``solve()`` iterates ``x ← x - damping·Δx`` where ``Δx`` is the Newton
  step.  Square systems solve ``J·Δx = r`` directly; systems with fewer
  equations than variables take the minimum-norm step
  ``Δx = Jᵀ·(J·Jᵀ)⁻¹·r``.  Both go through :func:`solve_linear_system`,
  a dense Gaussian elimination with partial pivoting.

Damping is load-bearing: the ``abs()`` residuals have a kink at zero and an
undamped step tends to oscillate across it.

Outcomes
--------
Every terminal state is a :class:`SolverResult` value; numerical trouble
(singular Jacobian, non-finite values, shape mismatches) ends in
``FAILED`` with :attr:`NewtonSolver.failure_reason` set, never an exception.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterable, List, Optional

import numpy as np

from .constraints import Constraint
from .equations import ConstraintEquation, EquationBuilder, SkippedConstraint
from .ids import VariableId
from .variables import Variable

logger = logging.getLogger(__name__)


@dataclass
class SolverParams:
    """Tunables for :class:`NewtonSolver`."""
    max_iterations: int = 100
    tolerance: float = 1e-6        # on ‖r‖₂
    damping: float = 0.1           # fraction of the Newton step taken
    gradient_step: float = 1e-8    # finite-difference step for gradient checks
    pivot_tolerance: float = 1e-12

    def __post_init__(self):
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0, got {self.max_iterations}")
        if not self.tolerance > 0.0:
            raise ValueError(f"tolerance must be > 0, got {self.tolerance}")
        if not 0.0 < self.damping <= 1.0:
            raise ValueError(f"damping must be in (0, 1], got {self.damping}")
        if not self.gradient_step > 0.0:
            raise ValueError(f"gradient_step must be > 0, got {self.gradient_step}")
        if self.pivot_tolerance < 0.0:
            raise ValueError(f"pivot_tolerance must be >= 0, got {self.pivot_tolerance}")

    def to_dict(self) -> dict:
        return {
            "max_iterations": self.max_iterations,
            "tolerance": self.tolerance,
            "damping": self.damping,
            "gradient_step": self.gradient_step,
            "pivot_tolerance": self.pivot_tolerance,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SolverParams":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


class SolverResult(Enum):
    CONVERGED = auto()
    DID_NOT_CONVERGE = auto()
    UNDER_CONSTRAINED = auto()
    OVER_CONSTRAINED = auto()
    FAILED = auto()


# =========================================================================
# Linear algebra
# =========================================================================

def solve_linear_system(a, b, pivot_tolerance: float = 1e-12) -> Optional[np.ndarray]:
    """
    Solve ``a·x = b`` by Gaussian elimination with partial pivoting.

    Returns ``None`` when ``a`` is not square, does not match ``b``,
    contains non-finite entries, or is (near-)singular: a pivot smaller
    than *pivot_tolerance* after the row swap.
    """
    a = np.array(a, dtype=np.float64)
    b = np.array(b, dtype=np.float64)
    if a.ndim != 2 or b.ndim != 1:
        return None
    n = b.shape[0]
    if a.shape != (n, n):
        return None
    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
        return None

    aug = np.hstack([a, b.reshape(n, 1)])

    for i in range(n):
        # Row with the largest pivot candidate goes to the top
        max_row = i + int(np.argmax(np.abs(aug[i:, i])))
        if max_row != i:
            aug[[i, max_row]] = aug[[max_row, i]]

        pivot = aug[i, i]
        if abs(pivot) < pivot_tolerance:
            return None

        factors = aug[i + 1:, i] / pivot
        aug[i + 1:, i:] -= np.outer(factors, aug[i, i:])

    x = np.zeros(n, dtype=np.float64)
    for i in range(n - 1, -1, -1):
        x[i] = (aug[i, n] - aug[i, i + 1:n] @ x[i + 1:]) / aug[i, i]
    return x


# =========================================================================
# Solver
# =========================================================================

class NewtonSolver:
    """
    Newton-Raphson solver over a snapshot of variable values.

    Usage::

        solver = NewtonSolver(SolverParams(damping=1.0))
        solver.add_variable(v1, 5.0)
        solver.add_variable(v2, 3.0)
        solver.add_equation(eq)
        if solver.solve() == SolverResult.CONVERGED:
            value = solver.get_variable_value(v1)
    """

    def __init__(self, params: Optional[SolverParams] = None):
        self.params = params or SolverParams()
        self._ids: List[VariableId] = []
        self._values: List[float] = []
        self._variable_map: Dict[VariableId, int] = {}
        self._equations: List[ConstraintEquation] = []
        self.skipped: List[SkippedConstraint] = []
        self.iterations: int = 0
        self.residual_norm: float = math.nan
        self.failure_reason: str = ""
        self.result: Optional[SolverResult] = None

    # -- Seeding ---------------------------------------------------------------

    def add_variable(self, variable_id: VariableId, initial_value: float) -> int:
        """Add a free variable and return its slot index."""
        index = len(self._ids)
        self._ids.append(variable_id)
        self._values.append(float(initial_value))
        self._variable_map[variable_id] = index
        return index

    def add_equation(self, equation: ConstraintEquation):
        self._equations.append(equation)

    @classmethod
    def from_model(
        cls,
        variables: Iterable[Variable],
        constraints: Iterable[Constraint],
        params: Optional[SolverParams] = None,
    ) -> "NewtonSolver":
        """
        Seed a solver from variables and constraints.

        Unlocked variables become free slots in insertion order; locked
        variables are frozen as constants inside the equations.
        """
        solver = cls(params)
        frozen: Dict[VariableId, float] = {}
        for v in variables:
            if v.locked:
                frozen[v.id] = v.value
            else:
                solver.add_variable(v.id, v.value)

        built = EquationBuilder(solver.variable_map, frozen).build(constraints)
        for eq in built.equations:
            solver.add_equation(eq)
        solver.skipped = built.skipped
        return solver

    # -- State queries -------------------------------------------------------

    @property
    def variable_map(self) -> Dict[VariableId, int]:
        return dict(self._variable_map)

    @property
    def variable_ids(self) -> List[VariableId]:
        return list(self._ids)

    @property
    def equations(self) -> List[ConstraintEquation]:
        return list(self._equations)

    @property
    def variable_count(self) -> int:
        return len(self._ids)

    @property
    def equation_count(self) -> int:
        return len(self._equations)

    def get_variable_value(self, variable_id: VariableId) -> Optional[float]:
        index = self._variable_map.get(variable_id)
        return None if index is None else self._values[index]

    def get_all_values(self) -> List[float]:
        return list(self._values)

    # -- Assembly ------------------------------------------------------------

    def compute_residuals(self, x) -> np.ndarray:
        """Weighted residual vector ``r_i = w_i * f_i(x)``."""
        return np.array(
            [eq.weight * eq.residual(x) for eq in self._equations],
            dtype=np.float64,
        )

    def compute_jacobian(self, x) -> np.ndarray:
        """Weighted Jacobian ``J[i, j] = w_i * ∂f_i/∂x_j`` from analytic gradients."""
        jac = np.zeros((len(self._equations), len(x)), dtype=np.float64)
        for i, eq in enumerate(self._equations):
            jac[i, :] = eq.weight * eq.gradient(x)
        return jac

    def newton_step(self, jacobian: np.ndarray, residuals: np.ndarray) -> Optional[np.ndarray]:
        """
        The step ``Δx`` with ``J·Δx = r``, or ``None`` when it cannot be formed.

        Under-determined systems get the minimum-norm step.  ``J`` is
        normalised by its largest entry first so the pivots of ``J·Jᵀ`` are
        compared on the same scale as the pivots of ``J`` in the square case.
        """
        m, n = jacobian.shape
        if residuals.shape != (m,):
            return None
        tol = self.params.pivot_tolerance
        if m == n:
            return solve_linear_system(jacobian, residuals, tol)
        if m < n:
            scale = float(np.max(np.abs(jacobian))) if jacobian.size else 0.0
            if not scale > 0.0:
                return None
            unit = jacobian / scale
            # J·Δx = r  with  Δx = Jᵀ·y  becomes  (U·Uᵀ)·(s·y) = r / s
            y = solve_linear_system(unit @ unit.T, residuals / scale, tol)
            return None if y is None else unit.T @ y
        return None

    # -- Solve -----------------------------------------------------------------

    def solve(self) -> SolverResult:
        """
        Run the damped Newton iteration.

        On ``CONVERGED`` the solver's values are updated; on every other
        outcome they keep their seeded values.
        """
        self.iterations = 0
        self.failure_reason = ""
        x = np.array(self._values, dtype=np.float64)
        self.residual_norm = float(np.linalg.norm(self.compute_residuals(x)))

        if not self._ids or not self._equations:
            return self._finish(SolverResult.UNDER_CONSTRAINED)
        if len(self._equations) > len(self._ids):
            return self._finish(SolverResult.OVER_CONSTRAINED)

        p = self.params

        for _ in range(p.max_iterations):
            residuals = self.compute_residuals(x)
            self.residual_norm = float(np.linalg.norm(residuals))
            if self.residual_norm < p.tolerance:
                return self._converged(x)
            if not math.isfinite(self.residual_norm):
                return self._fail("non-finite residual")

            step = self.newton_step(self.compute_jacobian(x), residuals)
            if step is None:
                return self._fail("singular Jacobian")

            x = x - p.damping * step
            self.iterations += 1

            if not np.all(np.isfinite(x)):
                return self._fail("non-finite variable value")

        # The last update has not been checked yet
        self.residual_norm = float(np.linalg.norm(self.compute_residuals(x)))
        if self.residual_norm < p.tolerance:
            return self._converged(x)
        return self._finish(SolverResult.DID_NOT_CONVERGE)

    def _converged(self, x: np.ndarray) -> SolverResult:
        self._values = [float(v) for v in x]
        return self._finish(SolverResult.CONVERGED)

    def _fail(self, reason: str) -> SolverResult:
        self.failure_reason = reason
        return self._finish(SolverResult.FAILED)

    def _finish(self, result: SolverResult) -> SolverResult:
        self.result = result
        logger.debug(
            "[parasolve] Newton %s after %d iteration(s), |r|=%g (%d eq, %d var)",
            result.name, self.iterations, self.residual_norm,
            len(self._equations), len(self._ids),
        )
        return result

    def __repr__(self) -> str:
        return (
            f"NewtonSolver(variables={len(self._ids)}, "
            f"equations={len(self._equations)}, skipped={len(self.skipped)})"
        )
