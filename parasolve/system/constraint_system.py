"""
Constraint System — variables + constraints + the solve/commit cycle.

The system owns a :class:`VariableStore` and a :class:`ConstraintStore`
(each with its own id allocator) and is the only place solved values are
written back.  A solve is a pure function of the current snapshot:

1. Seed a :class:`NewtonSolver` from the stores.
2. Iterate to a terminal :class:`SolverResult`.
3. On convergence, check every changed value against its variable's
   bounds and commit through :meth:`Variable.set_value`.  If any value is
   out of bounds nothing is written.

Anything other than a successful commit leaves the store untouched.  The
system assumes a single writer; see :class:`parasolve.api.ParametricAPI`
for the locked, executor-backed entry point.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional

from ..kernel.constraints import Constraint, ConstraintStore
from ..kernel.diagnostics import ConstraintDiagnosis, analyze
from ..kernel.equations import SkippedConstraint
from ..kernel.ids import ConstraintId, EntityId, IdAllocator, VariableId
from ..kernel.newton_solver import NewtonSolver, SolverParams, SolverResult
from ..kernel.variables import Variable, VariableStore

logger = logging.getLogger(__name__)


class SolveStatus(Enum):
    SUCCESS = auto()
    UNDER_CONSTRAINED = auto()
    OVER_CONSTRAINED = auto()
    DID_NOT_CONVERGE = auto()
    OUT_OF_BOUNDS = auto()      # converged, but a value breaks a variable's bounds
    ERROR = auto()


_STATUS_FOR_RESULT = {
    SolverResult.CONVERGED: SolveStatus.SUCCESS,
    SolverResult.DID_NOT_CONVERGE: SolveStatus.DID_NOT_CONVERGE,
    SolverResult.UNDER_CONSTRAINED: SolveStatus.UNDER_CONSTRAINED,
    SolverResult.OVER_CONSTRAINED: SolveStatus.OVER_CONSTRAINED,
    SolverResult.FAILED: SolveStatus.ERROR,
}


@dataclass
class SolveResult:
    """Outcome of :meth:`ConstraintSystem.solve`."""
    status: SolveStatus
    message: str = ""
    iterations: int = 0
    residual_norm: float = 0.0
    skipped: List[SkippedConstraint] = field(default_factory=list)
    out_of_bounds: List[VariableId] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == SolveStatus.SUCCESS

    @classmethod
    def error(cls, message: str) -> "SolveResult":
        return cls(SolveStatus.ERROR, message=message)

    def to_dict(self) -> dict:
        return {
            "status": self.status.name,
            "message": self.message,
            "iterations": self.iterations,
            "residual_norm": self.residual_norm,
            "skipped": [s.to_dict() for s in self.skipped],
            "out_of_bounds": [int(v) for v in self.out_of_bounds],
        }


@dataclass
class SolveStats:
    solve_count: int = 0
    success_count: int = 0
    avg_iterations: float = 0.0          # running mean over all solves
    last_solve_time: Optional[float] = None   # time.time() at solve start
    last_solve_duration: float = 0.0     # seconds
    last_result: Optional[SolveResult] = None

    def record(self, result: SolveResult, started: float, duration: float):
        self.solve_count += 1
        if result.ok:
            self.success_count += 1
        self.avg_iterations += (result.iterations - self.avg_iterations) / self.solve_count
        self.last_solve_time = started
        self.last_solve_duration = duration
        self.last_result = result


class ConstraintSystem:
    """
    Manages variables and constraints and solves them.

    Usage::

        system = ConstraintSystem(SolverParams(damping=1.0))
        w = system.create_variable("width", 12.0)
        h = system.create_variable("height", 3.0)
        system.add_constraint(constraints.distance(
            ConstraintTarget.variable(w), ConstraintTarget.variable(h), 5.0))
        result = system.solve()
        assert result.ok
    """

    def __init__(self, params: Optional[SolverParams] = None):
        self.params = params or SolverParams()
        self._variable_ids = IdAllocator()
        self._constraint_ids = IdAllocator()
        self._variables = VariableStore(self._variable_ids)
        self._constraints = ConstraintStore(self._constraint_ids)
        self._stats = SolveStats()

    # =====================================================================
    # Variables
    # =====================================================================

    def add_variable(self, variable: Variable) -> VariableId:
        """Add a variable; the store assigns its id if it has none."""
        return self._variables.add(variable)

    def create_variable(
        self,
        name: str,
        value: float,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        locked: bool = False,
        description: str = "",
    ) -> VariableId:
        return self.add_variable(Variable(
            name=name,
            value=float(value),
            min_value=min_value,
            max_value=max_value,
            locked=locked,
            description=description,
        ))

    def remove_variable(self, variable_id: VariableId) -> Optional[Variable]:
        """
        Remove a variable and drop it from every constraint's targets.

        The constraints that referenced it stay in the system.
        """
        variable = self._variables.remove(variable_id)
        if variable is not None:
            touched = self._constraints.scrub_variable(variable_id)
            if touched:
                logger.debug(
                    "[parasolve] Removed variable %s from %d constraint(s)",
                    variable_id, len(touched),
                )
        return variable

    def get_variable(self, variable_id: VariableId) -> Optional[Variable]:
        return self._variables.get(variable_id)

    def set_variable_value(self, variable_id: VariableId, value: float):
        """
        Validated write.

        Raises:
            VariableError: unknown id, out of range or locked.
        """
        self._variables.set_value(variable_id, value)

    def variables(self) -> Iterator[Variable]:
        return self._variables.iter()

    @property
    def variable_count(self) -> int:
        return len(self._variables)

    # =====================================================================
    # Constraints
    # =====================================================================

    def add_constraint(self, constraint: Constraint) -> ConstraintId:
        return self._constraints.add(constraint)

    def remove_constraint(self, constraint_id: ConstraintId) -> Optional[Constraint]:
        return self._constraints.remove(constraint_id)

    def get_constraint(self, constraint_id: ConstraintId) -> Optional[Constraint]:
        return self._constraints.get(constraint_id)

    def constraints(self) -> Iterator[Constraint]:
        return self._constraints.iter()

    @property
    def constraint_count(self) -> int:
        return len(self._constraints)

    def get_entity_constraints(self, entity_id: EntityId) -> List[Constraint]:
        """Constraints acting on a geometric entity."""
        return self._constraints.get_entity_constraints(entity_id)

    def get_variable_constraints(self, variable_id: VariableId) -> List[Constraint]:
        """Constraints that use a variable."""
        return self._constraints.get_variable_constraints(variable_id)

    # =====================================================================
    # Solving
    # =====================================================================

    def build_solver(self, params: Optional[SolverParams] = None) -> NewtonSolver:
        """Seed a solver from the current snapshot without running it."""
        return NewtonSolver.from_model(
            self._variables.iter(), self._constraints.iter(), params or self.params,
        )

    def solve(self, params: Optional[SolverParams] = None) -> SolveResult:
        """
        Solve the system and commit the values on success.

        Args:
            params: Overrides :attr:`params` for this call only.
        """
        started = time.time()
        t0 = time.perf_counter()

        solver = self.build_solver(params)
        outcome = solver.solve()

        result = SolveResult(
            status=_STATUS_FOR_RESULT[outcome],
            iterations=solver.iterations,
            residual_norm=solver.residual_norm,
            skipped=list(solver.skipped),
        )

        if outcome == SolverResult.CONVERGED:
            offending = self._commit(solver)
            if offending:
                result.status = SolveStatus.OUT_OF_BOUNDS
                result.out_of_bounds = offending
                result.message = "Solved values out of bounds for variable(s) " + ", ".join(
                    str(v) for v in offending
                )
        elif outcome == SolverResult.FAILED:
            result.message = f"Solver failed: {solver.failure_reason}"
        elif outcome == SolverResult.UNDER_CONSTRAINED:
            result.message = (
                f"{solver.equation_count} usable equation(s) for "
                f"{solver.variable_count} free variable(s)"
            )
        elif outcome == SolverResult.OVER_CONSTRAINED:
            result.message = (
                f"{solver.equation_count} equations exceed "
                f"{solver.variable_count} free variable(s)"
            )
        elif outcome == SolverResult.DID_NOT_CONVERGE:
            result.message = f"No convergence after {solver.iterations} iteration(s)"

        self._log_result(result)
        self._stats.record(result, started, time.perf_counter() - t0)
        return result

    def _commit(self, solver: NewtonSolver) -> List[VariableId]:
        """
        Write converged values back; return the offending ids if any is out
        of bounds, in which case nothing is written.
        """
        pending: Dict[VariableId, float] = {}
        offending: List[VariableId] = []
        for vid in solver.variable_ids:
            variable = self._variables.get(vid)
            new_value = solver.get_variable_value(vid)
            if variable is None or new_value is None or new_value == variable.value:
                continue
            if not variable.in_bounds(new_value):
                offending.append(vid)
            pending[vid] = new_value

        if offending:
            return offending
        for vid, value in pending.items():
            self._variables.set_value(vid, value)
        return []

    @staticmethod
    def _log_result(result: SolveResult):
        if result.status == SolveStatus.SUCCESS:
            logger.debug("[parasolve] Solve succeeded in %d iteration(s)", result.iterations)
        elif result.status in (SolveStatus.UNDER_CONSTRAINED, SolveStatus.OVER_CONSTRAINED):
            logger.info("[parasolve] %s: %s", result.status.name, result.message)
        else:
            logger.warning("[parasolve] %s: %s", result.status.name, result.message)

    def diagnose(self) -> ConstraintDiagnosis:
        """Rank-based DOF / redundancy analysis at the current values."""
        return analyze(self.build_solver())

    # -- Statistics ------------------------------------------------------------

    @property
    def stats(self) -> SolveStats:
        return self._stats

    def reset_stats(self):
        self._stats = SolveStats()

    # =====================================================================
    # Serialisation
    # =====================================================================

    def to_dict(self) -> dict:
        return {
            "params": self.params.to_dict(),
            "variables": [v.to_dict() for v in self._variables.iter()],
            "constraints": [c.to_dict() for c in self._constraints.iter()],
            "next_variable_id": self._variable_ids.peek,
            "next_constraint_id": self._constraint_ids.peek,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ConstraintSystem":
        system = cls(SolverParams.from_dict(d.get("params", {})))
        for vd in d.get("variables", []):
            system.add_variable(Variable.from_dict(vd))
        for cd in d.get("constraints", []):
            system.add_constraint(Constraint.from_dict(cd))
        system._variable_ids.observe(d.get("next_variable_id", 1) - 1)
        system._constraint_ids.observe(d.get("next_constraint_id", 1) - 1)
        return system

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "ConstraintSystem":
        return cls.from_dict(json.loads(text))

    def __repr__(self) -> str:
        return (
            f"ConstraintSystem(variables={len(self._variables)}, "
            f"constraints={len(self._constraints)})"
        )
