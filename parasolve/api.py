"""
parasolve Programmatic API — headless facade over a ConstraintSystem.

This module provides a ``ParametricAPI`` class that wraps a
:class:`ConstraintSystem` behind a small, UI-free interface.  Use it for:

- **Host integration**: every mutation and every solve goes through one
  lock, so the system always sees a single writer.
- **Background solving**: :meth:`ParametricAPI.solve_async` runs the
  blocking solve on a dedicated worker thread and hands the result back to
  the awaiting task.
- **Scripting / tests**: build constraint graphs from plain Python values.

Example::

    from parasolve.api import ParametricAPI

    api = ParametricAPI()
    a = api.add_variable("a", 5.0)
    b = api.add_variable("b", 3.0)
    api.constrain_distance(a, b, 2.0)
    result = api.solve()
    assert result.ok

Target arguments
----------------
Wherever a constraint helper takes an operand, a :class:`ConstraintTarget`
is used as is, an integer (including numpy integers) is read as a variable
id, and any other real number is read as a constant.
"""

from __future__ import annotations

import asyncio
import logging
import numbers
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Union

from .kernel import constraints as builders
from .kernel.constraints import Constraint, ConstraintTarget, ConstraintType
from .kernel.diagnostics import ConstraintDiagnosis
from .kernel.ids import ConstraintId, EntityId, VariableId
from .kernel.newton_solver import SolverParams
from .kernel.variables import Variable, VariableError
from .system.constraint_system import ConstraintSystem, SolveResult

logger = logging.getLogger(__name__)

TargetLike = Union[ConstraintTarget, int, float]


def as_target(value: TargetLike) -> ConstraintTarget:
    """Coerce an operand argument to a :class:`ConstraintTarget`."""
    if isinstance(value, ConstraintTarget):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a valid constraint target")
    if isinstance(value, numbers.Integral):
        return ConstraintTarget.variable(VariableId(int(value)))
    if isinstance(value, numbers.Real):
        return ConstraintTarget.const(float(value))
    raise TypeError(f"Cannot use {type(value).__name__} as a constraint target")


class ParametricAPI:
    """
    Headless programmatic API for a parametric constraint system.

    Parameters:
        params: Solver tunables for the wrapped system.
        system: An existing system to wrap (``params`` is then ignored).
    """

    def __init__(
        self,
        params: Optional[SolverParams] = None,
        system: Optional[ConstraintSystem] = None,
    ):
        self._system = system if system is not None else ConstraintSystem(params)
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        # Called with every SolveResult, on the thread that ran the solve
        self.on_solved: Optional[Callable[[SolveResult], None]] = None

    @property
    def system(self) -> ConstraintSystem:
        return self._system

    # =====================================================================
    # Variables
    # =====================================================================

    def add_variable(
        self,
        name: str,
        value: float,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        locked: bool = False,
    ) -> VariableId:
        with self._lock:
            return self._system.create_variable(
                name, value, min_value=min_value, max_value=max_value, locked=locked,
            )

    def remove_variable(self, variable_id: VariableId) -> Optional[Variable]:
        with self._lock:
            return self._system.remove_variable(variable_id)

    def set_value(self, variable_id: VariableId, value: float):
        """Validated write; raises :class:`VariableError`."""
        with self._lock:
            self._system.set_variable_value(variable_id, value)

    def try_set_value(self, variable_id: VariableId, value: float) -> bool:
        """Like :meth:`set_value` but returns ``False`` instead of raising."""
        try:
            self.set_value(variable_id, value)
        except VariableError as exc:
            logger.info("[parasolve] Rejected value %s for variable %s: %s",
                        value, variable_id, exc)
            return False
        return True

    def get_value(self, variable_id: VariableId) -> Optional[float]:
        with self._lock:
            variable = self._system.get_variable(variable_id)
            return None if variable is None else variable.value

    def lock_variable(self, variable_id: VariableId, locked: bool = True):
        with self._lock:
            variable = self._system.get_variable(variable_id)
            if variable is None:
                raise VariableError(f"Variable {variable_id} not found")
            variable.set_locked(locked)

    @property
    def values(self) -> Dict[VariableId, float]:
        """Snapshot of every variable's current value."""
        with self._lock:
            return {v.id: v.value for v in self._system.variables()}

    # =====================================================================
    # Constraints
    # =====================================================================

    def add_constraint(self, constraint: Constraint) -> ConstraintId:
        with self._lock:
            return self._system.add_constraint(constraint)

    def constrain_distance(self, a: TargetLike, b: TargetLike, dist: float,
                           weight: float = 1.0) -> ConstraintId:
        """``|a - b| = dist``."""
        return self.add_constraint(
            builders.distance(as_target(a), as_target(b), dist).with_weight(weight)
        )

    def constrain_angle(self, a: TargetLike, b: TargetLike, angle_rad: float,
                        weight: float = 1.0) -> ConstraintId:
        """``|a - b| = angle_rad``."""
        return self.add_constraint(
            builders.angle(as_target(a), as_target(b), angle_rad).with_weight(weight)
        )

    def constrain_horizontal(self, target: TargetLike, weight: float = 1.0) -> ConstraintId:
        """Drive a slope/offset variable to zero."""
        return self.add_constraint(builders.horizontal(as_target(target)).with_weight(weight))

    def constrain_vertical(self, target: TargetLike, weight: float = 1.0) -> ConstraintId:
        """Drive an angle variable to π/2."""
        return self.add_constraint(builders.vertical(as_target(target)).with_weight(weight))

    # -- Entity relations (tracked for dependencies, no equation yet) ----------

    def constrain_parallel(self, line_a: EntityId, line_b: EntityId) -> ConstraintId:
        return self.add_constraint(builders.parallel(
            ConstraintTarget.line(line_a), ConstraintTarget.line(line_b)))

    def constrain_perpendicular(self, line_a: EntityId, line_b: EntityId) -> ConstraintId:
        return self.add_constraint(builders.perpendicular(
            ConstraintTarget.line(line_a), ConstraintTarget.line(line_b)))

    def constrain_equal(self, line_a: EntityId, line_b: EntityId) -> ConstraintId:
        return self.add_constraint(builders.equal(
            ConstraintTarget.line(line_a), ConstraintTarget.line(line_b)))

    def constrain_coincident(self, point_a: EntityId, point_b: EntityId) -> ConstraintId:
        return self.add_constraint(builders.coincident(
            ConstraintTarget.point(point_a), ConstraintTarget.point(point_b)))

    def remove_constraint(self, constraint_id: ConstraintId) -> Optional[Constraint]:
        with self._lock:
            return self._system.remove_constraint(constraint_id)

    def enable_constraint(self, constraint_id: ConstraintId, enabled: bool = True):
        with self._lock:
            constraint = self._system.get_constraint(constraint_id)
            if constraint is None:
                raise KeyError(f"Constraint {constraint_id} not found")
            constraint.set_enabled(enabled)

    # -- Dependency queries ----------------------------------------------------

    def dependents_of_entity(self, entity_id: EntityId) -> List[ConstraintId]:
        with self._lock:
            return [c.id for c in self._system.get_entity_constraints(entity_id)]

    def dependents_of_variable(self, variable_id: VariableId) -> List[ConstraintId]:
        with self._lock:
            return [c.id for c in self._system.get_variable_constraints(variable_id)]

    def constraints_of_type(self, ctype: ConstraintType) -> List[ConstraintId]:
        with self._lock:
            return [c.id for c in self._system.constraints() if c.constraint_type == ctype]

    # =====================================================================
    # Solving
    # =====================================================================

    def solve(self, params: Optional[SolverParams] = None) -> SolveResult:
        """Blocking solve under the API lock."""
        with self._lock:
            result = self._system.solve(params)
        if self.on_solved is not None:
            self.on_solved(result)
        return result

    async def solve_async(
        self,
        params: Optional[SolverParams] = None,
        timeout: Optional[float] = None,
    ) -> SolveResult:
        """
        Run :meth:`solve` on the API's worker thread.

        Solves submitted this way run one at a time in submission order.
        On *timeout* ``asyncio.TimeoutError`` is raised to the caller; the
        solve already running on the worker still finishes and commits.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._worker(), self.solve, params)
        if timeout is None:
            return await future
        return await asyncio.wait_for(future, timeout)

    def diagnose(self) -> ConstraintDiagnosis:
        with self._lock:
            return self._system.diagnose()

    def _worker(self) -> ThreadPoolExecutor:
        # Never held while a solve runs
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="parasolve")
            return self._executor

    def shutdown(self, wait: bool = True):
        """Stop the worker thread, if one was started."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    # =====================================================================
    # Serialisation
    # =====================================================================

    def to_json(self) -> str:
        with self._lock:
            return self._system.to_json()

    @classmethod
    def from_json(cls, text: str) -> "ParametricAPI":
        return cls(system=ConstraintSystem.from_json(text))
