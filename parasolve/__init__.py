"""
parasolve — parametric constraint solving for 2D drafting.

Variables and typed constraints live in a :class:`ConstraintSystem`;
``solve()`` runs a damped Newton-Raphson iteration and commits the solved
values back to the variables.
"""

from .kernel import constraints
from .kernel.constraints import Constraint, ConstraintTarget, ConstraintType, TargetKind
from .kernel.ids import NULL_ID, ConstraintId, EntityId, VariableId
from .kernel.newton_solver import NewtonSolver, SolverParams, SolverResult
from .kernel.variables import Variable, VariableError
from .system.constraint_system import ConstraintSystem, SolveResult, SolveStats, SolveStatus
from .api import ParametricAPI

__version__ = "0.1.0"
