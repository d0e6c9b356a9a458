from .ids import NULL_ID, ConstraintId, EntityId, IdAllocator, VariableId
from .variables import Variable, VariableError, VariableStore
from .constraints import (
    Constraint,
    ConstraintStore,
    ConstraintTarget,
    ConstraintType,
    TargetKind,
)
from .equations import (
    ConstraintEquation,
    EquationBuilder,
    EquationKind,
    Operand,
    SkippedConstraint,
    SkipReason,
)
from .newton_solver import NewtonSolver, SolverParams, SolverResult, solve_linear_system
from .diagnostics import ConstraintDiagnosis, DiagnosisType, analyze
