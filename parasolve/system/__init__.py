from .constraint_system import ConstraintSystem, SolveResult, SolveStats, SolveStatus
