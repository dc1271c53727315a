"""Matrix-free linear system, preconditioners and Krylov driver."""
from invop.matrix_free.krylov import KrylovResult, KrylovSolver
from invop.matrix_free.preconditioners import (
    NeumannPreconditioner,
    ShellPreconditioner,
    build_preconditioner,
)
from invop.matrix_free.reasons import ConvergedReason
from invop.matrix_free.system import MatrixFreeSystem

__all__ = [
    "ConvergedReason",
    "KrylovResult",
    "KrylovSolver",
    "MatrixFreeSystem",
    "NeumannPreconditioner",
    "ShellPreconditioner",
    "build_preconditioner",
]
