"""Matrix-free preconditioners.

Each preconditioner maps a residual buffer ``r`` to ``z ~ A^{-1} r`` using
only applications of the operator (or of a caller-supplied function).
"""

from typing import Callable, Optional

import numpy as np
from scipy.sparse.linalg import LinearOperator

from invop.config import InversionConfig
from invop.errors import SetupError
from invop.matrix_free.system import MatrixFreeSystem

Preconditioner = Callable[[np.ndarray], np.ndarray]


class NeumannPreconditioner:
    """Truncated Neumann series ``z = sum_{k=0}^{order} (I - A)^k r``.

    Each extra order costs one operator application. The series only
    approximates ``A^{-1}`` when the spectral radius of ``I - A`` is below
    one, i.e. for operators already scaled close to the identity.
    """

    def __init__(self, system: MatrixFreeSystem, order: int) -> None:
        self.system = system
        self.order = order

    def __call__(self, residual: np.ndarray) -> np.ndarray:
        residual = np.ravel(residual)
        result = residual.copy()
        term = residual.copy()
        for _ in range(self.order):
            term = term - self.system.multiply(term)
            result += term
        return result


class ShellPreconditioner:
    """Applies the operator handle's preconditioner function."""

    def __init__(self, system: MatrixFreeSystem) -> None:
        self.system = system

    def __call__(self, residual: np.ndarray) -> np.ndarray:
        return self.system.precondition(np.ravel(residual))


def build_preconditioner(
    config: InversionConfig, system: MatrixFreeSystem
) -> Optional[Preconditioner]:
    """Return the preconditioner selected by ``config.pc_type``.

    Raises
    ------
    SetupError
        If ``'shell'`` is requested but the handle has no preconditioner
        function.
    """
    if config.pc_type == "none":
        return None
    if config.pc_type == "neumann":
        return NeumannPreconditioner(system, config.neumann_order)
    if system.handle.preconditioner is None:
        raise SetupError(
            "pc_type 'shell' requires a preconditioner function on the "
            "operator handle"
        )
    return ShellPreconditioner(system)


def as_linear_operator(
    preconditioner: Preconditioner, system: MatrixFreeSystem
) -> LinearOperator:
    """Wrap ``preconditioner`` for the ``M`` argument of SciPy solvers."""
    return LinearOperator(
        shape=system.shape,
        matvec=preconditioner,
        dtype=np.dtype(system.precision),
    )
