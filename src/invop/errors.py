"""Exception types raised by the inversion engine.

Two families are kept apart. :class:`UsageError` (and its
:class:`MarshallingError` subclass) signal a programming error in the
caller and are not meant to be caught. :class:`SolveFailedError` signals
that the Krylov backend stopped without converging; callers are expected to
catch it and decide whether to retry, fall back or abort.
"""

from typing import Optional


class InvopError(Exception):
    """Base class for all errors raised by invop."""


class UsageError(InvopError, RuntimeError):
    """A contract between caller and engine was violated."""


class MarshallingError(UsageError, ValueError):
    """A buffer and a field disagree on size, or the field is unallocated."""


class SetupError(InvopError):
    """Backend state could not be created during ``setup()``."""


class SolveFailedError(InvopError):
    """The iterative solve stopped with a non-positive convergence reason.

    Parameters
    ----------
    reason
        Convergence reason reported for the solve.
    iterations
        Number of Krylov iterations performed.
    residual_norm
        Global two-norm of the final residual, if it was computed.
    """

    def __init__(
        self,
        reason: int,
        iterations: int = 0,
        residual_norm: Optional[float] = None,
    ) -> None:
        self.reason = reason
        self.iterations = iterations
        self.residual_norm = residual_norm
        name = getattr(reason, "name", None)
        label = f"{int(reason)} ({name})" if name else f"{int(reason)}"
        message = (
            f"Krylov solve failed with reason {label} after "
            f"{iterations} iterations"
        )
        if residual_norm is not None:
            message += f", residual norm {residual_norm:.6e}"
        super().__init__(message)
