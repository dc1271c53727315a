"""Krylov driver wrapping SciPy's iterative solvers and two native methods.

Published Classes
-----------------
:class:`KrylovResult`
    Outcome of one solve: reason, iteration count and residual norms.

:class:`KrylovSolver`
    Configured once with an :class:`InversionConfig`, then reused for any
    number of right-hand sides.

Notes
-----
The SciPy methods compute their inner products locally and therefore run
on a single process only. ``minimal_residual`` and ``steepest_descent``
reduce every inner product over the mesh communicator and run on any
number of processes. Both follow the same preconditioned iteration::

    r = b - A x
    repeat:
        z = P r
        t = A z
        alpha = (r . z) / (t . z)     # steepest descent
        alpha = (t . r) / (t . t)     # minimal residual
        x += alpha z
        r -= alpha t
"""

from math import ceil
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np
import scipy.sparse.linalg as spla
from attrs import define, field

from invop.config import InversionConfig
from invop.errors import SetupError, UsageError
from invop.matrix_free.preconditioners import (
    Preconditioner,
    as_linear_operator,
)
from invop.matrix_free.reasons import ConvergedReason
from invop.matrix_free.system import MatrixFreeSystem


def _raised_by_scipy(err: BaseException) -> bool:
    """True when the innermost frame of ``err`` belongs to SciPy."""
    tb = err.__traceback__
    if tb is None:
        return False
    while tb.tb_next is not None:
        tb = tb.tb_next
    module = tb.tb_frame.f_globals.get("__name__", "")
    return module == "scipy" or module.startswith("scipy.")


@define(frozen=True)
class KrylovResult:
    """Outcome of :meth:`KrylovSolver.solve`.

    Attributes
    ----------
    reason : ConvergedReason
        Why the iteration stopped. Positive values are successes.
    iterations : int
        Iterations reported by the method. gmres counts inner iterations;
        lgmres and gcrotmk count outer cycles.
    residual_norm : float
        Global two-norm of ``b - A x`` for the returned ``x``.
    rhs_norm : float
        Global two-norm of ``b``.
    operator_applications : int
        Operator applications made during the solve, including those
        spent inside a Neumann preconditioner.
    """

    reason: ConvergedReason = field(converter=ConvergedReason)
    iterations: int = field(default=0)
    residual_norm: float = field(default=0.0)
    rhs_norm: float = field(default=0.0)
    operator_applications: int = field(default=0)

    @property
    def converged(self) -> bool:
        return self.reason.converged


class KrylovSolver:
    """Iterative solver for a :class:`MatrixFreeSystem`.

    Parameters
    ----------
    config
        Method, tolerances and residual check settings.
    system
        Matrix-free system to invert.
    preconditioner
        Optional callable mapping a residual buffer to a preconditioned
        buffer.
    """

    def __init__(
        self,
        config: InversionConfig,
        system: MatrixFreeSystem,
        preconditioner: Optional[Preconditioner] = None,
    ) -> None:
        self.config = config
        self.system = system
        self.preconditioner = preconditioner
        self._operator = None
        self._preconditioner_operator = None
        self._is_set_up = False

    @property
    def comm(self):
        return self.system.comm

    @property
    def is_set_up(self) -> bool:
        return self._is_set_up

    def set_up(self) -> None:
        """Validate the method against the communicator and build wrappers.

        Raises
        ------
        SetupError
            If a SciPy method is requested on more than one process.
        """
        cfg = self.config
        if not cfg.is_native:
            if self.comm.size > 1:
                raise SetupError(
                    f"ksp_type '{cfg.ksp_type}' computes local inner "
                    f"products and cannot run on {self.comm.size} "
                    f"processes. Use 'minimal_residual' or "
                    f"'steepest_descent'."
                )
            self._operator = self.system.as_linear_operator()
            if self.preconditioner is not None:
                self._preconditioner_operator = as_linear_operator(
                    self.preconditioner, self.system
                )
        self._is_set_up = True

    def solve(self, rhs: np.ndarray, lhs: np.ndarray) -> KrylovResult:
        """Solve ``A lhs = rhs`` in place, starting from ``lhs``.

        Collective. Exceptions raised by the operator function propagate.

        Parameters
        ----------
        rhs
            Right-hand-side buffer.
        lhs
            Initial guess on entry, solution on exit.

        Returns
        -------
        KrylovResult
        """
        if not self._is_set_up:
            raise UsageError("KrylovSolver.set_up() has not been called")
        system = self.system
        start = system.applications
        rhs_norm = system.norm(rhs)
        if rhs_norm == 0.0:
            lhs[:] = 0.0
            return KrylovResult(ConvergedReason.CONVERGED_ATOL)

        if self.config.is_native:
            iterations, info = self._solve_native(rhs, lhs)
        else:
            iterations, info = self._solve_scipy(rhs, lhs)
        applications = system.applications - start

        residual = rhs - system.multiply(lhs)
        residual_norm = system.norm(residual)
        reason = self._classify(info, lhs, residual_norm, rhs_norm)
        reason = ConvergedReason(int(self.comm.min(int(reason))))
        return KrylovResult(
            reason=reason,
            iterations=iterations,
            residual_norm=residual_norm,
            rhs_norm=rhs_norm,
            operator_applications=applications,
        )

    def _scipy_kwargs(self, count: Callable[..., None]) -> Dict[str, Any]:
        cfg = self.config
        kwargs = {
            "rtol": cfg.rtol,
            "M": self._preconditioner_operator,
            "callback": count,
        }
        if cfg.ksp_type != "minres":
            kwargs["atol"] = cfg.atol
        restart = min(cfg.restart, cfg.max_it)
        cycles = int(ceil(cfg.max_it / restart))
        if cfg.ksp_type == "gmres":
            # maxiter counts restart cycles; the callback fires per inner
            # iteration with the preconditioned residual norm.
            kwargs.update(
                restart=restart,
                maxiter=cycles,
                callback_type="pr_norm",
            )
        elif cfg.ksp_type == "lgmres":
            kwargs.update(inner_m=restart, maxiter=cycles)
        elif cfg.ksp_type == "gcrotmk":
            kwargs.update(m=restart, maxiter=cycles)
        else:
            kwargs["maxiter"] = cfg.max_it
        return kwargs

    def _solve_scipy(
        self, rhs: np.ndarray, lhs: np.ndarray
    ) -> Tuple[int, int]:
        iterations = 0

        def count(*_):
            nonlocal iterations
            iterations += 1

        method = getattr(spla, self.config.ksp_type)
        kwargs = self._scipy_kwargs(count)
        try:
            solution, info = method(
                self._operator, rhs, x0=lhs.copy(), **kwargs
            )
        except np.linalg.LinAlgError:
            return iterations, -1
        except RuntimeError as err:
            # lgmres and gcrotmk raise RuntimeError on breakdown; errors
            # from the operator callbacks still propagate.
            if not _raised_by_scipy(err):
                raise
            return iterations, -1
        lhs[:] = solution
        return iterations, int(info)

    def _solve_native(
        self, rhs: np.ndarray, lhs: np.ndarray
    ) -> Tuple[int, int]:
        cfg = self.config
        system = self.system
        steepest = cfg.ksp_type == "steepest_descent"

        residual = rhs - system.multiply(lhs)
        rhs_norm = system.norm(rhs)
        tolerance = max(cfg.rtol * rhs_norm, cfg.atol)
        divergence = cfg.divtol * rhs_norm

        iterations = 0
        while True:
            residual_norm = system.norm(residual)
            if residual_norm <= tolerance:
                return iterations, 0
            if not np.isfinite(residual_norm) or residual_norm > divergence:
                return iterations, -1
            if iterations >= cfg.max_it:
                return iterations, 1

            if self.preconditioner is None:
                direction = residual
            else:
                direction = self.preconditioner(residual)
            image = system.multiply(direction)
            if steepest:
                numerator = system.dot(residual, direction)
                denominator = system.dot(image, direction)
            else:
                numerator = system.dot(image, residual)
                denominator = system.dot(image, image)
            if denominator == 0.0 or not np.isfinite(denominator):
                return iterations, -1

            alpha = numerator / denominator
            lhs += alpha * direction
            residual = residual - alpha * image
            iterations += 1

    def _classify(
        self,
        info: int,
        lhs: np.ndarray,
        residual_norm: float,
        rhs_norm: float,
    ) -> ConvergedReason:
        cfg = self.config
        finite = self.comm.min(int(np.all(np.isfinite(lhs))))
        if not finite or not np.isfinite(residual_norm):
            return ConvergedReason.DIVERGED_NANORINF
        if residual_norm > cfg.divtol * rhs_norm:
            return ConvergedReason.DIVERGED_DTOL
        if info < 0:
            return ConvergedReason.DIVERGED_BREAKDOWN

        tolerance = max(cfg.rtol * rhs_norm, cfg.atol)
        if info > 0 and residual_norm > tolerance:
            return ConvergedReason.DIVERGED_ITS
        if (
            cfg.check_residual
            and residual_norm > cfg.residual_factor * tolerance
        ):
            return ConvergedReason.DIVERGED_BREAKDOWN
        if residual_norm <= cfg.atol:
            return ConvergedReason.CONVERGED_ATOL
        return ConvergedReason.CONVERGED_RTOL

    def describe(self) -> str:
        """Return a short human-readable summary of the configuration."""
        cfg = self.config
        backend = "native" if cfg.is_native else "scipy.sparse.linalg"
        lines = [
            f"KrylovSolver: ksp_type={cfg.ksp_type} ({backend})",
            f"  pc_type={cfg.pc_type}"
            + (
                f" (order {cfg.neumann_order})"
                if cfg.pc_type == "neumann" else ""
            ),
            f"  rtol={cfg.rtol:g} atol={cfg.atol:g} divtol={cfg.divtol:g} "
            f"max_it={cfg.max_it}",
            f"  unknowns: {self.system.local_size} local, "
            f"{self.system.global_size} global on {self.comm.size} "
            f"process(es)",
            f"  precision={np.dtype(cfg.precision).name}",
        ]
        return "\n".join(lines)
