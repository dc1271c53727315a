"""Solver session: set up once, invert many times.

Published Classes
-----------------
:class:`SessionState`
    Lifecycle states of a :class:`SolverSession`.

:class:`SolverSession`
    Owns the operator handle, configuration, matrix-free system, buffers
    and Krylov solver for one operator on one field layout.

    >>> from invop.grid import Field3D, Mesh
    >>> mesh = Mesh(nx=4)
    >>> b = Field3D(mesh, values=[2.0, 4.0, 6.0, 8.0])
    >>> with SolverSession(lambda f: 2.0 * f, template=b) as session:
    ...     session.setup()
    ...     x = session.invert(b)

Notes
-----
``setup`` and ``invert`` are collective over the mesh communicator. A
session is single-threaded; calling ``invert`` from inside one of its own
operator callbacks raises :class:`~invop.errors.UsageError`.
"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Set, Union

import attrs
import numpy as np

from invop.config import DEFAULT_PREFIX, InversionConfig, parse_options
from invop.errors import SetupError, SolveFailedError, UsageError
from invop.grid.field import GridFieldLike, is_grid_field
from invop.marshalling import FieldMarshaller
from invop.matrix_free.krylov import KrylovResult, KrylovSolver
from invop.matrix_free.preconditioners import build_preconditioner
from invop.matrix_free.system import MatrixFreeSystem
from invop.operator import FieldFunction, OperatorHandle
from invop.time_logger import (
    INVERT_EVENT,
    SETUP_EVENT,
    TimeLogger,
    default_timelogger,
)
from invop.time_logger import report_time as _report_time
from invop.verification import max_abs_difference


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    SET_UP = "set_up"
    INVERTING = "inverting"
    DESTROYED = "destroyed"


class SolverSession:
    """Matrix-free inversion of one operator.

    Parameters
    ----------
    operator
        An :class:`OperatorHandle`, a field -> field callable, or ``None``
        for the identity.
    template
        Field whose type, mesh and region every field passed to or
        returned from the session shares.
    config
        Explicit configuration. Copied, so the caller's instance is never
        modified.
    options
        Flat option mapping. Keys carrying ``prefix`` are applied on top of
        ``config`` (or of the defaults when ``config`` is omitted).
    prefix
        Option namespace of this session.
    preconditioner
        Optional approximate inverse of ``operator``, used when
        ``pc_type`` is ``"shell"``.
    time_logger
        Receives setup, invert and packing timings. Defaults to the
        process-wide logger.

    Attributes
    ----------
    config : InversionConfig
    handle : OperatorHandle
    last_result : KrylovResult or None
        Outcome of the most recent solve, successful or not.
    """

    def __init__(
        self,
        operator: Union[OperatorHandle, FieldFunction, None] = None,
        template: Optional[GridFieldLike] = None,
        config: Optional[InversionConfig] = None,
        options: Optional[Mapping[str, Any]] = None,
        prefix: str = DEFAULT_PREFIX,
        preconditioner: Optional[FieldFunction] = None,
        time_logger: Optional[TimeLogger] = None,
    ) -> None:
        if template is None:
            raise UsageError("SolverSession requires a template field")
        if not is_grid_field(template):
            raise UsageError(
                f"template must be a grid field, got "
                f"{type(template).__name__}"
            )

        if isinstance(operator, OperatorHandle):
            handle = operator
            if preconditioner is not None:
                handle.set_preconditioner(preconditioner)
        else:
            handle = OperatorHandle(operator, preconditioner)

        if config is None:
            config = InversionConfig.from_options(options, prefix)
        else:
            config = attrs.evolve(config)
            config.update(parse_options(options, prefix))

        self.handle = handle
        self.config = config
        self.prefix = prefix
        self.time_logger = (
            default_timelogger if time_logger is None else time_logger
        )
        self.marshaller = FieldMarshaller(config.precision, self.time_logger)
        self.last_result: Optional[KrylovResult] = None

        self._template = template
        self._state = SessionState.UNINITIALIZED
        self._system: Optional[MatrixFreeSystem] = None
        self._solver: Optional[KrylovSolver] = None
        self._rhs: Optional[np.ndarray] = None
        self._solution: Optional[np.ndarray] = None

    # ------------------------------------------------------------------ #
    #                              state                                  #
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_set_up(self) -> bool:
        return self._state in (SessionState.SET_UP, SessionState.INVERTING)

    @property
    def template(self) -> GridFieldLike:
        return self._template

    def _require_ready(self, action: str) -> None:
        if self._state is SessionState.UNINITIALIZED:
            raise UsageError(f"Cannot {action} before setup()")
        if self._state is SessionState.DESTROYED:
            raise UsageError(f"Cannot {action} after close()")
        if self._state is SessionState.INVERTING:
            raise UsageError(
                f"Cannot {action} while an inversion is in progress on "
                "this session"
            )

    def _check_field(self, field: Any, name: str) -> None:
        if not is_grid_field(field) or not self._template.same_layout(field):
            raise UsageError(
                f"{name} must be a {type(self._template).__name__} with the "
                f"session's mesh and layout, got {field!r}"
            )

    # ------------------------------------------------------------------ #
    #                          configuration                              #
    # ------------------------------------------------------------------ #
    def set_function(self, function: Optional[FieldFunction]) -> None:
        """Replace the operator function. Only allowed before setup()."""
        self.handle.set_function(function)

    def set_preconditioner(
        self, preconditioner: Optional[FieldFunction]
    ) -> None:
        """Replace the preconditioner function. Only allowed before
        setup()."""
        self.handle.set_preconditioner(preconditioner)

    def update_config(
        self,
        updates_dict: Optional[Dict[str, Any]] = None,
        silent: bool = False,
        **kwargs: Any,
    ) -> Set[str]:
        """Update configuration fields before setup().

        Parameters
        ----------
        updates_dict
            Mapping of field names to new values.
        silent
            Suppress errors for unrecognised names.
        **kwargs
            Additional settings to update.

        Returns
        -------
        set[str]
            Names of settings that were recognised.

        Raises
        ------
        UsageError
            If the session has already been set up or closed.
        KeyError
            If an unrecognised name is supplied and ``silent`` is False.
        """
        if self._state is not SessionState.UNINITIALIZED:
            raise UsageError(
                "Configuration is consumed by setup() and cannot be "
                "changed afterwards"
            )
        if updates_dict is None:
            updates_dict = {}
        updates_dict = updates_dict.copy()
        updates_dict.update(kwargs)
        if updates_dict == {}:
            return set()

        recognized, changed = self.config.update(updates_dict)
        unrecognised = set(updates_dict.keys()) - recognized
        if unrecognised and not silent:
            invalid = ", ".join(sorted(unrecognised))
            raise KeyError(
                f"'{invalid}' is not a valid inversion setting, and so was "
                "not updated."
            )
        if "precision" in changed:
            self.marshaller = FieldMarshaller(
                self.config.precision, self.time_logger
            )
        return recognized

    # ------------------------------------------------------------------ #
    #                            lifecycle                                #
    # ------------------------------------------------------------------ #
    def setup(self) -> None:
        """Build the matrix-free system and Krylov solver. Collective.

        Raises
        ------
        UsageError
            If the session is already set up or has been closed.
        SetupError
            If the backend rejects the configuration. The session stays
            uninitialised and may still be closed.
        """
        if self._state is SessionState.DESTROYED:
            raise UsageError("Cannot setup() a closed session")
        if self._state is not SessionState.UNINITIALIZED:
            raise UsageError("setup() has already been called")

        with self.time_logger.timed(SETUP_EVENT):
            try:
                system = MatrixFreeSystem(
                    self.handle, self._template, self.marshaller
                )
                preconditioner = build_preconditioner(self.config, system)
                solver = KrylovSolver(self.config, system, preconditioner)
                solver.set_up()
            except SetupError:
                raise
            except (ValueError, TypeError) as err:
                raise SetupError(
                    f"Krylov backend setup failed: {err}"
                ) from err

            self._system = system
            self._solver = solver
            self._rhs, self._solution = system.create_vectors()
            self.handle.lock()
            self._state = SessionState.SET_UP
        self.time_logger.progress(
            SETUP_EVENT,
            f"{self.config.ksp_type} on {system.global_size} unknowns",
        )

    def invert(
        self, b: GridFieldLike, x0: Optional[GridFieldLike] = None
    ) -> GridFieldLike:
        """Solve ``operator(x) = b`` and return a new field ``x``.

        Collective.

        Parameters
        ----------
        b
            Right-hand side. Read only.
        x0
            Optional initial guess. Zero when omitted.

        Returns
        -------
        GridFieldLike
            Freshly allocated solution field.

        Raises
        ------
        UsageError
            Before setup(), after close(), on re-entrant use, or for a
            field with a different layout.
        SolveFailedError
            If the solve ends with a non-positive convergence reason.
        """
        self._require_ready("invert()")
        self._check_field(b, "b")
        if x0 is not None:
            self._check_field(x0, "x0")

        with self.time_logger.timed(INVERT_EVENT):
            self._state = SessionState.INVERTING
            try:
                self.marshaller.pack(b, out=self._rhs)
                if x0 is None:
                    self._solution[:] = 0.0
                else:
                    self.marshaller.pack(x0, out=self._solution)
                result = self._solver.solve(self._rhs, self._solution)
            finally:
                self._state = SessionState.SET_UP

            self.last_result = result
            if not result.converged:
                raise SolveFailedError(
                    result.reason, result.iterations, result.residual_norm
                )
            x = self._template.new_empty()
            self.marshaller.unpack(self._solution, x)
        return x

    def apply(self, field: GridFieldLike) -> GridFieldLike:
        """Apply the forward operator to ``field``."""
        return self.handle.apply(field)

    def __call__(self, field: GridFieldLike) -> GridFieldLike:
        return self.apply(field)

    def verify(self, b: GridFieldLike, tol: float = 1e-5) -> bool:
        """Invert ``b`` and check ``max |operator(x) - b| < tol``.

        Returns True without solving when ``check_level <= 1``. Collective.
        At ``check_level > 3`` a failure prints the difference and the
        maxima of ``b``, ``operator(x)`` and ``x``.
        """
        if self.config.check_level <= 1:
            return True
        x = self.invert(b)
        result = self.apply(x)
        difference = max_abs_difference(result, b, self.marshaller)
        passed = bool(difference < tol)
        if not passed and self.config.check_level > 3:
            print(
                f"Verification failed: max |A x - b| = {difference:.6e} "
                f"(tol {tol:g})\n"
                f"  max |b|   = {self._max_abs(b):.6e}\n"
                f"  max |A x| = {self._max_abs(result):.6e}\n"
                f"  max |x|   = {self._max_abs(x):.6e}"
            )
        return passed

    def _max_abs(self, field: GridFieldLike) -> float:
        buffer = self.marshaller.pack(field)
        local = float(np.max(np.abs(buffer))) if buffer.size else 0.0
        return float(field.mesh.comm.max(local))

    def close(self) -> None:
        """Release the backend. Safe to call more than once."""
        if self._state is SessionState.DESTROYED:
            return
        if self._state is SessionState.INVERTING:
            raise UsageError("Cannot close() during an inversion")
        if self._solver is not None and self.config.check_level > 3:
            print(self._solver.describe())
        if self._system is not None:
            self._system.release()
        self._system = None
        self._solver = None
        self._rhs = None
        self._solution = None
        self._state = SessionState.DESTROYED

    def __enter__(self) -> "SolverSession":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    #                           diagnostics                               #
    # ------------------------------------------------------------------ #
    def describe(self) -> Dict[str, Any]:
        """Summarise method, tolerances, sizes and state."""
        cfg = self.config
        return {
            "state": self._state.value,
            "ksp_type": cfg.ksp_type,
            "pc_type": cfg.pc_type,
            "rtol": cfg.rtol,
            "atol": cfg.atol,
            "divtol": cfg.divtol,
            "max_it": cfg.max_it,
            "precision": np.dtype(cfg.precision).name,
            "local_size": int(self._template.local_size),
            "global_size": (
                None if self._system is None else self._system.global_size
            ),
            "operator_applications": (
                0 if self._system is None else self._system.applications
            ),
        }

    @staticmethod
    def report_time(
        time_logger: Optional[TimeLogger] = None,
    ) -> Dict[str, float]:
        """Read, reset and print the accumulated inversion timings."""
        return _report_time(time_logger)

    def __repr__(self) -> str:
        return (
            f"SolverSession(ksp_type='{self.config.ksp_type}', "
            f"state='{self._state.value}')"
        )
