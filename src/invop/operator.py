"""Operator handle: the callable a solver session inverts.

Published Classes
-----------------
:class:`OperatorHandle`
    Holds the field -> field function (identity by default) and an optional
    preconditioner function of the same signature.

    >>> handle = OperatorHandle(lambda f: 2.0 * f)
    >>> handle.is_locked
    False
"""

from typing import Callable, Optional

from invop.errors import UsageError
from invop.grid.field import GridFieldLike

FieldFunction = Callable[[GridFieldLike], GridFieldLike]


def identity(field: GridFieldLike) -> GridFieldLike:
    """Return ``field`` unchanged."""
    return field


class OperatorHandle:
    """Uniform callable wrapper around an operator function.

    Parameters
    ----------
    function
        Linear map from a field to a field of the same layout. Defaults to
        :func:`identity`.
    preconditioner
        Optional approximate inverse of ``function`` with the same
        signature, used by the ``"shell"`` preconditioner type.

    Notes
    -----
    A session locks its handle during ``setup()``. From then on the bound
    functions are part of the configured backend and cannot be replaced.
    """

    def __init__(
        self,
        function: Optional[FieldFunction] = None,
        preconditioner: Optional[FieldFunction] = None,
    ) -> None:
        self._locked = False
        self._function = identity
        self._preconditioner = None
        self.set_function(function)
        self.set_preconditioner(preconditioner)

    @property
    def function(self) -> FieldFunction:
        return self._function

    @property
    def preconditioner(self) -> Optional[FieldFunction]:
        return self._preconditioner

    @property
    def is_locked(self) -> bool:
        return self._locked

    def lock(self) -> None:
        """Forbid further replacement of the bound functions."""
        self._locked = True

    def _check_unlocked(self, what: str) -> None:
        if self._locked:
            raise UsageError(
                f"Cannot replace the {what} after setup(); the solver was "
                "configured around the current one. Build a new session "
                "instead."
            )

    def set_function(self, function: Optional[FieldFunction]) -> None:
        """Bind ``function``; ``None`` restores the identity."""
        self._check_unlocked("operator function")
        if function is None:
            function = identity
        if not callable(function):
            raise TypeError(
                f"Operator function must be callable, got "
                f"{type(function).__name__}"
            )
        self._function = function

    def set_preconditioner(
        self, preconditioner: Optional[FieldFunction]
    ) -> None:
        """Bind a preconditioner function, or clear it with ``None``."""
        self._check_unlocked("preconditioner function")
        if preconditioner is not None and not callable(preconditioner):
            raise TypeError(
                f"Preconditioner must be callable, got "
                f"{type(preconditioner).__name__}"
            )
        self._preconditioner = preconditioner

    def apply(self, field: GridFieldLike) -> GridFieldLike:
        """Apply the operator to ``field``."""
        return self._function(field)

    def __call__(self, field: GridFieldLike) -> GridFieldLike:
        return self.apply(field)

    def apply_preconditioner(self, field: GridFieldLike) -> GridFieldLike:
        """Apply the preconditioner function to ``field``."""
        if self._preconditioner is None:
            raise UsageError("No preconditioner function has been set")
        return self._preconditioner(field)
