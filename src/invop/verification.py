"""Residual diagnostics for an inverted operator.

All functions here are collective: norms and maxima are reduced over the
communicator of the fields' mesh.
"""

from typing import TYPE_CHECKING, Dict, Optional

import numpy as np

from invop.grid.field import GridFieldLike
from invop.marshalling import FieldMarshaller

if TYPE_CHECKING:
    from invop.session import SolverSession


def _global_norm2(buffer: np.ndarray, comm) -> float:
    return float(np.sqrt(comm.sum(float(np.dot(buffer, buffer)))))


def _global_max_abs(buffer: np.ndarray, comm) -> float:
    local = float(np.max(np.abs(buffer))) if buffer.size else 0.0
    return float(comm.max(local))


def max_abs_difference(
    a: GridFieldLike,
    b: GridFieldLike,
    marshaller: Optional[FieldMarshaller] = None,
) -> float:
    """Return ``max |a - b|`` over every process."""
    if marshaller is None:
        marshaller = FieldMarshaller()
    difference = marshaller.pack(a) - marshaller.pack(b)
    return _global_max_abs(difference, a.mesh.comm)


def residual_diagnostics(
    session: "SolverSession", x: GridFieldLike, b: GridFieldLike
) -> Dict[str, float]:
    """Norms describing how well ``x`` solves ``session(x) = b``.

    Parameters
    ----------
    session
        Session whose operator is applied to ``x``.
    x
        Candidate solution.
    b
        Right-hand side.

    Returns
    -------
    dict
        ``"||r||2"``, ``"||b||2"``, ``"||r||2/||b||2"``, ``"||x||2"`` and
        ``"||r||inf"``, where ``r = b - A x``. The relative norm is ``inf``
        for a zero ``b`` with a nonzero residual and ``0`` when both vanish.
    """
    marshaller = session.marshaller
    comm = b.mesh.comm
    b_buffer = marshaller.pack(b)
    residual = b_buffer - marshaller.pack(session.apply(x))

    residual_norm = _global_norm2(residual, comm)
    rhs_norm = _global_norm2(b_buffer, comm)
    if rhs_norm > 0.0:
        relative = residual_norm / rhs_norm
    else:
        relative = 0.0 if residual_norm == 0.0 else float("inf")

    return {
        "||r||2": residual_norm,
        "||b||2": rhs_norm,
        "||r||2/||b||2": relative,
        "||x||2": _global_norm2(marshaller.pack(x), comm),
        "||r||inf": _global_max_abs(residual, comm),
    }
