"""Matrix-free representation of an operator handle.

The Krylov backend only ever multiplies the system by trial vectors. Each
multiplication scatters the trial vector into a scratch field, applies the
handle's function and gathers the result back out. No coefficient of the
operator is computed or stored.
"""

from typing import Callable, Optional, Tuple

import numpy as np
from scipy.sparse.linalg import LinearOperator

from invop.errors import UsageError
from invop.grid.field import GridFieldLike
from invop.marshalling import FieldMarshaller
from invop.operator import OperatorHandle


class MatrixFreeSystem:
    """Black-box linear operator of size ``local_size x local_size``.

    Parameters
    ----------
    handle
        Operator handle whose function defines the system.
    template
        Representative field. Its layout fixes the local size, and a
        scratch field like it is allocated once here and reused by every
        multiplication.
    marshaller
        Marshaller used to move data between buffers and fields.

    Attributes
    ----------
    local_size : int
        Unknowns owned by this process.
    global_size : int
        Unknowns summed over the mesh communicator.
    applications : int
        Number of operator applications performed so far.

    Notes
    -----
    Constructing the system is collective because of ``global_size``.
    Exceptions raised by the operator function propagate to the caller of
    :meth:`multiply` and abort the solve in progress.
    """

    def __init__(
        self,
        handle: OperatorHandle,
        template: GridFieldLike,
        marshaller: FieldMarshaller,
    ) -> None:
        self.handle = handle
        self.template = template
        self.marshaller = marshaller
        self.comm = template.mesh.comm
        self.local_size = int(template.local_size)
        self.global_size = int(self.comm.sum(self.local_size))
        self.applications = 0
        self._scratch = template.new_empty()

    @property
    def precision(self) -> type:
        return self.marshaller.precision

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.local_size, self.local_size)

    def create_vectors(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return zeroed right-hand-side and solution buffers."""
        return (
            np.zeros(self.local_size, dtype=self.precision),
            np.zeros(self.local_size, dtype=self.precision),
        )

    def _through_field(
        self,
        function: Callable[[GridFieldLike], GridFieldLike],
        vector: np.ndarray,
        out: Optional[np.ndarray],
        label: str,
    ) -> np.ndarray:
        self.marshaller.unpack(vector, self._scratch)
        result = function(self._scratch)
        if not self.template.same_layout(result):
            raise UsageError(
                f"{label} returned {type(result).__name__}, expected a "
                f"{type(self.template).__name__} on the session's mesh"
            )
        return self.marshaller.pack(result, out=out)

    def multiply(
        self, vector: np.ndarray, out: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Return ``A @ vector`` by applying the operator function."""
        self.applications += 1
        return self._through_field(
            self.handle.apply, vector, out, "Operator function"
        )

    def precondition(
        self, vector: np.ndarray, out: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Apply the handle's preconditioner function to ``vector``."""
        return self._through_field(
            self.handle.apply_preconditioner, vector, out,
            "Preconditioner function",
        )

    def as_linear_operator(self) -> LinearOperator:
        """Wrap :meth:`multiply` as a SciPy ``LinearOperator``."""
        return LinearOperator(
            shape=self.shape,
            matvec=self.multiply,
            dtype=np.dtype(self.precision),
        )

    def dot(self, a: np.ndarray, b: np.ndarray) -> float:
        """Global inner product. Collective."""
        return float(self.comm.sum(float(np.dot(a, b))))

    def norm(self, a: np.ndarray) -> float:
        """Global two-norm. Collective."""
        return float(np.sqrt(self.dot(a, a)))

    def release(self) -> None:
        """Drop the scratch field."""
        self._scratch = None
