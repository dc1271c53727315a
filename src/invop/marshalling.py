"""Copy field data to and from the flat buffers seen by the Krylov backend.

The backend works on contiguous one-dimensional arrays whose entry ``k``
is the ``k``-th point of the field's iteration order. Packing gathers the
field storage through ``field.index_order``; unpacking scatters back
through the same indices, so an unpack of a pack reproduces the field
exactly whenever the buffer precision matches the field dtype.
"""

from typing import Optional

import numpy as np
from numba import njit

from invop._utils import PrecisionDType, precision_converter
from invop.errors import MarshallingError
from invop.grid.field import GridFieldLike
from invop.time_logger import PACKING_EVENT, TimeLogger, default_timelogger


@njit(nogil=True)
def _gather(source, indices, out):
    for k in range(indices.shape[0]):
        out[k] = source[indices[k]]


@njit(nogil=True)
def _scatter(buffer, indices, target):
    for k in range(indices.shape[0]):
        target[indices[k]] = buffer[k]


def _storage(field: GridFieldLike) -> np.ndarray:
    if not field.is_allocated:
        raise MarshallingError(
            f"Cannot marshal unallocated {type(field).__name__}"
        )
    flat = field.values.reshape(-1)
    if not np.may_share_memory(flat, field.values):
        raise MarshallingError(
            f"{type(field).__name__} storage is not contiguous"
        )
    return flat


class FieldMarshaller:
    """Packs fields into buffers and unpacks buffers into fields.

    Parameters
    ----------
    precision
        dtype of the buffers produced by :meth:`pack`.
    time_logger
        Logger receiving the ``"operator_packing"`` timings. Defaults to
        the process-wide logger.
    """

    def __init__(
        self,
        precision: PrecisionDType = np.float64,
        time_logger: Optional[TimeLogger] = None,
    ) -> None:
        self.precision = precision_converter(precision)
        self.time_logger = (
            default_timelogger if time_logger is None else time_logger
        )

    def pack(
        self, field: GridFieldLike, out: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Copy the local points of ``field`` into a flat buffer.

        Parameters
        ----------
        field
            Allocated source field.
        out
            Destination buffer of length ``field.local_size``. A new
            buffer of the marshaller's precision is created when omitted.

        Returns
        -------
        numpy.ndarray
            The filled buffer.

        Raises
        ------
        MarshallingError
            If ``field`` is unallocated or ``out`` has the wrong length.
        """
        with self.time_logger.timed(PACKING_EVENT):
            indices = field.index_order
            source = _storage(field)
            if out is None:
                out = np.empty(indices.shape[0], dtype=self.precision)
            elif out.ndim != 1 or out.shape[0] != indices.shape[0]:
                raise MarshallingError(
                    f"Buffer of shape {out.shape} cannot hold the "
                    f"{indices.shape[0]} local points of "
                    f"{type(field).__name__}"
                )
            _gather(source, indices, out)
        return out

    def unpack(self, buffer: np.ndarray, field: GridFieldLike) -> None:
        """Overwrite the local points of ``field`` with ``buffer``.

        Raises
        ------
        MarshallingError
            If ``field`` is unallocated or the lengths differ.
        """
        with self.time_logger.timed(PACKING_EVENT):
            indices = field.index_order
            target = _storage(field)
            buffer = np.ravel(buffer)
            if buffer.shape[0] != indices.shape[0]:
                raise MarshallingError(
                    f"Buffer of length {buffer.shape[0]} does not match the "
                    f"{indices.shape[0]} local points of "
                    f"{type(field).__name__}"
                )
            _scatter(buffer, indices, target)


def pack(field: GridFieldLike, out: Optional[np.ndarray] = None) -> np.ndarray:
    """Pack with a float64 marshaller reporting to the default logger."""
    return _default_marshaller.pack(field, out=out)


def unpack(buffer: np.ndarray, field: GridFieldLike) -> None:
    """Unpack with a float64 marshaller reporting to the default logger."""
    _default_marshaller.unpack(buffer, field)


_default_marshaller = FieldMarshaller()
