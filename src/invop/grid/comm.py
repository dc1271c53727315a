"""Communicators used for collective reductions across grid processes.

The engine only needs three reductions (sum, max, min) and the process
count. :class:`SerialCommunicator` is the single-process default;
:class:`MPICommunicator` wraps an mpi4py communicator for distributed runs.
"""

from typing import Any, Optional


class SerialCommunicator:
    """Communicator for a single process: every reduction is the identity."""

    rank = 0
    size = 1

    def sum(self, value: Any) -> Any:
        return value

    def max(self, value: Any) -> Any:
        return value

    def min(self, value: Any) -> Any:
        return value

    def __repr__(self) -> str:
        return "SerialCommunicator()"


class MPICommunicator:
    """Collective reductions over an mpi4py communicator.

    Parameters
    ----------
    comm
        An ``mpi4py.MPI.Comm``. Defaults to ``MPI.COMM_WORLD``.

    Notes
    -----
    mpi4py is an optional dependency (``pip install invop[mpi]``) and is
    imported when this class is instantiated.
    """

    def __init__(self, comm: Optional[Any] = None) -> None:
        from mpi4py import MPI

        self._mpi = MPI
        self.comm = MPI.COMM_WORLD if comm is None else comm

    @property
    def rank(self) -> int:
        return self.comm.Get_rank()

    @property
    def size(self) -> int:
        return self.comm.Get_size()

    def sum(self, value: Any) -> Any:
        return self.comm.allreduce(value, op=self._mpi.SUM)

    def max(self, value: Any) -> Any:
        return self.comm.allreduce(value, op=self._mpi.MAX)

    def min(self, value: Any) -> Any:
        return self.comm.allreduce(value, op=self._mpi.MIN)

    def __repr__(self) -> str:
        return f"MPICommunicator(rank={self.rank}, size={self.size})"
