"""Local structured mesh owned by one process.

A :class:`Mesh` describes the local block of a decomposed structured grid:
interior sizes, guard (ghost) cell widths in x and y, and the communicator
joining it to the other blocks. It answers the questions the inversion
engine asks of a grid: how many local points a field of a given shape
holds, and in which order they are visited.
"""

from typing import Any, Dict, Tuple

import attrs
import numpy as np

from invop._utils import get_readonly_view, getype_validator
from invop.grid.comm import SerialCommunicator

FIELD_KINDS = ("3d", "2d", "perp")
REGIONS = ("all", "nobndry")


def _has_reductions(instance, attribute, value):
    for name in ("sum", "max", "min"):
        if not callable(getattr(value, name, None)):
            raise TypeError(
                f"{attribute.name} must provide sum/max/min reductions, "
                f"{type(value).__name__} has no '{name}'"
            )


@attrs.define(eq=False)
class Mesh:
    """Local block of a structured grid.

    Attributes
    ----------
    nx, ny, nz : int
        Interior points owned by this process in each direction.
    xguards, yguards : int
        Guard cells on each side in x and y. z has none.
    comm
        Communicator providing ``sum``/``max``/``min`` and ``size``.

    Notes
    -----
    Meshes compare by identity; a field belongs to exactly one mesh object.
    """

    nx: int = attrs.field(validator=getype_validator(int, 1))
    ny: int = attrs.field(default=1, validator=getype_validator(int, 1))
    nz: int = attrs.field(default=1, validator=getype_validator(int, 1))
    xguards: int = attrs.field(default=0, validator=getype_validator(int, 0))
    yguards: int = attrs.field(default=0, validator=getype_validator(int, 0))
    comm: Any = attrs.field(
        factory=SerialCommunicator, validator=_has_reductions
    )
    _region_cache: Dict[Tuple[str, str], np.ndarray] = attrs.field(
        factory=dict, init=False, repr=False
    )

    @property
    def LocalNx(self) -> int:
        return self.nx + 2 * self.xguards

    @property
    def LocalNy(self) -> int:
        return self.ny + 2 * self.yguards

    @property
    def LocalNz(self) -> int:
        return self.nz

    @property
    def xstart(self) -> int:
        return self.xguards

    @property
    def xend(self) -> int:
        return self.xguards + self.nx - 1

    @property
    def ystart(self) -> int:
        return self.yguards

    @property
    def yend(self) -> int:
        return self.yguards + self.ny - 1

    def shape(self, kind: str) -> Tuple[int, ...]:
        """Storage shape (guard cells included) of a field of ``kind``."""
        if kind == "3d":
            return (self.LocalNx, self.LocalNy, self.LocalNz)
        if kind == "2d":
            return (self.LocalNx, self.LocalNy)
        if kind == "perp":
            return (self.LocalNx, self.LocalNz)
        raise ValueError(
            f"Unknown field kind '{kind}', expected one of {FIELD_KINDS}"
        )

    def region_indices(self, kind: str, region: str = "all") -> np.ndarray:
        """Flat C-order indices visited when iterating over ``region``.

        Parameters
        ----------
        kind
            Field shape: ``"3d"`` (x, y, z), ``"2d"`` (x, y) or ``"perp"``
            (x, z).
        region
            ``"all"`` visits every stored point including guard cells,
            ``"nobndry"`` only the interior.

        Returns
        -------
        numpy.ndarray
            Read-only int64 array into ``values.reshape(-1)``. The same
            array object is returned on every call.
        """
        key = (kind, region)
        cached = self._region_cache.get(key)
        if cached is not None:
            return cached

        shape = self.shape(kind)
        if region == "all":
            indices = np.arange(int(np.prod(shape)), dtype=np.int64)
        elif region == "nobndry":
            ranges = [np.arange(self.xstart, self.xend + 1)]
            if kind == "3d":
                ranges.append(np.arange(self.ystart, self.yend + 1))
                ranges.append(np.arange(self.LocalNz))
            elif kind == "2d":
                ranges.append(np.arange(self.ystart, self.yend + 1))
            else:
                ranges.append(np.arange(self.LocalNz))
            grids = np.meshgrid(*ranges, indexing="ij")
            indices = np.ravel_multi_index(
                tuple(g.reshape(-1) for g in grids), shape
            ).astype(np.int64)
        else:
            raise ValueError(
                f"Unknown region '{region}', expected one of {REGIONS}"
            )

        indices = get_readonly_view(np.ascontiguousarray(indices))
        self._region_cache[key] = indices
        return indices

    def local_size(self, kind: str, region: str = "all") -> int:
        """Number of points of ``region`` on this process."""
        return int(self.region_indices(kind, region).shape[0])

    def global_size(self, kind: str, region: str = "all") -> int:
        """Number of points of ``region`` summed over all processes.

        Collective: every process must call it.
        """
        return int(self.comm.sum(self.local_size(kind, region)))
