"""Scalar fields on a structured mesh.

Published Classes
-----------------
:class:`GridFieldLike`
    The capability contract the inversion engine relies on: a local size,
    a fixed iteration order, and allocation of a like-shaped field.

:class:`Field3D`, :class:`Field2D`, :class:`FieldPerp`
    numpy-backed fields over (x, y, z), (x, y) and an (x, z) plane.

    >>> from invop.grid import Mesh, Field3D
    >>> f = Field3D(Mesh(nx=4)).allocate()
    >>> f.local_size
    4
"""

import operator
from numbers import Number
from typing import Any, Iterator, Optional, Protocol, Tuple

import numpy as np

from invop.errors import UsageError
from invop.grid.mesh import REGIONS, Mesh


class GridFieldLike(Protocol):
    """Capabilities a field type must offer to be inverted."""

    mesh: Any

    @property
    def local_size(self) -> int: ...

    @property
    def index_order(self) -> np.ndarray: ...

    @property
    def is_allocated(self) -> bool: ...

    @property
    def values(self) -> np.ndarray: ...

    def new_empty(self) -> "GridFieldLike": ...

    def same_layout(self, other: Any) -> bool: ...


class Field:
    """Base class for numpy-backed fields.

    Parameters
    ----------
    mesh
        Mesh the field lives on.
    values
        Optional initial data, copied. Either the full storage shape or a
        flat array of the same number of elements.
    region
        Iteration region, ``"all"`` or ``"nobndry"``.

    Notes
    -----
    A field constructed without ``values`` is unallocated and holds no
    storage until :meth:`allocate` is called.
    """

    kind = ""

    def __init__(
        self,
        mesh: Mesh,
        values: Optional[Any] = None,
        region: str = "all",
    ) -> None:
        if region not in REGIONS:
            raise ValueError(
                f"Unknown region '{region}', expected one of {REGIONS}"
            )
        self.mesh = mesh
        self.region = region
        self._values = None
        if values is not None:
            self.values = values

    # ------------------------------------------------------------------ #
    #                         layout and storage                          #
    # ------------------------------------------------------------------ #
    @property
    def shape(self) -> Tuple[int, ...]:
        return self.mesh.shape(self.kind)

    @property
    def is_allocated(self) -> bool:
        return self._values is not None

    def allocate(self) -> "Field":
        """Give the field zeroed storage if it has none. Returns self."""
        if self._values is None:
            self._values = np.zeros(self.shape, dtype=np.float64)
        return self

    @property
    def values(self) -> np.ndarray:
        if self._values is None:
            raise UsageError(
                f"{type(self).__name__} is not allocated; call allocate() "
                "or assign values first"
            )
        return self._values

    @values.setter
    def values(self, new_values: Any) -> None:
        array = np.array(new_values, dtype=np.float64, order="C")
        if array.shape != self.shape:
            if array.size != int(np.prod(self.shape)):
                raise ValueError(
                    f"values with shape {array.shape} do not fit a "
                    f"{type(self).__name__} of shape {self.shape}"
                )
            array = array.reshape(self.shape)
        self._values = array

    @property
    def index_order(self) -> np.ndarray:
        """Flat storage indices in iteration order."""
        return self.mesh.region_indices(self.kind, self.region)

    @property
    def local_size(self) -> int:
        return int(self.index_order.shape[0])

    def _layout_kwargs(self) -> dict:
        return {"region": self.region}

    def new_empty(self) -> "Field":
        """Return a zeroed, allocated field of the same layout."""
        return type(self)(self.mesh, **self._layout_kwargs()).allocate()

    def same_layout(self, other: Any) -> bool:
        """True if ``other`` has this field's type, mesh and region."""
        return (
            type(other) is type(self)
            and other.mesh is self.mesh
            and other._layout_kwargs() == self._layout_kwargs()
        )

    def copy(self) -> "Field":
        out = type(self)(self.mesh, **self._layout_kwargs())
        if self.is_allocated:
            out._values = self._values.copy()
        return out

    def ordered(self) -> np.ndarray:
        """Copy of the iteration-region values, in iteration order."""
        return self.values.reshape(-1)[self.index_order]

    # ------------------------------------------------------------------ #
    #                              iteration                              #
    # ------------------------------------------------------------------ #
    def __iter__(self) -> Iterator[Tuple[int, ...]]:
        """Yield storage index tuples in iteration order."""
        unravelled = np.unravel_index(self.index_order, self.shape)
        for position in zip(*unravelled):
            yield tuple(int(i) for i in position)

    def __len__(self) -> int:
        return self.local_size

    def __getitem__(self, index):
        return self.values[index]

    def __setitem__(self, index, value) -> None:
        self.values[index] = value

    # ------------------------------------------------------------------ #
    #                              arithmetic                             #
    # ------------------------------------------------------------------ #
    def _operand(self, other: Any):
        if isinstance(other, Field):
            if not self.same_layout(other):
                raise UsageError(
                    f"Cannot combine {type(self).__name__} with "
                    f"{type(other).__name__} on a different mesh or region"
                )
            return other.values
        if isinstance(other, Number):
            return other
        return NotImplemented

    def _binary(self, other, op, reflected=False):
        rhs = self._operand(other)
        if rhs is NotImplemented:
            return NotImplemented
        out = type(self)(self.mesh, **self._layout_kwargs())
        if reflected:
            out._values = op(rhs, self.values)
        else:
            out._values = op(self.values, rhs)
        return out

    def __add__(self, other):
        return self._binary(other, operator.add)

    def __radd__(self, other):
        return self._binary(other, operator.add, reflected=True)

    def __sub__(self, other):
        return self._binary(other, operator.sub)

    def __rsub__(self, other):
        return self._binary(other, operator.sub, reflected=True)

    def __mul__(self, other):
        return self._binary(other, operator.mul)

    def __rmul__(self, other):
        return self._binary(other, operator.mul, reflected=True)

    def __truediv__(self, other):
        return self._binary(other, operator.truediv)

    def __rtruediv__(self, other):
        return self._binary(other, operator.truediv, reflected=True)

    def __neg__(self):
        out = type(self)(self.mesh, **self._layout_kwargs())
        out._values = -self.values
        return out

    def __abs__(self):
        out = type(self)(self.mesh, **self._layout_kwargs())
        out._values = np.abs(self.values)
        return out

    def max_abs(self, global_reduce: bool = True) -> float:
        """Largest absolute value over the iteration region.

        With ``global_reduce`` the maximum is taken over all processes,
        which makes the call collective.
        """
        ordered = self.ordered()
        local = float(np.max(np.abs(ordered))) if ordered.size else 0.0
        if global_reduce:
            return float(self.mesh.comm.max(local))
        return local

    def __repr__(self) -> str:
        state = "allocated" if self.is_allocated else "unallocated"
        return (
            f"{type(self).__name__}(shape={self.shape}, "
            f"region='{self.region}', {state})"
        )


class Field3D(Field):
    """Field over (x, y, z)."""

    kind = "3d"


class Field2D(Field):
    """Field over (x, y), constant in z."""

    kind = "2d"


class FieldPerp(Field):
    """Field on the (x, z) plane at a single y index.

    Parameters
    ----------
    yindex
        Local y index of the plane. Defaults to the first interior index.
    """

    kind = "perp"

    def __init__(
        self,
        mesh: Mesh,
        values: Optional[Any] = None,
        region: str = "all",
        yindex: Optional[int] = None,
    ) -> None:
        if yindex is None:
            yindex = mesh.ystart
        if not 0 <= int(yindex) < mesh.LocalNy:
            raise ValueError(
                f"yindex {yindex} outside local y range [0, {mesh.LocalNy})"
            )
        self.yindex = int(yindex)
        super().__init__(mesh, values=values, region=region)

    def _layout_kwargs(self) -> dict:
        return {"region": self.region, "yindex": self.yindex}


_FIELD_CAPABILITIES = (
    "local_size", "index_order", "is_allocated", "values", "new_empty",
    "same_layout",
)


def is_grid_field(candidate: Any) -> bool:
    """True if ``candidate`` offers every :class:`GridFieldLike` member.

    Attributes are looked up on the type so that unallocated fields are
    not touched.
    """
    return hasattr(candidate, "mesh") and all(
        hasattr(type(candidate), name) for name in _FIELD_CAPABILITIES
    )
