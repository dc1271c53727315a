from types import SimpleNamespace

import numpy as np
import pytest

from invop.grid import Field3D, Mesh
from invop.time_logger import TimeLogger

np.set_printoptions(linewidth=120, precision=12)


# ========================================
# PRECISION AND TOLERANCE
# ========================================


@pytest.fixture(scope="session")
def precision_override(request):
    if hasattr(request, "param"):
        return request.param
    return None


@pytest.fixture(scope="session")
def precision(precision_override):
    """Return buffer precision, defaulting to float64.

    Usage:
    @pytest.mark.parametrize("precision_override", [np.float32],
        indirect=True)
    def test_something(precision):
        # precision will be np.float32 here
    """
    if precision_override is not None:
        return precision_override
    return np.float64


@pytest.fixture(scope="session")
def tolerance_override(request):
    if hasattr(request, "param"):
        return request.param
    return None


@pytest.fixture(scope="session")
def tolerance(tolerance_override, precision):
    if tolerance_override is not None:
        return tolerance_override

    if precision == np.float32:
        return SimpleNamespace(
            abs_loose=1e-4,
            abs_tight=1e-6,
            rel_loose=1e-4,
            rel_tight=1e-6,
        )

    if precision == np.float64:
        return SimpleNamespace(
            abs_loose=1e-8,
            abs_tight=1e-12,
            rel_loose=1e-8,
            rel_tight=1e-12,
        )

    raise ValueError("Unsupported precision for tolerance fixture")


# ========================================
# GRID FIXTURES
# ========================================


@pytest.fixture(scope="function")
def mesh_override(request):
    if hasattr(request, "param"):
        return request.param
    return {}


@pytest.fixture(scope="function")
def mesh(mesh_override):
    """Small mesh with guard cells in x and y.

    Usage:
    @pytest.mark.parametrize("mesh_override", [{"nz": 1}], indirect=True)
    def test_something(mesh):
        # mesh.nz will be 1 here
    """
    settings = {"nx": 4, "ny": 3, "nz": 2, "xguards": 1, "yguards": 1}
    settings.update(mesh_override)
    return Mesh(**settings)


@pytest.fixture(scope="function")
def line_mesh():
    """Four points along x and nothing else."""
    return Mesh(nx=4)


@pytest.fixture(scope="function")
def rng():
    return np.random.default_rng(1234)


@pytest.fixture(scope="function")
def random_field(mesh, rng):
    """Return a factory for allocated fields filled with random values."""

    def make(cls=Field3D, **kwargs):
        field = cls(mesh, **kwargs).allocate()
        field.values = rng.standard_normal(field.shape)
        return field

    return make


@pytest.fixture(scope="function")
def time_logger():
    """A private logger so tests do not share totals."""
    return TimeLogger(verbosity="default")


# ========================================
# OPERATOR FIXTURES
# ========================================


def _shifted(values, sign):
    """Neighbour values along x with zeros beyond the ends."""
    out = np.zeros_like(values)
    if sign > 0:
        out[:-1] = values[1:]
    else:
        out[1:] = values[:-1]
    return out


@pytest.fixture(scope="session")
def tridiagonal_operator():
    """SPD operator ``4 f_i - f_{i-1} - f_{i+1}`` along x."""

    def apply(field):
        out = field.new_empty()
        v = field.values
        out.values = 4.0 * v - _shifted(v, 1) - _shifted(v, -1)
        return out

    return apply


@pytest.fixture(scope="session")
def near_identity_operator():
    """SPD operator ``f_i - 0.2 (f_{i-1} + f_{i+1})``; ``|I - A| < 1``."""

    def apply(field):
        out = field.new_empty()
        v = field.values
        out.values = v - 0.2 * (_shifted(v, 1) + _shifted(v, -1))
        return out

    return apply


@pytest.fixture(scope="function")
def line_field(line_mesh):
    """Allocated 4-point field holding [2, 4, 6, 8]."""
    return Field3D(line_mesh, values=[2.0, 4.0, 6.0, 8.0])


@pytest.fixture(scope="function")
def long_mesh():
    return Mesh(nx=24)


@pytest.fixture(scope="function")
def long_field(long_mesh, rng):
    return Field3D(long_mesh, values=rng.uniform(-1.0, 1.0, 24))
