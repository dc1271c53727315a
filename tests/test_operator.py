import pytest
from numpy.testing import assert_array_equal

from invop.errors import UsageError
from invop.grid import Field3D
from invop.operator import OperatorHandle, identity


def test_default_is_identity(random_field):
    handle = OperatorHandle()
    field = random_field()
    assert handle.function is identity
    assert handle.apply(field) is field
    assert handle(field) is field
    assert handle.preconditioner is None


def test_apply_calls_bound_function(random_field):
    handle = OperatorHandle(lambda f: 3.0 * f)
    field = random_field()
    assert_array_equal(handle(field).values, 3.0 * field.values)


def test_set_function_none_restores_identity():
    handle = OperatorHandle(lambda f: -f)
    handle.set_function(None)
    assert handle.function is identity


def test_non_callable_rejected():
    with pytest.raises(TypeError, match="callable"):
        OperatorHandle(3.0)
    with pytest.raises(TypeError, match="callable"):
        OperatorHandle(preconditioner="jacobi")


def test_apply_preconditioner(random_field):
    handle = OperatorHandle()
    field = random_field(Field3D)
    with pytest.raises(UsageError, match="No preconditioner"):
        handle.apply_preconditioner(field)
    handle.set_preconditioner(lambda f: 0.5 * f)
    assert_array_equal(
        handle.apply_preconditioner(field).values, 0.5 * field.values
    )


def test_lock_forbids_replacement():
    handle = OperatorHandle(lambda f: f)
    handle.lock()
    assert handle.is_locked
    with pytest.raises(UsageError, match="after setup"):
        handle.set_function(lambda f: 2.0 * f)
    with pytest.raises(UsageError, match="after setup"):
        handle.set_preconditioner(lambda f: f)
