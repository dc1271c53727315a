import numpy as np
import pytest

from invop.grid import Field3D
from invop.session import SolverSession
from invop.verification import max_abs_difference, residual_diagnostics


@pytest.fixture(scope="function")
def doubling_session(line_field, time_logger):
    with SolverSession(lambda f: 2.0 * f, template=line_field,
                       time_logger=time_logger) as session:
        yield session


def test_exact_solution(doubling_session, line_field):
    x = Field3D(line_field.mesh, values=[1.0, 2.0, 3.0, 4.0])
    norms = residual_diagnostics(doubling_session, x, line_field)
    assert norms["||r||2"] == 0.0
    assert norms["||r||inf"] == 0.0
    assert norms["||r||2/||b||2"] == 0.0
    assert norms["||b||2"] == pytest.approx(np.sqrt(120.0))
    assert norms["||x||2"] == pytest.approx(np.sqrt(30.0))


def test_inexact_solution(doubling_session, line_field):
    x = Field3D(line_field.mesh, values=[1.0, 2.0, 3.0, 5.0])
    norms = residual_diagnostics(doubling_session, x, line_field)
    assert norms["||r||2"] == pytest.approx(2.0)
    assert norms["||r||inf"] == pytest.approx(2.0)
    assert norms["||r||2/||b||2"] == pytest.approx(2.0 / np.sqrt(120.0))


def test_zero_rhs(doubling_session, line_field):
    zero = line_field.new_empty()
    assert residual_diagnostics(
        doubling_session, zero, zero
    )["||r||2/||b||2"] == 0.0
    one = Field3D(line_field.mesh, values=[1.0, 0.0, 0.0, 0.0])
    assert residual_diagnostics(
        doubling_session, one, zero
    )["||r||2/||b||2"] == np.inf


def test_diagnostics_work_before_setup(doubling_session, line_field):
    assert not doubling_session.is_set_up
    residual_diagnostics(doubling_session, line_field, line_field)


def test_max_abs_difference(line_field):
    other = Field3D(line_field.mesh, values=[2.0, 4.5, 6.0, 7.0])
    assert max_abs_difference(line_field, other) == 1.0
    assert max_abs_difference(line_field, line_field) == 0.0
