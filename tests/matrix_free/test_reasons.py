import pytest

from invop.matrix_free import ConvergedReason


@pytest.mark.parametrize(
    "reason, converged",
    [
        (ConvergedReason.CONVERGED_RTOL, True),
        (ConvergedReason.CONVERGED_ATOL, True),
        (ConvergedReason.CONVERGED_HAPPY_BREAKDOWN, True),
        (ConvergedReason.ITERATING, False),
        (ConvergedReason.DIVERGED_ITS, False),
        (ConvergedReason.DIVERGED_BREAKDOWN, False),
        (ConvergedReason.DIVERGED_NANORINF, False),
    ],
    ids=lambda value: getattr(value, "name", str(value)),
)
def test_converged_property(reason, converged):
    assert reason.converged is converged


def test_numeric_values():
    assert int(ConvergedReason.CONVERGED_RTOL) == 2
    assert int(ConvergedReason.CONVERGED_ATOL) == 3
    assert int(ConvergedReason.DIVERGED_ITS) == -3
    assert int(ConvergedReason.DIVERGED_DTOL) == -4
    assert int(ConvergedReason.DIVERGED_NANORINF) == -9
    assert ConvergedReason(-5) is ConvergedReason.DIVERGED_BREAKDOWN
