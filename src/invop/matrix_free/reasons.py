"""Convergence reason codes reported by every solve.

Values follow the KSP convention: positive codes mean converged, zero means
still iterating, negative codes mean the solve failed.
"""
from enum import IntEnum


class ConvergedReason(IntEnum):
    CONVERGED_RTOL = 2
    CONVERGED_ATOL = 3
    CONVERGED_ITS = 4
    CONVERGED_HAPPY_BREAKDOWN = 7
    ITERATING = 0
    DIVERGED_NULL = -2
    DIVERGED_ITS = -3                # iteration limit reached
    DIVERGED_DTOL = -4               # residual grew past divtol * |b|
    DIVERGED_BREAKDOWN = -5
    DIVERGED_NANORINF = -9

    @property
    def converged(self) -> bool:
        return self > 0
