"""
invop: matrix-free inversion of operators on structured-grid fields
"""

from importlib.metadata import version

from invop.config import InversionConfig
from invop.errors import (
    InvopError,
    MarshallingError,
    SetupError,
    SolveFailedError,
    UsageError,
)
from invop.grid import *                 # noqa
from invop.marshalling import FieldMarshaller, pack, unpack
from invop.matrix_free import *          # noqa
from invop.operator import OperatorHandle
from invop.session import SessionState, SolverSession
from invop.time_logger import TimeLogger, default_timelogger, report_time
from invop.verification import max_abs_difference, residual_diagnostics

__all__ = [
    "InversionConfig",
    "InvopError",
    "UsageError",
    "MarshallingError",
    "SetupError",
    "SolveFailedError",
    "Mesh",
    "Field3D",
    "Field2D",
    "FieldPerp",
    "SerialCommunicator",
    "MPICommunicator",
    "FieldMarshaller",
    "pack",
    "unpack",
    "OperatorHandle",
    "ConvergedReason",
    "KrylovResult",
    "SolverSession",
    "SessionState",
    "TimeLogger",
    "default_timelogger",
    "report_time",
    "residual_diagnostics",
    "max_abs_difference",
]

try:
    __version__ = version("invop")
except ImportError:
    # Package is not installed
    __version__ = "unknown"
