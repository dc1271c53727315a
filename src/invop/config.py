"""Configuration of an inversion session.

Published Classes
-----------------
:class:`InversionConfig`
    attrs container for the Krylov method, tolerances, preconditioner and
    diagnostic level of one :class:`~invop.session.SolverSession`.

    >>> cfg = InversionConfig.from_options(
    ...     {"invert_ksp_type": "cg", "invert_ksp_rtol": "1e-8"}
    ... )
    >>> cfg.ksp_type, cfg.rtol
    ('cg', 1e-08)

Option keys
-----------
Options are read from a flat mapping. Each key is the session prefix
(``"invert_"`` by default) followed by one of the names in
:data:`OPTION_KEYS`, so several sessions in one process can be configured
independently from the same mapping.
"""

from typing import Any, Dict, Mapping, Optional, Set, Tuple
from warnings import warn

import attrs
import numpy as np
from attrs import define, field, fields, validators

from invop._utils import (
    PrecisionDType,
    bool_converter,
    getype_validator,
    gttype_validator,
    number_converter,
    precision_converter,
    precision_validator,
)

DEFAULT_PREFIX = "invert_"

SCIPY_KSP_TYPES = (
    "gmres",
    "lgmres",
    "gcrotmk",
    "bicgstab",
    "cg",
    "cgs",
    "minres",
    "tfqmr",
)
NATIVE_KSP_TYPES = ("minimal_residual", "steepest_descent")
KSP_TYPES = SCIPY_KSP_TYPES + NATIVE_KSP_TYPES

PC_TYPES = ("none", "neumann", "shell")

#: Option name (after the prefix) -> InversionConfig field name.
OPTION_KEYS = {
    "ksp_type": "ksp_type",
    "ksp_rtol": "rtol",
    "ksp_atol": "atol",
    "ksp_divtol": "divtol",
    "ksp_max_it": "max_it",
    "ksp_gmres_restart": "restart",
    "pc_type": "pc_type",
    "pc_neumann_order": "neumann_order",
    "ksp_check_residual": "check_residual",
    "ksp_residual_factor": "residual_factor",
    "check_level": "check_level",
    "precision": "precision",
}


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


@define
class InversionConfig:
    """Settings consumed once, at ``setup()``.

    Attributes
    ----------
    ksp_type : str
        Krylov method. SciPy methods: gmres, lgmres, gcrotmk, bicgstab, cg,
        cgs, minres, tfqmr. Native collective methods: minimal_residual,
        steepest_descent.
    rtol : float
        Relative tolerance on the residual two-norm.
    atol : float
        Absolute tolerance on the residual two-norm.
    divtol : float
        A residual larger than ``divtol * |b|`` is reported as divergence.
    max_it : int
        Maximum total Krylov iterations.
    restart : int
        Restart length of gmres, inner length of lgmres and gcrotmk.
    pc_type : str
        'none', 'neumann' (truncated Neumann series of the operator) or
        'shell' (caller-supplied preconditioner function).
    neumann_order : int
        Number of terms beyond the identity in the Neumann series.
    check_residual : bool
        Recompute the true residual after each solve and refuse a success
        whose residual misses the tolerance by more than
        ``residual_factor``.
    residual_factor : float
        Slack applied by the true residual check.
    check_level : int
        0 or 1 disable ``verify``; above 3 also prints diagnostics.
    precision : PrecisionDType
        dtype of the flat buffers handed to the backend.
    """

    ksp_type: str = field(
        default="gmres",
        converter=_lower,
        validator=validators.in_(KSP_TYPES),
    )
    rtol: float = field(
        default=1e-5,
        converter=number_converter(float),
        validator=getype_validator(float, 0.0),
    )
    atol: float = field(
        default=1e-50,
        converter=number_converter(float),
        validator=getype_validator(float, 0.0),
    )
    divtol: float = field(
        default=1e5,
        converter=number_converter(float),
        validator=gttype_validator(float, 0.0),
    )
    max_it: int = field(
        default=10000,
        converter=number_converter(int),
        validator=getype_validator(int, 1),
    )
    restart: int = field(
        default=30,
        converter=number_converter(int),
        validator=getype_validator(int, 1),
    )
    pc_type: str = field(
        default="none",
        converter=_lower,
        validator=validators.in_(PC_TYPES),
    )
    neumann_order: int = field(
        default=1,
        converter=number_converter(int),
        validator=getype_validator(int, 0),
    )
    check_residual: bool = field(default=True, converter=bool_converter)
    residual_factor: float = field(
        default=100.0,
        converter=number_converter(float),
        validator=getype_validator(float, 1.0),
    )
    check_level: int = field(
        default=2,
        converter=number_converter(int),
        validator=getype_validator(int, 0),
    )
    precision: PrecisionDType = field(
        default=np.float64,
        converter=precision_converter,
        validator=precision_validator,
    )

    @property
    def is_native(self) -> bool:
        """True for methods whose inner products go through the comm."""
        return self.ksp_type in NATIVE_KSP_TYPES

    def update(
        self, updates_dict: Optional[dict] = None, **kwargs
    ) -> Tuple[Set[str], Set[str]]:
        """Update configuration fields with new values.

        Parameters
        ----------
        updates_dict
            Mapping of field names to new values.
        **kwargs
            Additional settings to update.

        Returns
        -------
        tuple[set[str], set[str]]
            recognized: Names of settings that matched known fields.
            changed: Names of settings whose values were updated.

        Notes
        -----
        Every value is converted and validated before any field is
        assigned, so an invalid value raises and leaves the whole
        configuration unchanged.
        """
        if updates_dict is None:
            updates_dict = {}
        updates_dict = updates_dict.copy()
        updates_dict.update(kwargs)

        recognized = set()
        changed = set()
        field_map = {fld.name: fld for fld in fields(type(self))}

        converted = {}
        for key, value in updates_dict.items():
            fld = field_map.get(key)
            if fld is None:
                continue
            recognized.add(key)
            if fld.converter is not None:
                value = fld.converter(value)
            converted[key] = value

        attrs.evolve(self, **converted)
        for key, value in converted.items():
            if getattr(self, key) != value:
                setattr(self, key, value)
                changed.add(key)

        return recognized, changed

    def to_options(self, prefix: str = DEFAULT_PREFIX) -> Dict[str, Any]:
        """Return the flat option mapping that reproduces this config."""
        values = attrs.asdict(self)
        values["precision"] = np.dtype(self.precision).name
        return {
            f"{prefix}{option}": values[name]
            for option, name in OPTION_KEYS.items()
        }

    @classmethod
    def from_options(
        cls,
        options: Optional[Mapping[str, Any]] = None,
        prefix: str = DEFAULT_PREFIX,
        **overrides: Any,
    ) -> "InversionConfig":
        """Build a config from a flat option mapping.

        Parameters
        ----------
        options
            Mapping of option names to values. Values may be strings, as
            read from a command line or input file.
        prefix
            Namespace of this session. Only keys starting with it are read.
        **overrides
            Field values applied after the options.

        Returns
        -------
        InversionConfig

        Warns
        -----
        UserWarning
            For keys carrying ``prefix`` that name no known option.
        """
        kwargs = parse_options(options, prefix)
        kwargs.update(overrides)
        return cls(**kwargs)


def parse_options(
    options: Optional[Mapping[str, Any]], prefix: str = DEFAULT_PREFIX
) -> Dict[str, Any]:
    """Map the prefixed keys of ``options`` onto config field names.

    Keys without ``prefix`` are skipped. Prefixed keys that name no known
    option emit a ``UserWarning`` and are skipped. Values are returned
    unconverted.
    """
    parsed = {}
    for key, value in (options or {}).items():
        if not key.startswith(prefix):
            continue
        option = key[len(prefix):]
        name = OPTION_KEYS.get(option)
        if name is None:
            warn(
                f"Option '{key}' is not recognised and was ignored. "
                f"Known options: "
                f"{', '.join(prefix + k for k in OPTION_KEYS)}",
                UserWarning,
                stacklevel=3,
            )
            continue
        parsed[name] = value
    return parsed
