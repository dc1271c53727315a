"""Shared validators, converters and small helpers."""

from typing import Any, Callable, Union

import numpy as np

PrecisionDType = Union[type[np.float32], type[np.float64]]

ALLOWED_PRECISIONS = {np.dtype(np.float32), np.dtype(np.float64)}

_TRUE_STRINGS = {"1", "true", "yes", "on", "y", "t"}
_FALSE_STRINGS = {"0", "false", "no", "off", "n", "f"}


def precision_converter(value: Any) -> type:
    """Return the numpy scalar type for ``value``.

    Accepts numpy types, dtypes and their string names (``"float64"``).
    """
    try:
        return np.dtype(value).type
    except TypeError as exc:
        raise ValueError(f"Cannot interpret {value!r} as a dtype") from exc


def precision_validator(instance, attribute, value):
    """Reject anything but float32 or float64."""
    if np.dtype(value) not in ALLOWED_PRECISIONS:
        raise ValueError(
            f"{attribute.name} must be float32 or float64, got {value!r}"
        )


def bool_converter(value: Any) -> bool:
    """Convert command-line style strings (``"yes"``, ``"0"``) to bool."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValueError(f"Cannot interpret {value!r} as a boolean")
    return bool(value)


def number_converter(kind: type) -> Callable[[Any], Any]:
    """Return a converter that parses strings into ``kind``.

    Non-string values are passed through untouched so that the type
    validators still catch e.g. a float handed to an integer field.
    """

    def convert(value):
        if isinstance(value, str):
            text = value.strip()
            if kind is int:
                as_float = float(text)
                if not as_float.is_integer():
                    raise ValueError(f"Cannot interpret {value!r} as int")
                return int(as_float)
            return kind(text)
        if kind is float and isinstance(value, (int, np.integer)) \
                and not isinstance(value, bool):
            return float(value)
        if isinstance(value, np.generic):
            return value.item()
        return value

    return convert


def _type_check(attribute, value, kind):
    if isinstance(value, bool) or not isinstance(value, kind):
        raise TypeError(
            f"{attribute.name} must be of type {kind.__name__}, "
            f"got {type(value).__name__}"
        )


def getype_validator(kind: type, minimum):
    """Validate ``value`` is a ``kind`` and ``value >= minimum``."""

    def validator(instance, attribute, value):
        _type_check(attribute, value, kind)
        if value < minimum:
            raise ValueError(
                f"{attribute.name} must be >= {minimum}, got {value}"
            )

    return validator


def gttype_validator(kind: type, minimum):
    """Validate ``value`` is a ``kind`` and ``value > minimum``."""

    def validator(instance, attribute, value):
        _type_check(attribute, value, kind)
        if value <= minimum:
            raise ValueError(
                f"{attribute.name} must be > {minimum}, got {value}"
            )

    return validator


def get_readonly_view(array):
    view = array.view()
    view.flags.writeable = False
    return view
