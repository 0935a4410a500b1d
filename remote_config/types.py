"""Shared value types."""

from typing import Any, TypeVar


ConfigScalar = bool | int | float | str

SCALAR_TYPES = (bool, int, float, str)

T = TypeVar("T", bool, int, float, str)


def is_scalar(value: Any) -> bool:
    """Check whether a value belongs to the scalar union."""
    return isinstance(value, SCALAR_TYPES)


def to_float(value: Any) -> float | None:
    """Widen a JSON number to float.

    Returns None for bools, non-numbers and ints too large for a float.
    """
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    try:
        return float(value)
    except OverflowError:
        return None


def coerce_scalar(value: Any, default: T) -> T:
    """Coerce a looked-up value to the type of ``default``.

    Bools are never treated as numbers, ints widen to floats, and
    numeric strings are not parsed. Anything else yields ``default``.

    Args:
        value: The looked-up value (may be None).
        default: Fallback whose type selects the target type.

    Returns:
        The value typed like ``default``, or ``default`` itself.
    """
    if value is None:
        return default
    if isinstance(default, bool):
        return value if isinstance(value, bool) else default
    if isinstance(default, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return default
    if isinstance(default, float):
        widened = to_float(value)
        return widened if widened is not None else default
    if isinstance(default, str):
        return value if isinstance(value, str) else default
    return default
