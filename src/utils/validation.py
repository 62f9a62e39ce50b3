"""Score sanitising helpers shared by the aggregator and scorer."""

import math
from typing import Any

import logfire


def clamp_score(value: Any, field_name: str = "score", default_value: float = 0.0) -> float:
    """Coerce ``value`` into a probability-like score in [0, 1].

    NaN and unconvertible values fall back to ``default_value``; infinities and
    out-of-range values are clamped to the nearest bound.

    Examples:
        >>> clamp_score(0.8)
        0.8
        >>> clamp_score(float("nan"), default_value=0.5)
        0.5
        >>> clamp_score(1.5)
        1.0
    """
    try:
        float_value = float(value)
    except (TypeError, ValueError):
        logfire.warning("Non-numeric score replaced", field=field_name, value=repr(value))
        return default_value
    if math.isnan(float_value):
        logfire.warning("NaN score replaced", field=field_name)
        return default_value
    return min(1.0, max(0.0, float_value))


def mean(values: list[float], default: float = 0.0) -> float:
    return sum(values) / len(values) if values else default


__all__ = ["clamp_score", "mean"]
