"""
Indicator Helpers

Shared input handling for the indicator functions. Every indicator takes
plain sequences or numpy arrays, declares a minimum input length and returns
``None`` below it. Arrays returned for sufficient input are aligned with the
input and hold NaN only in the documented warm-up prefix.
"""

import logging
import math
from typing import Optional, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)

ArrayLike = Union[Sequence[float], np.ndarray]


def validate_period(period: int, min_period: int = 1) -> int:
    """Validate period parameter"""
    if isinstance(period, bool) or not isinstance(period, (int, np.integer)):
        raise ValueError(f"Period must be integer, got {type(period)}")

    if period < min_period:
        raise ValueError(f"Period must be >= {min_period}, got {period}")

    return int(period)


def as_array(values: ArrayLike) -> np.ndarray:
    """Coerce to a 1-D float64 array."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"Indicator input must be 1-D, got shape {arr.shape}")
    return arr


def has_min_length(arr: np.ndarray, min_length: int) -> bool:
    return arr.shape[0] >= min_length


def aligned_hlc(high: ArrayLike, low: ArrayLike, close: ArrayLike):
    """Return high/low/close arrays truncated to a common length."""
    h, l, c = as_array(high), as_array(low), as_array(close)
    n = min(len(h), len(l), len(c))
    return h[:n], l[:n], c[:n]


def last_value(series: Optional[np.ndarray]) -> Optional[float]:
    """
    Last element of an indicator series as a float.

    Returns None for a missing series or a non-finite last cell, so NaN
    never leaks into snapshots.
    """
    if series is None or len(series) == 0:
        return None
    v = float(series[-1])
    return v if math.isfinite(v) else None


def value_at(series: Optional[np.ndarray], index: int) -> Optional[float]:
    if series is None or len(series) == 0:
        return None
    try:
        v = float(series[index])
    except IndexError:
        return None
    return v if math.isfinite(v) else None
