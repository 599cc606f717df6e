"""
Moving Average Indicators

EMA, SMA, rolling standard deviation and Bollinger Bands.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from .base import ArrayLike, as_array, has_min_length, validate_period


@dataclass
class BollingerResult:
    middle: np.ndarray
    upper: np.ndarray
    lower: np.ndarray
    width: np.ndarray   # (upper - lower) / middle


def ema(values: ArrayLike, period: int) -> Optional[np.ndarray]:
    """
    Exponential Moving Average

    Seeded with the simple average of the first ``period`` values, then
    ``v * k + prev * (1 - k)`` with ``k = 2 / (period + 1)``.

    Args:
        values: Price series
        period: EMA period

    Returns:
        Array aligned with ``values`` (NaN before index ``period - 1``),
        or None when fewer than ``period + 1`` values are supplied
    """
    period = validate_period(period)
    arr = as_array(values)
    if not has_min_length(arr, period + 1):
        return None

    k = 2.0 / (period + 1)
    out = np.full(arr.shape[0], np.nan)
    out[period - 1] = arr[:period].mean()
    for i in range(period, arr.shape[0]):
        out[i] = arr[i] * k + out[i - 1] * (1 - k)
    return out


def sma(values: ArrayLike, period: int) -> Optional[np.ndarray]:
    """Simple moving average; None when fewer than ``period`` values."""
    period = validate_period(period)
    arr = as_array(values)
    if not has_min_length(arr, period):
        return None
    return pd.Series(arr).rolling(window=period).mean().to_numpy()


def rolling_std(values: ArrayLike, period: int) -> Optional[np.ndarray]:
    """Population standard deviation over a rolling window."""
    period = validate_period(period)
    arr = as_array(values)
    if not has_min_length(arr, period):
        return None
    return pd.Series(arr).rolling(window=period).std(ddof=0).to_numpy()


def bollinger(closes: ArrayLike, period: int = 20, mult: float = 2.0) -> Optional[BollingerResult]:
    """
    Bollinger Bands

    Middle = rolling mean, upper/lower = middle +/- mult * rolling stdev,
    width = (upper - lower) / middle. Width is NaN where the mean is 0.

    Returns:
        BollingerResult of aligned arrays, or None with fewer than ``period`` values
    """
    period = validate_period(period, min_period=2)
    if mult <= 0:
        raise ValueError(f"Bollinger multiplier must be > 0, got {mult}")

    arr = as_array(closes)
    if not has_min_length(arr, period):
        return None

    series = pd.Series(arr)
    middle = series.rolling(window=period).mean()
    std = series.rolling(window=period).std(ddof=0)
    upper = middle + mult * std
    lower = middle - mult * std
    width = (upper - lower) / middle.replace(0, np.nan)

    return BollingerResult(
        middle=middle.to_numpy(),
        upper=upper.to_numpy(),
        lower=lower.to_numpy(),
        width=width.to_numpy(),
    )
