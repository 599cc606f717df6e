"""
Oscillator Indicators

RSI (Wilder) and MACD.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .base import ArrayLike, as_array, has_min_length, validate_period
from .moving_averages import ema


@dataclass
class MacdResult:
    line: np.ndarray
    signal: np.ndarray
    histogram: np.ndarray


def _rsi_from_avg(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def rsi(closes: ArrayLike, period: int = 14) -> Optional[np.ndarray]:
    """
    Relative Strength Index

    Seed average gain/loss over the first ``period`` deltas, Wilder
    smoothing afterwards. RSI is 100 whenever the average loss is 0.

    Returns:
        Array aligned with ``closes`` (NaN before index ``period``), or None
        when fewer than ``period + 1`` closes are supplied
    """
    period = validate_period(period)
    arr = as_array(closes)
    if not has_min_length(arr, period + 1):
        return None

    deltas = np.diff(arr)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    out = np.full(arr.shape[0], np.nan)
    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()
    out[period] = _rsi_from_avg(avg_gain, avg_loss)

    for i in range(period, deltas.shape[0]):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out[i + 1] = _rsi_from_avg(avg_gain, avg_loss)

    return out


def macd(closes: ArrayLike, fast: int = 12, slow: int = 26, signal: int = 9) -> Optional[MacdResult]:
    """
    Moving Average Convergence Divergence

    line = EMA(fast) - EMA(slow); signal = EMA(line, signal); histogram =
    line - signal.

    Returns:
        MacdResult of arrays aligned with ``closes``, or None when there are
        not enough closes for one signal value (``slow + signal`` bars)
    """
    fast = validate_period(fast)
    slow = validate_period(slow)
    signal = validate_period(signal)
    if fast >= slow:
        raise ValueError(f"MACD fast period must be < slow period, got {fast}/{slow}")

    arr = as_array(closes)
    if not has_min_length(arr, slow + signal):
        return None

    ema_fast = ema(arr, fast)
    ema_slow = ema(arr, slow)
    line = ema_fast - ema_slow

    # signal EMA runs over the defined part of the MACD line only
    start = slow - 1
    sig_valid = ema(line[start:], signal)
    sig = np.full(arr.shape[0], np.nan)
    sig[start:] = sig_valid

    return MacdResult(line=line, signal=sig, histogram=line - sig)
