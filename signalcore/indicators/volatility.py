"""
Volatility and Trend-Strength Indicators

True range, Wilder ATR and ADX with directional indicators.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .base import ArrayLike, aligned_hlc, has_min_length, validate_period


@dataclass
class AdxResult:
    adx: np.ndarray
    plus_di: np.ndarray
    minus_di: np.ndarray


def true_range(high: ArrayLike, low: ArrayLike, close: ArrayLike) -> np.ndarray:
    """
    True range per bar: max(h - l, |h - prevClose|, |l - prevClose|).

    The first bar has no previous close and is NaN.
    """
    h, l, c = aligned_hlc(high, low, close)
    tr = np.full(h.shape[0], np.nan)
    if h.shape[0] < 2:
        return tr
    prev_c = c[:-1]
    tr[1:] = np.maximum.reduce([h[1:] - l[1:], np.abs(h[1:] - prev_c), np.abs(l[1:] - prev_c)])
    return tr


def atr(high: ArrayLike, low: ArrayLike, close: ArrayLike, period: int = 14) -> Optional[np.ndarray]:
    """
    Average True Range (Wilder)

    ATR[period] = mean(TR[1..period]); afterwards
    ATR[i] = (ATR[i-1] * (period - 1) + TR[i]) / period.

    Returns:
        Array aligned with the input (NaN before index ``period``), or None
        below ``period + 1`` bars
    """
    period = validate_period(period)
    h, l, c = aligned_hlc(high, low, close)
    if not has_min_length(h, period + 1):
        return None

    tr = true_range(h, l, c)
    out = np.full(h.shape[0], np.nan)
    out[period] = tr[1:period + 1].mean()
    for i in range(period + 1, h.shape[0]):
        out[i] = (out[i - 1] * (period - 1) + tr[i]) / period
    return out


def adx(high: ArrayLike, low: ArrayLike, close: ArrayLike, period: int = 14) -> Optional[AdxResult]:
    """
    Average Directional Index

    +DM/-DM from consecutive high/low deltas, Wilder-smoothed together with
    TR; DX = 100 * |+DI - -DI| / (+DI + -DI); ADX seeded with the mean of
    the first ``period`` DX values and Wilder-averaged after that.

    Returns:
        AdxResult of aligned arrays (DI defined from index ``period``, ADX
        from ``2 * period``), or None below ``2 * period + 1`` bars
    """
    period = validate_period(period)
    h, l, c = aligned_hlc(high, low, close)
    n = h.shape[0]
    if not has_min_length(h, 2 * period + 1):
        return None

    up_move = np.zeros(n)
    down_move = np.zeros(n)
    up_move[1:] = h[1:] - h[:-1]
    down_move[1:] = l[:-1] - l[1:]

    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)
    tr = np.nan_to_num(true_range(h, l, c), nan=0.0)

    sm_tr = np.full(n, np.nan)
    sm_p = np.full(n, np.nan)
    sm_m = np.full(n, np.nan)
    sm_tr[period] = tr[1:period + 1].sum()
    sm_p[period] = plus_dm[1:period + 1].sum()
    sm_m[period] = minus_dm[1:period + 1].sum()
    for i in range(period + 1, n):
        sm_tr[i] = sm_tr[i - 1] - sm_tr[i - 1] / period + tr[i]
        sm_p[i] = sm_p[i - 1] - sm_p[i - 1] / period + plus_dm[i]
        sm_m[i] = sm_m[i - 1] - sm_m[i - 1] / period + minus_dm[i]

    plus_di = np.full(n, np.nan)
    minus_di = np.full(n, np.nan)
    dx = np.full(n, np.nan)
    for i in range(period, n):
        dip = 100 * sm_p[i] / sm_tr[i] if sm_tr[i] else 0.0
        dim = 100 * sm_m[i] / sm_tr[i] if sm_tr[i] else 0.0
        plus_di[i] = dip
        minus_di[i] = dim
        di_sum = dip + dim
        dx[i] = 100 * abs(dip - dim) / di_sum if di_sum else 0.0

    out = np.full(n, np.nan)
    out[2 * period] = dx[period:2 * period].mean()
    for i in range(2 * period + 1, n):
        out[i] = (out[i - 1] * (period - 1) + dx[i]) / period

    return AdxResult(adx=out, plus_di=plus_di, minus_di=minus_di)
