"""
Cross-Exchange Consensus
========================

Agreement between a primary and a secondary venue: price deviation in basis
points, deviation z-score, log-return lead/lag and a blended consensus
score in [0, 1].
"""

import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..closed_candle import confirmed_only
from ..models import Candle, LeadLag

logger = logging.getLogger(__name__)

DEV_OK_BPS = 2.0
DEV_BAD_BPS = 12.0
LAG_OK_BARS = 0.0
LAG_BAD_BARS = 5.0
W_DEV = 0.8
W_LEAD_LAG = 0.2
MIN_CORR_SAMPLES = 20


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def smoothstep(edge0: float, edge1: float, x: float) -> float:
    """0 at or below edge0, 1 at or above edge1, cubic in between. Non-finite x maps to 1."""
    if not math.isfinite(x):
        return 1.0
    if edge1 == edge0:
        return 1.0 if x >= edge1 else 0.0
    t = _clamp01((x - edge0) / (edge1 - edge0))
    return t * t * (3 - 2 * t)


def deviation_bps(p1: Optional[float], p2: Optional[float]) -> Optional[float]:
    """(p1 - p2) / mid * 10000. None when either price is missing or mid is 0."""
    if p1 is None or p2 is None:
        return None
    if not (math.isfinite(p1) and math.isfinite(p2)):
        return None
    mid = (p1 + p2) / 2
    if mid == 0:
        return None
    return (p1 - p2) / mid * 10_000


def align_closes(a: Sequence[Candle], b: Sequence[Candle]) -> Tuple[np.ndarray, np.ndarray]:
    """Close prices of both venues on their common timestamps (closed bars only)."""
    b_by_ts = {c.ts: c.c for c in confirmed_only(b)}
    pa, pb = [], []
    for c in confirmed_only(a):
        other = b_by_ts.get(c.ts)
        if other is not None:
            pa.append(c.c)
            pb.append(other)
    return np.asarray(pa, dtype=np.float64), np.asarray(pb, dtype=np.float64)


def deviation_series(a: Sequence[Candle], b: Sequence[Candle]) -> List[float]:
    """Per-bar deviation in bps over the timestamps both venues share."""
    pa, pb = align_closes(a, b)
    out = []
    for x, y in zip(pa, pb):
        d = deviation_bps(float(x), float(y))
        if d is not None:
            out.append(d)
    return out


def deviation_z(
    a: Sequence[Candle],
    b: Sequence[Candle],
    window: int = 120,
    min_samples: int = 30,
) -> Optional[float]:
    """
    Z-score of the latest deviation against the last ``window`` aligned bars.

    Returns:
        (last - mean) / stdev, 0.0 when stdev is 0, None below ``min_samples``
    """
    series = deviation_series(a, b)[-window:]
    if len(series) < min_samples:
        return None
    arr = np.asarray(series)
    sd = float(arr.std())
    if sd < 1e-12:
        return 0.0
    return float((arr[-1] - arr.mean()) / sd)


def _corr(x: np.ndarray, y: np.ndarray) -> float:
    n = min(len(x), len(y))
    if n < MIN_CORR_SAMPLES:
        return 0.0
    x, y = x[:n], y[:n]
    dx, dy = x - x.mean(), y - y.mean()
    den = math.sqrt(float((dx * dx).sum()) * float((dy * dy).sum()))
    if den == 0:
        return 0.0
    return float((dx * dy).sum()) / den


def lead_lag(
    a: Sequence[Candle],
    b: Sequence[Candle],
    window: int = 120,
    max_lag: int = 3,
    min_returns: int = 30,
    leader_min_corr: float = 0.15,
) -> Optional[LeadLag]:
    """
    Lead/lag between venue ``a`` (primary) and ``b`` (secondary).

    Log returns over the last ``window`` aligned bars are correlated at every
    lag in [-max_lag, max_lag]. A negative lag means ``a`` moves first.

    Returns:
        LeadLag with the best-correlated lag; leader "none" when that
        correlation is <= ``leader_min_corr``. None below ``min_returns``.
    """
    pa, pb = align_closes(a, b)
    pa, pb = pa[-(window + 1):], pb[-(window + 1):]
    if len(pa) < 2 or np.any(pa <= 0) or np.any(pb <= 0):
        return None

    ra = np.diff(np.log(pa))
    rb = np.diff(np.log(pb))
    if len(ra) < min_returns:
        return None

    # ties resolve toward the smallest |lag|
    lags = sorted(range(-max_lag, max_lag + 1), key=lambda x: (abs(x), x))
    best_lag, best_corr = 0, -math.inf
    for lag in lags:
        k = abs(lag)
        if lag < 0:
            x, y = ra[:-k], rb[k:]
        elif lag > 0:
            x, y = ra[k:], rb[:-k]
        else:
            x, y = ra, rb
        c = _corr(x, y)
        if c > best_corr:
            best_lag, best_corr = lag, c

    if best_corr > leader_min_corr:
        leader = "primary" if best_lag < 0 else "secondary" if best_lag > 0 else "none"
    else:
        leader = "none"

    return LeadLag(
        leader=leader,
        lag_bars=best_lag,
        score=_clamp01((best_corr + 1) / 2),
        corr=best_corr,
    )


def consensus_score(dev_bps: Optional[float], ll: Optional[LeadLag] = None) -> Optional[float]:
    """
    Blend of deviation agreement (weight 0.8) and lag quality (weight 0.2).

    Deviation scores 1 at <= 2 bps and 0 at >= 12 bps; lag scores 1 at 0
    bars and 0 at >= 5 bars, scaled by the lead/lag correlation score.

    Returns:
        Score in [0, 1]; deviation score alone when lead/lag is absent; None
        without a deviation
    """
    if dev_bps is None or not math.isfinite(dev_bps):
        return None

    dev_score = _clamp01(1 - smoothstep(DEV_OK_BPS, DEV_BAD_BPS, abs(dev_bps)))
    if ll is None:
        return dev_score

    corr_score = _clamp01(ll.score) if math.isfinite(ll.score) else 0.0
    lag_score = _clamp01(1 - smoothstep(LAG_OK_BARS, LAG_BAD_BARS, abs(ll.lag_bars)))
    ll_component = _clamp01(corr_score * lag_score)

    return _clamp01(W_DEV * dev_score + W_LEAD_LAG * ll_component)
