"""
Order Flow Analysis
===================

Book and tape pressure for one evaluation window:
- Order book imbalance at several depths
- Aggression ratio (share of aggressive buy quantity)
- Trade delta and cumulative volume delta (CVD)
- Price/delta divergence
- Absorption (heavy aggression that fails to move price)

Delta = aggressive buy quantity - aggressive sell quantity
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ..models import DeltaStats, Orderbook, Trade

logger = logging.getLogger(__name__)

# Price move (fraction) at which divergence reaches full weight
DIVERGENCE_FULL_MOVE = 0.005
# Default "tight" range (fraction of price) for absorption
ABSORPTION_REF_RANGE = 0.0015
# sqrt(qty / median trade) at which the quantity factor saturates
ABSORPTION_QTY_SCALE = 10.0


def _clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


def _sign(x: float) -> int:
    return (x > 0) - (x < 0)


def orderbook_imbalance(
    bids: Sequence[Tuple[float, float]],
    asks: Sequence[Tuple[float, float]],
    depth: int,
) -> float:
    """
    (bid size - ask size) / (bid size + ask size) over the top ``depth`` levels.

    Returns:
        Imbalance clamped to [-1, 1]; 0.0 for an empty book
    """
    if depth < 1:
        raise ValueError(f"Imbalance depth must be >= 1, got {depth}")
    sb = sum(size for _, size in bids[:depth])
    sa = sum(size for _, size in asks[:depth])
    total = sb + sa
    if total <= 0:
        return 0.0
    return _clamp((sb - sa) / total, -1.0, 1.0)


def imbalance_by_depth(book: Optional[Orderbook], depths: Iterable[int]) -> Dict[str, Optional[float]]:
    """``{"top10": x, "top50": y, ...}``; values are None without a book."""
    out = {}
    for d in depths:
        out[f"top{d}"] = orderbook_imbalance(book.bids, book.asks, d) if book is not None else None
    return out


def split_volume(trades: Sequence[Trade]) -> Tuple[float, float]:
    buy = sum(t.q for t in trades if t.side == "buy")
    sell = sum(t.q for t in trades if t.side == "sell")
    return buy, sell


def aggression_ratio(trades: Sequence[Trade]) -> float:
    """buyQty / (buyQty + sellQty); 0.5 when there is no volume."""
    buy, sell = split_volume(trades)
    total = buy + sell
    if total <= 0:
        return 0.5
    return _clamp(buy / total)


def cvd_series(trades: Sequence[Trade]) -> np.ndarray:
    """Running cumulative delta over the window, one value per trade."""
    signed = np.array([t.q if t.side == "buy" else -t.q for t in trades], dtype=np.float64)
    return np.cumsum(signed)


def _divergence(delta_norm: float, price_change_pct: Optional[float]) -> Tuple[float, str]:
    if price_change_pct is None:
        return 0.0, "none"
    ps, ds = _sign(price_change_pct), _sign(delta_norm)
    if ps == 0 or ds == 0 or ps == ds:
        return 0.0, "none"

    # Bullish: price falls while buyers dominate. Bearish: the reverse.
    score = _clamp(abs(delta_norm)) * _clamp(abs(price_change_pct) / DIVERGENCE_FULL_MOVE)
    return score, ("bull" if ds > 0 else "bear")


def _absorption(
    trades: Sequence[Trade],
    buy: float,
    sell: float,
    ref_range: float,
) -> Tuple[float, str]:
    prices = [t.p for t in trades]
    qtys = [t.q for t in trades if t.q > 0]
    if not prices or not qtys:
        return 0.0, "none"

    mid = (max(prices) + min(prices)) / 2
    if mid <= 0:
        return 0.0, "none"
    range_pct = (max(prices) - min(prices)) / mid
    tightness = 1.0 - _clamp(range_pct / ref_range)

    aggressive = max(buy, sell)
    typical = float(np.median(qtys))
    if typical <= 0:
        return 0.0, "none"
    qty_factor = _clamp(math.sqrt(aggressive / typical) / ABSORPTION_QTY_SCALE)

    score = tightness * qty_factor
    if score <= 0 or buy == sell:
        return 0.0, "none"

    # sellers absorbed by passive bids is bullish, and vice versa
    return score, ("bull" if sell > buy else "bear")


def trade_delta(
    trades: Sequence[Trade],
    price_change_pct: Optional[float] = None,
    ref_range_pct: Optional[float] = None,
) -> DeltaStats:
    """
    Delta, CVD, divergence and absorption for a trade window.

    Args:
        trades: Trades in chronological order
        price_change_pct: Price move over the window as a fraction; defaults
            to first-to-last trade price
        ref_range_pct: Range (fraction of price) regarded as normal; a
            window trading inside a small part of it counts as tight

    Returns:
        DeltaStats (all zero / "none" for an empty window)
    """
    stats = DeltaStats()
    if not trades:
        return stats

    buy, sell = split_volume(trades)
    total = buy + sell
    stats.buy_qty = buy
    stats.sell_qty = sell
    stats.delta_qty = buy - sell
    stats.delta_norm = (buy - sell) / total if total > 0 else 0.0
    stats.cvd = float(cvd_series(trades)[-1])

    if price_change_pct is None:
        first, last = trades[0].p, trades[-1].p
        price_change_pct = (last - first) / first if first > 0 else None

    stats.divergence_score, stats.divergence_dir = _divergence(stats.delta_norm, price_change_pct)
    stats.absorption_score, stats.absorption_dir = _absorption(
        trades, buy, sell, ref_range_pct if ref_range_pct else ABSORPTION_REF_RANGE
    )
    return stats


def order_flow_features(
    book: Optional[Orderbook],
    trades: Optional[List[Trade]],
    depths: Iterable[int] = (10, 50, 200),
    ref_range_pct: Optional[float] = None,
) -> Dict[str, object]:
    """Order-flow block of the FeaturesSnapshot."""
    trades = trades or []
    return {
        'imbalance': imbalance_by_depth(book, depths),
        'aggression_ratio': aggression_ratio(trades),
        'delta': trade_delta(trades, ref_range_pct=ref_range_pct),
    }
