"""
Market Structure Detector
=========================

Per-timeframe swing points, Break-of-Structure / Change-of-Character events
and liquidity sweeps, recomputed over the full candle window on every call.

Swing rule (pivot window L/R):
    bar i is a swing high iff high[i] > every other high in [i-L, i+R];
    symmetric for swing lows. A swing only exists once R later bars have
    closed, and it only becomes an active structure level at bar i+R.

Break rule:
    close above the active swing high is CHOCH while the recorded trend is
    BEAR, otherwise BOS; the trend becomes BULL and the level is consumed.
    Symmetric for breaks down.

Sweep rule:
    within the last ``sweep_lookback`` bars, a bar whose high pierces the last
    swing high but closes back below it (UP), or whose low pierces the last
    swing low but closes back above it (DOWN).
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ..closed_candle import confirmed_only
from ..config import StructureConfig
from ..models import (
    Candle,
    Direction,
    MarketStructureTF,
    StructureEvent,
    StructureKind,
    SweepEvent,
    SwingPoint,
    SwingType,
    Trend,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# SWINGS
# ═══════════════════════════════════════════════════════════════════════════

def _strict_pivots(values: np.ndarray, left: int, right: int, highs: bool) -> np.ndarray:
    """Indices whose value strictly beats every other value in its window."""
    size = left + right + 1
    if values.shape[0] < size:
        return np.array([], dtype=int)

    win = sliding_window_view(values, size)
    center = win[:, left]
    if highs:
        others = np.maximum(
            win[:, :left].max(axis=1),
            win[:, left + 1:].max(axis=1),
        )
        mask = center > others
    else:
        others = np.minimum(
            win[:, :left].min(axis=1),
            win[:, left + 1:].min(axis=1),
        )
        mask = center < others
    return np.flatnonzero(mask) + left


def detect_swings(candles: Sequence[Candle], left: int = 2, right: int = 2) -> List[SwingPoint]:
    """
    Confirmed swing points over closed candles, in chronological order.

    Args:
        candles: Ascending candles; a trailing unconfirmed bar is ignored
        left: Bars required before the pivot
        right: Bars required after the pivot (confirmation delay)

    Returns:
        SwingPoints sorted by index (a high and a low on the same bar keep
        high-then-low order)
    """
    if left < 1 or right < 1:
        raise ValueError(f"Pivot window sides must be >= 1, got left={left} right={right}")

    bars = confirmed_only(candles)
    if not bars:
        return []

    highs = np.array([c.h for c in bars], dtype=np.float64)
    lows = np.array([c.l for c in bars], dtype=np.float64)

    swings = [
        SwingPoint(SwingType.HIGH, bars[i].ts, bars[i].h, strength=min(left, right), index=int(i))
        for i in _strict_pivots(highs, left, right, highs=True)
    ]
    swings += [
        SwingPoint(SwingType.LOW, bars[i].ts, bars[i].l, strength=min(left, right), index=int(i))
        for i in _strict_pivots(lows, left, right, highs=False)
    ]
    swings.sort(key=lambda s: (s.index, 0 if s.type == SwingType.HIGH else 1))
    return swings


# ═══════════════════════════════════════════════════════════════════════════
# SWEEPS
# ═══════════════════════════════════════════════════════════════════════════

def _last_swing_before(swings: Sequence[SwingPoint], kind: SwingType, bar_index: int, right: int) -> Optional[SwingPoint]:
    """Most recent swing of ``kind`` already confirmed before ``bar_index``."""
    for s in reversed(swings):
        if s.type == kind and s.index + right < bar_index:
            return s
    return None


def detect_sweep(
    tf: str,
    bars: Sequence[Candle],
    swings: Sequence[SwingPoint],
    right: int,
    lookback: int,
) -> Optional[SweepEvent]:
    """Most recent wick-through-then-reject bar within the last ``lookback`` bars."""
    n = len(bars)
    for j in range(n - 1, max(n - lookback, 0) - 1, -1):
        bar = bars[j]
        sh = _last_swing_before(swings, SwingType.HIGH, j, right)
        if sh is not None and bar.h > sh.price and bar.c < sh.price:
            return SweepEvent(Direction.UP, tf, bar.ts, sh.price, bar.h, bar.l, bar.c)
        sl = _last_swing_before(swings, SwingType.LOW, j, right)
        if sl is not None and bar.l < sl.price and bar.c > sl.price:
            return SweepEvent(Direction.DOWN, tf, bar.ts, sl.price, bar.h, bar.l, bar.c)
    return None


# ═══════════════════════════════════════════════════════════════════════════
# STRUCTURE WALK
# ═══════════════════════════════════════════════════════════════════════════

def compute_market_structure_tf(
    tf: str,
    candles: Sequence[Candle],
    config: Optional[StructureConfig] = None,
) -> MarketStructureTF:
    """
    Full-window market structure for one timeframe.

    Args:
        tf: Timeframe label carried into events
        candles: Ascending candles (a trailing forming bar is dropped)
        config: Pivot window, swing cap and sweep lookback

    Returns:
        MarketStructureTF; trend UNKNOWN until both a swing high and a swing
        low are confirmed and no break has happened
    """
    config = config or StructureConfig()
    left, right = config.left, config.right

    bars = confirmed_only(candles)
    result = MarketStructureTF(tf=tf)
    if not bars:
        return result

    swings = detect_swings(bars, left, right)

    # swings become visible at the close of bar index + right
    by_confirm: Dict[int, List[SwingPoint]] = {}
    for s in swings:
        by_confirm.setdefault(s.index + right, []).append(s)

    trend = Trend.UNKNOWN
    active_high: Optional[SwingPoint] = None
    active_low: Optional[SwingPoint] = None
    seen_high = seen_low = False
    last_bos: Optional[StructureEvent] = None
    last_choch: Optional[StructureEvent] = None

    for i, bar in enumerate(bars):
        for s in by_confirm.get(i, ()):
            if s.type == SwingType.HIGH:
                active_high, seen_high = s, True
            else:
                active_low, seen_low = s, True

        if active_high is not None and bar.c > active_high.price:
            kind = StructureKind.CHOCH if trend == Trend.BEAR else StructureKind.BOS
            event = StructureEvent(kind, Direction.UP, tf, bar.ts, active_high.price, bar.c)
            if kind == StructureKind.BOS:
                last_bos = event
            else:
                last_choch = event
            trend = Trend.BULL
            active_high = None
        elif active_low is not None and bar.c < active_low.price:
            kind = StructureKind.CHOCH if trend == Trend.BULL else StructureKind.BOS
            event = StructureEvent(kind, Direction.DOWN, tf, bar.ts, active_low.price, bar.c)
            if kind == StructureKind.BOS:
                last_bos = event
            else:
                last_choch = event
            trend = Trend.BEAR
            active_low = None
        elif trend == Trend.UNKNOWN and seen_high and seen_low:
            trend = Trend.RANGE

    visible = [s for s in swings if s.index + right <= len(bars) - 1]
    last_ts = bars[-1].ts

    result.trend = trend
    result.confirmed_count = len(visible)
    result.recent_swings = visible[-config.swings_cap:]
    result.last_swing_high = next((s for s in reversed(visible) if s.type == SwingType.HIGH), None)
    result.last_swing_low = next((s for s in reversed(visible) if s.type == SwingType.LOW), None)
    result.last_bos = last_bos
    result.last_choch = last_choch

    for event in (last_bos, last_choch):
        if event is None or event.ts != last_ts:
            continue
        up = event.dir == Direction.UP
        if event.kind == StructureKind.BOS:
            result.bos_up, result.bos_down = up, not up
        else:
            result.choch_up, result.choch_down = up, not up

    sweep = detect_sweep(tf, bars, visible, right, config.sweep_lookback)
    result.last_sweep = sweep
    if sweep is not None and sweep.ts == last_ts:
        result.sweep_up = sweep.dir == Direction.UP
        result.sweep_down = sweep.dir == Direction.DOWN

    logger.debug(
        f"[structure {tf}] bars={len(bars)} swings={len(visible)} trend={trend.value} "
        f"bos={last_bos.dir.value if last_bos else None} "
        f"choch={last_choch.dir.value if last_choch else None}"
    )
    return result


def compute_market_structure(
    candles_by_tf: Dict[str, Sequence[Candle]],
    tfs: Iterable[str],
    config: Optional[StructureConfig] = None,
) -> Dict[str, MarketStructureTF]:
    """Structure for every requested timeframe that has candles."""
    out = {}
    for tf in tfs:
        candles = candles_by_tf.get(tf)
        if candles:
            out[tf] = compute_market_structure_tf(tf, candles, config)
    return out
