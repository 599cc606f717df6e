"""
Feature Engine
==============

Assembles one FeaturesSnapshot per symbol per evaluation tick from raw
candles, order book and trades of a primary and a secondary venue.

The snapshot is rebuilt from scratch every call. Missing inputs never abort
the computation: they are recorded in the snapshot notes, the snapshot is
flagged partial and the dependent fields stay None.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .analysis.cross_exchange import consensus_score, deviation_bps, deviation_z, lead_lag
from .analysis.order_flow import order_flow_features
from .analysis.quality import grade_venues, venue_health
from .analysis.structure import compute_market_structure
from .closed_candle import confirmed_only
from .config import CrossConfig, EngineConfig, FeatureConfig
from .indicators import adx, atr, bollinger, ema, last_value, macd, rsi, value_at
from .models import (
    BiasTfSnapshot,
    Candle,
    FeaturesSnapshot,
    LeadLag,
    Orderbook,
    Quality,
    Trade,
)

logger = logging.getLogger(__name__)

REQUIRED_TFS = ("5m", "15m", "1h", "4h")

# Minimum bars per computation
RSI_MIN_BARS = 20
MACD_MIN_BARS = 40
BB_MIN_BARS = 40
VOL_REGIME_MIN_BARS = 50
DEV_Z_MIN_BARS = 60


@dataclass
class FeatureInput:
    """Everything one evaluation tick needs. ``ts`` is the evaluation instant (ms)."""
    canon: str
    ts: int
    primary: Dict[str, List[Candle]] = field(default_factory=dict)
    secondary: Dict[str, List[Candle]] = field(default_factory=dict)
    orderbook: Optional[Orderbook] = None
    trades: Optional[List[Trade]] = None
    dev_bps: Optional[float] = None
    lead_lag: Optional[LeadLag] = None
    primary_ok: bool = True
    secondary_ok: bool = True
    quality: Optional[Quality] = None


# ═══════════════════════════════════════════════════════════════════════════
# BIAS
# ═══════════════════════════════════════════════════════════════════════════

def _hlc(candles: Sequence[Candle]):
    return [c.h for c in candles], [c.l for c in candles], [c.c for c in candles]


def atr_pct(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """Last ATR as a percentage of the last close."""
    h, l, c = _hlc(candles)
    a = last_value(atr(h, l, c, period))
    if a is None or not c or c[-1] <= 0:
        return None
    return a / c[-1] * 100


def vol_regime(atrp: Optional[float], config: FeatureConfig) -> Optional[str]:
    if atrp is None:
        return None
    if atrp < config.vol_low_pct:
        return "low"
    if atrp > config.vol_high_pct:
        return "high"
    return "normal"


def trend_from_ema_adx(closes: Sequence[float], adx14: Optional[float], config: FeatureConfig):
    """
    Trend direction and strength from EMA200 position/slope gated by ADX.

    Returns:
        (trend_dir, strength, ema200, slope_bps) or None without an EMA200
    """
    e200 = ema(closes, 200)
    last_e = last_value(e200)
    if last_e is None:
        return None

    prev_e = value_at(e200, -1 - config.ema_slope_bars)
    slope = last_e - prev_e if prev_e is not None else 0.0
    last_close = closes[-1]

    adx_val = adx14 or 0.0
    trend_dir = "sideways"
    if adx_val >= config.adx_trending:
        if last_close > last_e and slope > 0:
            trend_dir = "bull"
        elif last_close < last_e and slope < 0:
            trend_dir = "bear"

    dist = abs(last_close - last_e) / last_close if last_close else 0.0
    strength = min(1.0, max(0.0, (adx_val / 40) * 0.7 + min(1.0, max(0.0, dist * 50)) * 0.3))
    slope_bps = slope / last_e * 10_000 if last_e else None
    return trend_dir, strength, last_e, slope_bps


def bias_for_tf(tf: str, candles: Optional[Sequence[Candle]], config: FeatureConfig) -> BiasTfSnapshot:
    """Bias for one timeframe; trend fields stay None until enough bars exist."""
    bars = confirmed_only(candles or [])
    snap = BiasTfSnapshot(tf=tf, have=len(bars), need=config.bias_min_bars)

    h, l, c = _hlc(bars)
    if len(bars) >= config.adx_min_bars:
        adx_res = adx(h, l, c, 14)
        snap.adx14 = last_value(adx_res.adx) if adx_res is not None else None
    snap.vol_regime = vol_regime(atr_pct(bars), config)

    if len(bars) < config.bias_min_bars:
        return snap

    trend = trend_from_ema_adx(c, snap.adx14, config)
    if trend is None:
        return snap

    snap.trend_dir, snap.trend_strength, snap.ema200, snap.ema200_slope_bps = trend
    snap.complete = True
    return snap


def _select_bias_tf(primary: Dict[str, List[Candle]], config: FeatureConfig) -> str:
    bars = confirmed_only(primary.get(config.bias_primary_tf) or [])
    if len(bars) >= config.bias_min_bars:
        return config.bias_primary_tf
    return config.bias_fallback_tf


# ═══════════════════════════════════════════════════════════════════════════
# ENTRY / CROSS
# ═══════════════════════════════════════════════════════════════════════════

def _momentum(primary: Dict[str, List[Candle]], tfs: Sequence[str]) -> Dict[str, Optional[float]]:
    out = {}
    for tf in tfs:
        closes = [c.c for c in confirmed_only(primary.get(tf) or [])]
        out[f"rsi14_{tf}"] = last_value(rsi(closes, 14)) if len(closes) >= RSI_MIN_BARS else None
        hist = None
        if len(closes) >= MACD_MIN_BARS:
            res = macd(closes)
            hist = last_value(res.histogram) if res is not None else None
        out[f"macd_hist_{tf}"] = hist
    return out


def _volatility(primary: Dict[str, List[Candle]], config: FeatureConfig) -> Dict[str, Optional[float]]:
    out = {}
    for tf in config.volatility_tfs:
        bars = confirmed_only(primary.get(tf) or [])
        out[f"atrp_{tf}"] = atr_pct(bars)
        if tf == "5m":
            continue
        width = None
        if len(bars) >= BB_MIN_BARS:
            bb = bollinger([c.c for c in bars], 20, 2.0)
            width = last_value(bb.width) if bb is not None else None
        out[f"bb_width_{tf}"] = width
    return out


def _first_pair(inp: FeatureInput, tfs: Sequence[str], min_bars: int):
    for tf in tfs:
        a, b = inp.primary.get(tf), inp.secondary.get(tf)
        if a and b and len(a) >= min_bars and len(b) >= min_bars:
            return tf, a, b
    return None, None, None


def _cross(inp: FeatureInput, config: CrossConfig, snap: FeaturesSnapshot) -> Dict[str, object]:
    dev = inp.dev_bps
    if dev is None:
        _, a, b = _first_pair(inp, ("1m", "5m"), 1)
        if a is not None:
            pa, pb = confirmed_only(a), confirmed_only(b)
            if pa and pb:
                dev = deviation_bps(pa[-1].c, pb[-1].c)

    dev_z = None
    _, a, b = _first_pair(inp, ("5m", "15m"), DEV_Z_MIN_BARS)
    if a is not None:
        dev_z = deviation_z(a, b, config.window, config.min_samples)

    ll = inp.lead_lag
    if ll is None:
        _, a, b = _first_pair(inp, ("1m", "5m"), config.min_samples + 1)
        if a is not None:
            ll = lead_lag(a, b, config.window, config.max_lag, config.min_samples, config.leader_min_corr)

    if dev is None:
        snap.note("Cross deviation unavailable (secondary venue candles missing)")

    return {
        'dev_bps': dev,
        'dev_z': dev_z,
        'lead_lag': ll,
        'consensus_score': consensus_score(dev, ll),
    }


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════

def compute_features(inp: FeatureInput, config: Optional[EngineConfig] = None) -> FeaturesSnapshot:
    """
    Build the FeaturesSnapshot for one symbol and tick.

    Args:
        inp: Candles per timeframe for both venues, book, trades and venue status
        config: Engine configuration (defaults when omitted)

    Returns:
        A new FeaturesSnapshot; ``partial`` is set and ``notes`` explain every
        missing input
    """
    config = config or EngineConfig()
    fc = config.features
    snap = FeaturesSnapshot(canon=inp.canon, ts=inp.ts)

    missing = [tf for tf in REQUIRED_TFS if not inp.primary.get(tf)]
    if missing:
        snap.note(f"Missing primary candles: {', '.join(missing)}")

    # Quality
    if inp.quality is not None:
        snap.quality = inp.quality
    else:
        snap.quality = grade_venues(
            venue_health(inp.ts, inp.primary_ok, inp.orderbook, inp.trades, inp.primary),
            venue_health(inp.ts, inp.secondary_ok, None, None, inp.secondary),
        )

    # Bias
    for tf in fc.bias_tfs:
        snap.bias_by_tf[tf] = bias_for_tf(tf, inp.primary.get(tf), fc)

    bias_tf = _select_bias_tf(inp.primary, fc)
    chosen = snap.bias_by_tf.get(bias_tf) or bias_for_tf(bias_tf, inp.primary.get(bias_tf), fc)
    if not chosen.complete:
        snap.note(f"Not enough {bias_tf} candles for EMA200 bias ({chosen.have}/{chosen.need})")

    bars_15m = confirmed_only(inp.primary.get("15m") or [])
    regime = None
    if len(bars_15m) >= VOL_REGIME_MIN_BARS:
        regime = vol_regime(atr_pct(bars_15m), fc)

    snap.bias = {
        'tf': bias_tf,
        'trend_dir': chosen.trend_dir,
        'trend_strength': chosen.trend_strength,
        'vol_regime': regime,
        'adx14': chosen.adx14,
        'ema200': chosen.ema200,
        'ema200_slope_bps': chosen.ema200_slope_bps,
        'complete': chosen.complete,
    }

    # Entry
    snap.entry = {
        'tfs': list(fc.entry_tfs),
        'momentum': _momentum(inp.primary, fc.entry_tfs),
        'volatility': _volatility(inp.primary, fc),
    }

    # Order flow
    if inp.orderbook is None:
        snap.note("Orderbook missing (order flow degraded)")
    if not inp.trades:
        snap.note("Trades missing (aggression defaults to 0.5)")
    atrp_5m = snap.entry['volatility'].get("atrp_5m")
    snap.orderflow = order_flow_features(
        inp.orderbook,
        inp.trades,
        fc.imbalance_depths,
        ref_range_pct=atrp_5m / 100 if atrp_5m else None,
    )

    # Cross-exchange
    snap.cross = _cross(inp, config.cross, snap)

    # Market structure
    snap.market_structure = compute_market_structure(inp.primary, fc.structure_tfs, config.structure)
    for tf in fc.structure_tfs:
        if tf not in snap.market_structure:
            snap.note(f"Market structure unavailable for {tf}")

    logger.debug(
        f"[{inp.canon}] features ts={inp.ts} bias={bias_tf}:{chosen.trend_dir} "
        f"dq={snap.quality.dq_grade} partial={snap.partial} notes={len(snap.notes)}"
    )
    return snap


class FeatureEngine:
    """Holds configuration and computes snapshots for successive ticks."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def compute(self, inp: FeatureInput) -> FeaturesSnapshot:
        return compute_features(inp, self.config)
