"""
Setup Engine
============

Runs every setup family against one FeaturesSnapshot, applies the
data-quality gate, adjusts confidence from order flow and cross-exchange
agreement, ranks the candidates and picks the preferred one.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence

from ..analysis.levels import KeyLevels, previous_day_levels
from ..analysis.quality import is_dq_ok
from ..closed_candle import confirmed_only, mark_forming
from ..config import EngineConfig, SetupConfig
from ..indicators import atr, ema, last_value
from ..ltf_gate import evaluate_ltf_gate, gate_from_candles
from ..models import Candle, FeaturesSnapshot, Trend
from .builders import BUILDERS
from .models import (
    DQ_BLOCKER,
    OTHER,
    EntryValidity,
    Setup,
    SetupContext,
    SetupEngineOutput,
    SetupState,
)

logger = logging.getLogger(__name__)

STATE_RANK = {
    SetupState.TRIGGERED: 0,
    SetupState.READY: 1,
    SetupState.ALMOST_READY: 2,
    SetupState.BUILD_UP: 3,
    SetupState.INVALID: 4,
    SetupState.EXPIRED: 4,
}

_STRUCTURE_TREND = {
    Trend.BULL: "bull",
    Trend.BEAR: "bear",
    Trend.RANGE: "sideways",
}

PRICE_TFS = ("1m", "5m", "15m", "1h")


# ═══════════════════════════════════════════════════════════════════════════
# CONTEXT
# ═══════════════════════════════════════════════════════════════════════════

def _htf_trend(features: FeaturesSnapshot):
    bias = features.bias_by_tf.get("4h")
    if bias is not None and bias.complete:
        return bias.trend_dir, "bias_by_tf[4h].trend_dir"
    ms = features.market_structure.get("4h")
    if ms is not None and ms.trend in _STRUCTURE_TREND:
        return _STRUCTURE_TREND[ms.trend], "market_structure[4h].trend"
    return None, "bias_by_tf[4h].trend_dir"


def _closed(candles_by_tf: Mapping[str, Sequence[Candle]], tf: str, now_ms: int) -> List[Candle]:
    return confirmed_only(mark_forming(candles_by_tf.get(tf) or [], tf, now_ms))


def build_context(
    features: FeaturesSnapshot,
    candles_by_tf: Mapping[str, Sequence[Candle]],
    now_ms: int,
    config: Optional[SetupConfig] = None,
    last_price: Optional[float] = None,
    key_levels: Optional[KeyLevels] = None,
    trigger_state: Optional[Mapping] = None,
) -> SetupContext:
    """
    Derive the builder context from the snapshot and raw candles.

    Args:
        features: Snapshot for the same tick
        candles_by_tf: Primary-venue candles per timeframe
        now_ms: Evaluation instant
        config: Setup configuration (trigger and LTF timeframes)
        last_price: Ticker price; defaults to the latest close of the finest timeframe
        key_levels: Precomputed levels; defaults to previous UTC day from 1d/1h
        trigger_state: Upstream LTF trigger state; derived from candles when omitted
    """
    config = config or SetupConfig()

    h1 = _closed(candles_by_tf, "1h", now_ms)
    h4 = _closed(candles_by_tf, "4h", now_ms)
    m15 = _closed(candles_by_tf, "15m", now_ms)

    atr_h1 = last_value(atr([c.h for c in h1], [c.l for c in h1], [c.c for c in h1], 14))
    h4_closes = [c.c for c in h4]
    trend, trend_path = _htf_trend(features)

    if last_price is None:
        for tf in PRICE_TFS:
            series = candles_by_tf.get(tf)
            if series:
                last_price = series[-1].c
                break

    if key_levels is None:
        key_levels = previous_day_levels(now_ms, candles_by_tf.get("1d"), candles_by_tf.get("1h"))

    if trigger_state is not None:
        gate = evaluate_ltf_gate(trigger_state, config.ltf_tf, now_ms)
    else:
        gate = gate_from_candles(candles_by_tf.get(config.ltf_tf), config.ltf_tf, now_ms)

    return SetupContext(
        symbol=features.canon,
        now_ms=now_ms,
        last_price=last_price,
        atr_h1=atr_h1,
        htf_trend=trend,
        htf_trend_path=trend_path,
        ema20_h4=last_value(ema(h4_closes, 20)),
        ema50_h4=last_value(ema(h4_closes, 50)),
        trigger_h1=h1[-1] if h1 else None,
        trigger_m15=m15[-1] if m15 else None,
        key_levels=key_levels,
        ltf_gate=gate,
    )


# ═══════════════════════════════════════════════════════════════════════════
# SCORING / RANKING
# ═══════════════════════════════════════════════════════════════════════════

def adjust_confidence(setup: Setup, features: FeaturesSnapshot) -> None:
    """Nudge confidence by book imbalance, cross-venue consensus and bias alignment."""
    if setup.confidence <= 0 or setup.state.terminal:
        return

    sign = 1 if setup.direction == "LONG" else -1
    delta = 0

    imbalance = (features.orderflow.get('imbalance') or {}).get('top50')
    if imbalance is not None:
        if imbalance * sign >= 0.1:
            delta += 5
            setup.because("Book imbalance agrees", "orderflow.imbalance.top50")
        elif imbalance * sign <= -0.1:
            delta -= 5
            setup.because("Book imbalance opposes", "orderflow.imbalance.top50")

    consensus = features.cross.get('consensus_score')
    if consensus is not None:
        if consensus >= 0.65:
            delta += 3
            setup.because("Cross-venue consensus", "cross.consensus_score")
        elif consensus <= 0.45:
            delta -= 3
            setup.because("Cross-venue disagreement", "cross.consensus_score")

    trend = features.bias.get('trend_dir')
    if (trend == "bull" and sign > 0) or (trend == "bear" and sign < 0):
        delta += 4
        setup.because(f"Bias {trend} on {features.bias.get('tf')}", "bias.trend_dir")

    setup.confidence = int(max(0, min(100, setup.confidence + delta)))


def rank_setups(setups: List[Setup]) -> List[Setup]:
    """Most advanced state first, then highest confidence."""
    return sorted(setups, key=lambda s: (STATE_RANK[s.state], -s.confidence))


def pick_preferred(ranked: Sequence[Setup]) -> Optional[str]:
    """Best non-terminal setup whose entry is not switched off."""
    for s in ranked:
        if s.state.terminal or s.entry_validity == EntryValidity.ENTRY_OFF:
            continue
        return s.id
    return None


def _apply_dq_gate(setup: Setup) -> None:
    if setup.entry_validity == EntryValidity.ENTRY_OK:
        setup.state = SetupState.READY
        setup.wait(OTHER, "quality.dq_grade", DQ_BLOCKER)


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════

def build_setups(
    features: FeaturesSnapshot,
    ctx: SetupContext,
    config: Optional[SetupConfig] = None,
) -> SetupEngineOutput:
    """
    Build, gate and rank all setup families for one tick.

    Returns:
        SetupEngineOutput with setups ranked best-first
    """
    config = config or SetupConfig()
    dq_ok = is_dq_ok(features.quality.dq_grade)

    setups = []
    for builder in BUILDERS.values():
        setup = builder(features, ctx, config)
        if not dq_ok:
            _apply_dq_gate(setup)
        adjust_confidence(setup, features)
        logger.debug(
            f"[{setup.id}] state={setup.state.value} validity={setup.entry_validity.value} "
            f"conf={setup.confidence} blocker={setup.entry_blocker!r}"
        )
        setups.append(setup)

    ranked = rank_setups(setups)
    output = SetupEngineOutput(
        ts=ctx.now_ms,
        symbol=ctx.symbol,
        setups=ranked,
        preferred_id=pick_preferred(ranked),
        dq_ok=dq_ok,
        ltf_gate=ctx.ltf_gate,
    )
    if output.preferred_id:
        logger.info(f"[{ctx.symbol}] preferred setup {output.preferred_id} (dq_ok={dq_ok})")
    return output


class SetupEngine:
    """Convenience wrapper: context derivation plus setup building with one config."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def evaluate(
        self,
        features: FeaturesSnapshot,
        candles_by_tf: Mapping[str, Sequence[Candle]],
        now_ms: int,
        last_price: Optional[float] = None,
        key_levels: Optional[KeyLevels] = None,
        trigger_state: Optional[Dict] = None,
    ) -> SetupEngineOutput:
        ctx = build_context(features, candles_by_tf, now_ms, self.config.setups,
                            last_price, key_levels, trigger_state)
        return build_setups(features, ctx, self.config.setups)
