"""
Setup Builders
==============

One pure function per setup family, each ``(FeaturesSnapshot, SetupContext,
SetupConfig) -> Setup``. All families share the same resolution tail:

1. the trigger candle must pass the closed-candle proof before its OHLC is read
2. a stop on the wrong side of entry forces INVALID + ENTRY_OFF
3. RR(TP1) below the floor forces ENTRY_OFF
4. ENTRY_OK additionally needs an actionable LTF gate and price inside the zone

Missing inputs are appended to ``why.missing_fields`` with their source path
and leave the setup in ENTRY_WAIT; nothing here raises on incomplete data.
"""

import logging
from typing import Callable, Dict, Optional

from ..closed_candle import MISSING, STALE, ClosedCandleProof, check_closed, tf_to_ms
from ..config import SetupConfig
from ..models import Candle, FeaturesSnapshot
from .models import (
    INVALID_RISK_BLOCKER,
    MISSING_FIELD,
    NOT_IN_ZONE_BLOCKER,
    OTHER,
    RR_BLOCKER,
    EntryValidity,
    EntryZone,
    Setup,
    SetupContext,
    SetupFamily,
    SetupState,
    Stop,
)

logger = logging.getLogger(__name__)

ATR_H1_PATH = "indicators[1h].atr14"
EMA20_H4_PATH = "indicators[4h].ema20"
EMA50_H4_PATH = "indicators[4h].ema50"
PD_HIGH_PATH = "key_levels.previous_day.high"
PD_LOW_PATH = "key_levels.previous_day.low"
TRIGGER_H1_PATH = "candles[1h].last"
TRIGGER_M15_PATH = "candles[15m].last"
LAST_PRICE_PATH = "ticker.last"
LTF_GATE_PATH = "ltf_trigger_state"

Builder = Callable[[FeaturesSnapshot, SetupContext, SetupConfig], Setup]


# ═══════════════════════════════════════════════════════════════════════════
# SHARED RESOLUTION
# ═══════════════════════════════════════════════════════════════════════════

def risk_reward(direction: str, entry: float, stop: float, target: float) -> Optional[float]:
    """
    Reward / risk from ``entry``. None when the stop sits on the wrong side
    (risk <= 0), which callers treat as invalid risk.
    """
    if direction == "LONG":
        risk, reward = entry - stop, target - entry
    else:
        risk, reward = stop - entry, entry - target
    if risk <= 0:
        return None
    return reward / risk


def _wait_missing(s: Setup, path: str, blocker: str) -> Setup:
    s.missing(path)
    return s.wait(MISSING_FIELD, path, blocker)


def prove_trigger(
    s: Setup,
    candle: Optional[Candle],
    tf: str,
    path: str,
    now_ms: int,
    config: SetupConfig,
) -> Optional[ClosedCandleProof]:
    """
    Run the closed-candle proof on ``candle`` and record the outcome.

    Returns:
        The passing proof, or None after putting the setup in ENTRY_WAIT
        (or EXPIRED when the candle is older than ``expiry_bars``)
    """
    proof = check_closed(candle, tf, now_ms)
    s.entry_trigger.timeframe = tf
    s.entry_trigger.proof = proof

    if proof.ok:
        s.entry_trigger.candle = candle
        return proof

    if proof.reason == MISSING:
        _wait_missing(s, path, f"DATA_INCOMPLETE: missing trigger candle ({tf})")
    elif proof.reason == STALE and now_ms - candle.ts > config.expiry_bars * tf_to_ms(tf):
        s.state = SetupState.EXPIRED
        s.off(f"EXPIRED: {tf} trigger candle older than {config.expiry_bars} bars")
    else:
        s.wait(OTHER, f"{path}.ts", proof.message)
    return None


def resolve_entry(
    s: Setup,
    ctx: SetupContext,
    config: SetupConfig,
    stop: Optional[float],
    stop_rule: str,
    tp1: Optional[float],
    tp1_path: str,
) -> Setup:
    """
    Shared tail for a setup whose trigger is confirmed and zone is set.

    Applies invalid-risk, RR floor, LTF gate and zone checks in that order.
    """
    s.stop = Stop(price=stop, rule=stop_rule, source_paths=[ATR_H1_PATH])
    s.tp1.price = tp1
    s.tp1.source_paths = [tp1_path]

    if tp1 is None:
        return _wait_missing(s, tp1_path, "DATA_INCOMPLETE: missing TP1 level")

    rr = risk_reward(s.direction, s.entry_zone.mid, stop, tp1)
    if rr is None:
        s.state = SetupState.INVALID
        return s.off(INVALID_RISK_BLOCKER)

    s.tp1.rr = round(rr, 2)
    if rr < config.rr_floor:
        return s.off(RR_BLOCKER.format(floor=config.rr_floor))

    gate = ctx.ltf_gate
    if gate is None:
        return _wait_missing(s, LTF_GATE_PATH, "DATA_INCOMPLETE: missing ltf_trigger_state")
    if not gate.actionable:
        b = gate.blocker
        s.confidence = max(0, s.confidence - 10)
        if b is None:
            return s.wait(OTHER, "", "LTF gate blocked")
        return s.wait(b.reason, b.source_path, b.message)

    if ctx.last_price is None:
        return _wait_missing(s, LAST_PRICE_PATH, "DATA_INCOMPLETE: missing last price")

    if not s.entry_zone.contains(ctx.last_price):
        return s.wait(OTHER, LAST_PRICE_PATH, NOT_IN_ZONE_BLOCKER)

    s.state = SetupState.TRIGGERED
    s.entry_validity = EntryValidity.ENTRY_OK
    s.entry_blocker = ""
    s.wait_reason = ""
    s.wait_source_path = ""
    return s


def _direction_from_trend(trend: Optional[str]) -> Optional[str]:
    if trend == "bull":
        return "LONG"
    if trend == "bear":
        return "SHORT"
    return None


# ═══════════════════════════════════════════════════════════════════════════
# FAMILIES
# ═══════════════════════════════════════════════════════════════════════════

def build_trend_pullback(features: FeaturesSnapshot, ctx: SetupContext, config: SetupConfig) -> Setup:
    """Pullback into the 4h EMA20/EMA50 band in the direction of the HTF trend."""
    s = Setup(title="Trend Pullback", family=SetupFamily.TREND_PULLBACK, symbol=ctx.symbol)

    direction = _direction_from_trend(ctx.htf_trend)
    if ctx.htf_trend is None:
        s.missing(ctx.htf_trend_path)
    elif direction is not None:
        s.direction = direction
        s.because(f"HTF trend {ctx.htf_trend}", ctx.htf_trend_path)

    if ctx.atr_h1 is None:
        s.missing(ATR_H1_PATH)
    if ctx.ema20_h4 is None:
        s.missing(EMA20_H4_PATH)
    if ctx.ema50_h4 is None:
        s.missing(EMA50_H4_PATH)

    if s.why.missing_fields:
        first = s.why.missing_fields[0].replace("MISSING FIELD: ", "")
        return s.wait(MISSING_FIELD, first, f"DATA_INCOMPLETE: missing {first}")

    if direction is None:
        return s.wait(OTHER, ctx.htf_trend_path, f"WAIT: HTF trend {ctx.htf_trend}, no pullback direction")

    s.entry_zone = EntryZone(
        low=min(ctx.ema20_h4, ctx.ema50_h4),
        high=max(ctx.ema20_h4, ctx.ema50_h4),
        source_paths=[EMA20_H4_PATH, EMA50_H4_PATH],
        note="EMA20/EMA50 band (4h)",
    )
    s.because("Entry zone is the 4h EMA20/EMA50 band", EMA20_H4_PATH)

    if prove_trigger(s, ctx.trigger_h1, "1h", TRIGGER_H1_PATH, ctx.now_ms, config) is None:
        return s

    s.entry_trigger.type = "1h close (closed candle only)"
    s.entry_trigger.status = "CONFIRMED"
    s.state = SetupState.READY
    s.confidence = 65

    buffer = config.pullback_stop_atr * ctx.atr_h1
    if s.direction == "LONG":
        stop = s.entry_zone.low - buffer
        rule = f"zone_low - {config.pullback_stop_atr:g}*ATR(1h)"
        tp1, tp1_path = ctx.key_levels.pd_high, PD_HIGH_PATH
    else:
        stop = s.entry_zone.high + buffer
        rule = f"zone_high + {config.pullback_stop_atr:g}*ATR(1h)"
        tp1, tp1_path = ctx.key_levels.pd_low, PD_LOW_PATH

    return resolve_entry(s, ctx, config, stop, rule, tp1, tp1_path)


def build_breakout(features: FeaturesSnapshot, ctx: SetupContext, config: SetupConfig) -> Setup:
    """Acceptance beyond the previous-day high (LONG) or low (SHORT) on a closed 1h candle."""
    s = Setup(title="Breakout / Continuation", family=SetupFamily.BREAKOUT, symbol=ctx.symbol)
    levels = ctx.key_levels

    if levels.pd_high is None:
        s.missing(PD_HIGH_PATH)
    if levels.pd_low is None:
        s.missing(PD_LOW_PATH)
    if ctx.atr_h1 is None:
        s.missing(ATR_H1_PATH)
    if s.why.missing_fields:
        first = s.why.missing_fields[0].replace("MISSING FIELD: ", "")
        return s.wait(MISSING_FIELD, first, f"DATA_INCOMPLETE: missing {first}")

    s.direction = "SHORT" if ctx.htf_trend == "bear" else "LONG"

    if prove_trigger(s, ctx.trigger_h1, "1h", TRIGGER_H1_PATH, ctx.now_ms, config) is None:
        return s

    close = ctx.trigger_h1.c
    if close > levels.pd_high:
        s.direction = "LONG"
    elif close < levels.pd_low:
        s.direction = "SHORT"

    atr_h1 = ctx.atr_h1
    if s.direction == "LONG":
        level, level_path, sign = levels.pd_high, PD_HIGH_PATH, 1
    else:
        level, level_path, sign = levels.pd_low, PD_LOW_PATH, -1

    buf = config.breakout_zone_atr * atr_h1
    s.entry_zone = EntryZone(
        low=level - buf,
        high=level + buf,
        source_paths=[level_path, ATR_H1_PATH],
        note=f"level +/- {config.breakout_zone_atr:g}*ATR(1h)",
    )
    s.entry_trigger.type = "Breakout acceptance (1h close)"

    dist = (close - level) * sign
    accept = config.breakout_accept_atr * atr_h1
    if dist >= accept:
        s.entry_trigger.status = "CONFIRMED"
        s.state = SetupState.READY
        s.confidence = 60
        s.because(f"1h closed {dist:.4g} beyond level (>= {accept:.4g})", level_path)
    elif dist > 0:
        s.state = SetupState.ALMOST_READY
        s.confidence = 45
        return s.wait(OTHER, f"{TRIGGER_H1_PATH}.c",
                      f"WAIT: close beyond level by < {config.breakout_accept_atr:g}*ATR(1h)")
    else:
        return s.wait(OTHER, f"{TRIGGER_H1_PATH}.c", "WAIT: no close beyond previous-day level")

    stop = level - sign * buf
    rule = f"sanity min stop {config.breakout_zone_atr:g}*ATR(1h) from level"
    tp1 = level + sign * config.breakout_tp_atr * atr_h1
    return resolve_entry(s, ctx, config, stop, rule, tp1, level_path)


def build_range_mean_reversion(features: FeaturesSnapshot, ctx: SetupContext, config: SetupConfig) -> Setup:
    """Sweep of a previous-day boundary reclaimed on a closed 15m candle; fade back into the range."""
    s = Setup(title="Range Mean-Reversion", family=SetupFamily.RANGE_MEAN_REVERSION, symbol=ctx.symbol)
    levels = ctx.key_levels

    if not levels.complete:
        if levels.pd_high is None:
            s.missing(PD_HIGH_PATH)
        if levels.pd_low is None:
            s.missing(PD_LOW_PATH)
        return s.wait(MISSING_FIELD, "key_levels.previous_day", "DATA_INCOMPLETE: missing range boundaries")

    s.stop = Stop(price=None, rule="TBD until sweep+reclaim trigger confirmed")

    if prove_trigger(s, ctx.trigger_m15, "15m", TRIGGER_M15_PATH, ctx.now_ms, config) is None:
        return s

    bar = ctx.trigger_m15
    swept_up = bar.h > levels.pd_high
    swept_down = bar.l < levels.pd_low
    reclaimed = levels.pd_low <= bar.c <= levels.pd_high
    s.entry_trigger.type = "Sweep + reclaim (15m)"

    if not reclaimed or swept_up == swept_down:
        return s.wait(OTHER, TRIGGER_M15_PATH, "WAIT: missing sweep+reclaim")

    s.entry_trigger.status = "CONFIRMED"
    s.direction = "SHORT" if swept_up else "LONG"
    s.state = SetupState.READY
    s.confidence = 58
    s.because(f"15m swept previous-day {'high' if swept_up else 'low'} and closed back inside",
              PD_HIGH_PATH if swept_up else PD_LOW_PATH)

    if ctx.atr_h1 is None:
        return _wait_missing(s, ATR_H1_PATH, "DATA_INCOMPLETE: missing ATR(1h)")

    boundary = levels.pd_high if swept_up else levels.pd_low
    buf = config.range_zone_atr * ctx.atr_h1
    s.entry_zone = EntryZone(
        low=boundary - buf,
        high=boundary + buf,
        source_paths=[PD_HIGH_PATH if swept_up else PD_LOW_PATH, ATR_H1_PATH],
        note=f"boundary +/- {config.range_zone_atr:g}*ATR(1h)",
    )

    stop_buf = config.range_stop_atr * ctx.atr_h1
    if s.direction == "SHORT":
        stop, rule = bar.h + stop_buf, f"sweep high + {config.range_stop_atr:g}*ATR(1h)"
        tp1, tp1_path = levels.pd_low, PD_LOW_PATH
    else:
        stop, rule = bar.l - stop_buf, f"sweep low - {config.range_stop_atr:g}*ATR(1h)"
        tp1, tp1_path = levels.pd_high, PD_HIGH_PATH

    return resolve_entry(s, ctx, config, stop, rule, tp1, tp1_path)


BUILDERS: Dict[SetupFamily, Builder] = {
    SetupFamily.TREND_PULLBACK: build_trend_pullback,
    SetupFamily.BREAKOUT: build_breakout,
    SetupFamily.RANGE_MEAN_REVERSION: build_range_mean_reversion,
}
