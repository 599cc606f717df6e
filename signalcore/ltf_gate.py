"""
LTF Gate
========

Classifies the execution (low) timeframe as READY, STALE, MISALIGNED,
WAITING_CLOSE or INVALIDATED. Setups may only report ENTRY_OK while the gate
is actionable.

Checks, in order:
1. missing trigger state or ``last_closed_ts``  -> INVALIDATED (MISSING_FIELD)
2. now - last_closed_ts > 2 * tfMs              -> STALE
3. last candle ts != last closed boundary       -> MISALIGNED
4. upstream marked the state not actionable     -> that state (READY maps to WAITING_CLOSE)
5. otherwise                                    -> READY, actionable
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .closed_candle import confirmed_only, last_closed_boundary, mark_forming, normalize_tf, tf_to_ms
from .models import Candle

logger = logging.getLogger(__name__)

READY = "READY"
STALE = "STALE"
MISALIGNED = "MISALIGNED"
WAITING_CLOSE = "WAITING_CLOSE"
INVALIDATED = "INVALIDATED"

_WAIT_REASONS = {
    STALE: "LTF_STALE",
    MISALIGNED: "LTF_MISALIGNED",
    WAITING_CLOSE: "LTF_WAITING_CLOSE",
}


@dataclass
class GateBlocker:
    reason: str          # wait reason code, e.g. LTF_STALE or MISSING_FIELD
    source_path: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LtfGateResult:
    state: str
    actionable: bool
    tf: str
    blocker: Optional[GateBlocker] = None
    missing: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state,
            'actionable': self.actionable,
            'tf': self.tf,
            'blocker': self.blocker.to_dict() if self.blocker else None,
            'missing': list(self.missing),
        }


def source_path(tf: str) -> str:
    return f"ltf_trigger_state[{tf}]"


def _blocked(state: str, tf: str, message: str, missing: Optional[List[str]] = None) -> LtfGateResult:
    reason = "MISSING_FIELD" if state == INVALIDATED else _WAIT_REASONS.get(state, "OTHER")
    return LtfGateResult(
        state=state,
        actionable=False,
        tf=tf,
        blocker=GateBlocker(reason, source_path(tf), message),
        missing=missing or [],
    )


def evaluate_ltf_gate(
    trigger_state: Optional[Mapping[str, Any]],
    tf: str,
    now_ms: int,
) -> LtfGateResult:
    """
    Classify the trigger-timeframe state.

    Args:
        trigger_state: ``{state, actionable, reason_code, reason_detail,
            last_closed_ts, last_ts}``; ``last_ts`` defaults to
            ``last_closed_ts``
        tf: Execution timeframe label
        now_ms: Evaluation instant

    Returns:
        LtfGateResult; never raises for missing data
    """
    tf = normalize_tf(tf)
    path = source_path(tf)

    if trigger_state is None:
        return _blocked(INVALIDATED, tf, f"DATA_INCOMPLETE: missing ltf_trigger_state ({path})",
                        [f"MISSING FIELD: {path}"])

    last_closed_ts = trigger_state.get('last_closed_ts')
    if last_closed_ts is None:
        return _blocked(INVALIDATED, tf, f"DATA_INCOMPLETE: missing last_closed_ts ({path})",
                        [f"MISSING FIELD: {path}.last_closed_ts"])

    last_ts = trigger_state.get('last_ts', last_closed_ts)
    step = tf_to_ms(tf)
    age = now_ms - int(last_closed_ts)
    if age > 2 * step:
        return _blocked(STALE, tf, f"LTF_BLOCKED: STALE, last close {age}ms ago > {2 * step}ms ({path})")

    boundary = last_closed_boundary(tf, now_ms)
    if last_ts is None or int(last_ts) != boundary:
        return _blocked(MISALIGNED, tf,
                        f"LTF_BLOCKED: MISALIGNED, last.ts={last_ts} != last_closed_ts={boundary} ({path})")

    if trigger_state.get('actionable') is False:
        state = str(trigger_state.get('state') or WAITING_CLOSE).upper()
        if state == READY:
            state = WAITING_CLOSE
        code = trigger_state.get('reason_code') or "NO_CODE"
        detail = trigger_state.get('reason_detail') or ""
        message = f"LTF_BLOCKED: {state} / {code} ({path})"
        if detail:
            message = f"{message}: {detail}"
        return _blocked(state, tf, message)

    return LtfGateResult(state=READY, actionable=True, tf=tf)


def trigger_state_from_candles(candles: Optional[Sequence[Candle]]) -> Optional[Dict[str, Any]]:
    """
    Build a trigger state from a raw candle series.

    A trailing forming candle is excluded.
    """
    closed = confirmed_only(candles or [])
    if not closed:
        return None
    last = closed[-1]
    return {
        'state': READY,
        'actionable': True,
        'reason_code': None,
        'reason_detail': None,
        'last_closed_ts': last.ts,
        'last_ts': last.ts,
    }


def gate_from_candles(candles: Optional[Sequence[Candle]], tf: str, now_ms: int) -> LtfGateResult:
    """Gate a raw series; bars still open at ``now_ms`` never count as the last close."""
    return evaluate_ltf_gate(trigger_state_from_candles(mark_forming(candles or [], tf, now_ms)), tf, now_ms)
