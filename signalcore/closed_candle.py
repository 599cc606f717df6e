"""
Closed-Candle Proof
===================

A candle may only be used as a trigger once it is provably closed: its open
time must equal the last fully-closed boundary for its timeframe at the
evaluation instant ``now_ms``. Anything else is rejected with an explicit
reason instead of being silently accepted.
"""

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional, Sequence

from .models import Candle

logger = logging.getLogger(__name__)

MINUTE_MS = 60_000

TF_MS: Dict[str, int] = {
    "1m": MINUTE_MS,
    "3m": 3 * MINUTE_MS,
    "5m": 5 * MINUTE_MS,
    "15m": 15 * MINUTE_MS,
    "30m": 30 * MINUTE_MS,
    "1h": 60 * MINUTE_MS,
    "2h": 120 * MINUTE_MS,
    "4h": 240 * MINUTE_MS,
    "1d": 1440 * MINUTE_MS,
}

# Exchange interval codes (minutes, "D")
_ALIASES = {
    "1": "1m", "3": "3m", "5": "5m", "15": "15m", "30": "30m",
    "60": "1h", "120": "2h", "240": "4h", "D": "1d", "1D": "1d",
    "M15": "15m", "H1": "1h", "H4": "4h", "D1": "1d",
}

# Proof reasons
CLOSED = "CLOSED"
NOT_CLOSED = "NOT_CLOSED"
STALE = "STALE"
MISSING = "MISSING"
UNCONFIRMED = "UNCONFIRMED"


def normalize_tf(tf: str) -> str:
    """Canonical timeframe label ("1h", "15m", ...). Raises ValueError if unknown."""
    key = str(tf).strip()
    if key in TF_MS:
        return key
    if key in _ALIASES:
        return _ALIASES[key]
    if key.lower() in TF_MS:
        return key.lower()
    raise ValueError(f"Unknown timeframe: {tf!r}")


def tf_to_ms(tf: str) -> int:
    return TF_MS[normalize_tf(tf)]


def last_closed_boundary(tf: str, now_ms: int) -> int:
    """Open time of the last fully-closed candle: floor(now / tfMs) * tfMs - tfMs."""
    step = tf_to_ms(tf)
    return (int(now_ms) // step) * step - step


@dataclass
class ClosedCandleProof:
    ok: bool
    tf: str
    last_closed_ts: int
    candle_ts: Optional[int]
    reason: str

    @property
    def message(self) -> str:
        if self.ok:
            return f"{self.tf} candle {self.candle_ts} is the last closed candle"
        if self.reason == MISSING:
            return f"no {self.tf} candle supplied"
        return (f"ENTRY_BLOCKED: {self.tf} last.ts={self.candle_ts} != "
                f"last_closed_ts={self.last_closed_ts} ({self.reason})")

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['message'] = self.message
        return d


def check_closed(candle: Optional[Candle], tf: str, now_ms: int) -> ClosedCandleProof:
    """
    Verify that ``candle`` is exactly the last closed candle of ``tf``.

    Args:
        candle: Candidate trigger candle (None when absent)
        tf: Timeframe label
        now_ms: Evaluation instant in epoch milliseconds

    Returns:
        ClosedCandleProof; ``ok`` only when ``candle.ts`` equals the boundary
        and the candle is not flagged as still forming
    """
    tf = normalize_tf(tf)
    boundary = last_closed_boundary(tf, now_ms)

    if candle is None:
        return ClosedCandleProof(False, tf, boundary, None, MISSING)
    if not candle.confirm:
        return ClosedCandleProof(False, tf, boundary, candle.ts, UNCONFIRMED)
    if candle.ts > boundary:
        return ClosedCandleProof(False, tf, boundary, candle.ts, NOT_CLOSED)
    if candle.ts < boundary:
        return ClosedCandleProof(False, tf, boundary, candle.ts, STALE)
    return ClosedCandleProof(True, tf, boundary, candle.ts, CLOSED)


def confirmed_only(candles: Sequence[Candle]) -> list:
    """Drop a trailing still-forming candle; earlier bars are closed by construction."""
    out = list(candles)
    while out and not out[-1].confirm:
        out.pop()
    return out


def mark_forming(candles: Sequence[Candle], tf: str, now_ms: int) -> list:
    """
    Flag bars whose period has not ended at ``now_ms`` as still forming.

    Exchange klines carry no confirm flag and put the live bar last, so
    closure is decided from ``ts + tfMs <= now_ms``.
    """
    step = tf_to_ms(tf)
    return [replace(c, confirm=False) if c.confirm and c.ts + step > now_ms else c for c in candles]


def last_closed_candle(candles: Sequence[Candle], tf: str, now_ms: int) -> Optional[Candle]:
    """
    Pick the candle whose ts equals the closed boundary, if present.

    Used to find the trigger candle in a series whose last bar may still be
    forming (exchanges return the live bar last).
    """
    boundary = last_closed_boundary(tf, now_ms)
    for c in reversed(candles):
        if c.ts == boundary:
            return c
        if c.ts < boundary:
            break
    return None
