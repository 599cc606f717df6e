"""
Key Levels

Previous UTC-day high/low/close, the reference levels the setup builders use
for breakout triggers, range boundaries and first targets.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Sequence

import pytz

from ..models import Candle

logger = logging.getLogger(__name__)

UTC = pytz.UTC


@dataclass
class KeyLevels:
    pd_high: Optional[float] = None
    pd_low: Optional[float] = None
    pd_close: Optional[float] = None
    day_start_ms: Optional[int] = None
    source: str = ""

    @property
    def complete(self) -> bool:
        return self.pd_high is not None and self.pd_low is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def utc_day_start(ts_ms: int) -> int:
    """Epoch ms of 00:00 UTC on the day containing ``ts_ms``."""
    dt = datetime.fromtimestamp(ts_ms / 1000, tz=UTC)
    midnight = UTC.localize(datetime(dt.year, dt.month, dt.day))
    return int(midnight.timestamp() * 1000)


def previous_day_levels(
    now_ms: int,
    daily: Optional[Sequence[Candle]] = None,
    hourly: Optional[Sequence[Candle]] = None,
) -> KeyLevels:
    """
    Previous UTC day's high/low/close.

    Prefers the closed daily candle; falls back to aggregating the hourly
    candles that fall inside the previous day.
    """
    day_ms = int(timedelta(days=1).total_seconds() * 1000)
    prev_day = utc_day_start(now_ms) - day_ms

    if daily:
        for c in reversed(daily):
            if c.ts == prev_day and c.confirm:
                return KeyLevels(c.h, c.l, c.c, prev_day, "1d")
            if c.ts < prev_day:
                break

    if hourly:
        end = prev_day + day_ms
        bars = [c for c in hourly if prev_day <= c.ts < end and c.confirm]
        if bars:
            return KeyLevels(
                pd_high=max(c.h for c in bars),
                pd_low=min(c.l for c in bars),
                pd_close=bars[-1].c,
                day_start_ms=prev_day,
                source="1h",
            )

    logger.debug(f"No previous-day levels available for day starting {prev_day}")
    return KeyLevels(day_start_ms=prev_day)
