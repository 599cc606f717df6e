"""
Data Quality Grading
====================

Scores the freshness and completeness of one evaluation cycle's inputs and
maps the score to an A-D grade. Only grades A and B allow entries.

Score starts at 100:
- primary venue unavailable     -40
- secondary venue unavailable   -15
- order book older than 3s      -25
- trades older than 10s         -15
- 1m klines older than 90s      -20
- 5m klines older than 300s     -10
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from ..closed_candle import tf_to_ms
from ..models import Candle, Orderbook, Quality, Trade

logger = logging.getLogger(__name__)

ORDERBOOK_STALE_MS = 3_000
TRADES_STALE_MS = 10_000
KLINE_1M_STALE_MS = 90_000
KLINE_5M_STALE_MS = 300_000

GRADE_A = 85
GRADE_B = 70
GRADE_C = 50

DQ_OK_GRADES = ("A", "B")


@dataclass
class VenueHealth:
    """Ages are in milliseconds; None means the input was not received."""
    ok: bool = True
    orderbook_age_ms: Optional[int] = None
    trades_age_ms: Optional[int] = None
    kline_1m_age_ms: Optional[int] = None
    kline_5m_age_ms: Optional[int] = None


def grade_from_score(score: int) -> str:
    if score >= GRADE_A:
        return "A"
    if score >= GRADE_B:
        return "B"
    if score >= GRADE_C:
        return "C"
    return "D"


def is_dq_ok(grade: Optional[str]) -> bool:
    return grade in DQ_OK_GRADES


def _stale(age: Optional[int], limit: int) -> bool:
    return age is None or age > limit


def grade_venues(primary: VenueHealth, secondary: Optional[VenueHealth] = None) -> Quality:
    """
    Grade the cycle from per-venue health.

    Staleness penalties are taken from the primary venue; the secondary only
    contributes its availability.
    """
    score = 100
    reasons = []

    if not primary.ok:
        score -= 40
        reasons.append("Primary venue unavailable")
    if secondary is None or not secondary.ok:
        score -= 15
        reasons.append("Secondary venue unavailable")

    if _stale(primary.orderbook_age_ms, ORDERBOOK_STALE_MS):
        score -= 25
        reasons.append(f"Orderbook stale {primary.orderbook_age_ms}ms")
    if _stale(primary.trades_age_ms, TRADES_STALE_MS):
        score -= 15
        reasons.append(f"Trades stale {primary.trades_age_ms}ms")
    if _stale(primary.kline_1m_age_ms, KLINE_1M_STALE_MS):
        score -= 20
        reasons.append(f"1m kline stale {primary.kline_1m_age_ms}ms")
    if _stale(primary.kline_5m_age_ms, KLINE_5M_STALE_MS):
        score -= 10
        reasons.append(f"5m kline stale {primary.kline_5m_age_ms}ms")

    score = max(0, min(100, score))
    grade = grade_from_score(score)
    if grade not in DQ_OK_GRADES:
        logger.debug(f"Data quality {grade} ({score}): {', '.join(reasons)}")

    return Quality(
        dq_grade=grade,
        score=score,
        primary_ok=primary.ok,
        secondary_ok=bool(secondary and secondary.ok),
        reasons=reasons,
    )


def _kline_age(candles: Optional[Sequence[Candle]], tf: str, now_ms: int) -> Optional[int]:
    if not candles:
        return None
    close_ts = candles[-1].ts + tf_to_ms(tf)
    return max(0, now_ms - close_ts) if candles[-1].confirm else 0


def venue_health(
    now_ms: int,
    ok: bool = True,
    orderbook: Optional[Orderbook] = None,
    trades: Optional[Sequence[Trade]] = None,
    candles_by_tf: Optional[Dict[str, Sequence[Candle]]] = None,
) -> VenueHealth:
    """Derive input ages from the data a venue delivered this cycle."""
    candles_by_tf = candles_by_tf or {}
    return VenueHealth(
        ok=ok,
        orderbook_age_ms=max(0, now_ms - orderbook.ts) if orderbook is not None else None,
        trades_age_ms=max(0, now_ms - trades[-1].ts) if trades else None,
        kline_1m_age_ms=_kline_age(candles_by_tf.get("1m"), "1m", now_ms),
        kline_5m_age_ms=_kline_age(candles_by_tf.get("5m"), "5m", now_ms),
    )
