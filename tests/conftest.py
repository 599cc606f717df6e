"""
Shared fixtures for the signalcore tests.

All tests run against a fixed clock: NOW_MS is 10:00:30 UTC on
2023-11-15, so the last closed 1h candle opened at 09:00 and the last
closed 15m candle at 09:45.
"""

import numpy as np
import pytest

from signalcore.closed_candle import last_closed_boundary, tf_to_ms
from signalcore.models import Candle, Orderbook, Quality, Trade

HOUR_MS = 3_600_000
DAY_MS = 24 * HOUR_MS
DAY_START_MS = 1_700_006_400_000           # 2023-11-15 00:00 UTC
NOW_MS = DAY_START_MS + 10 * HOUR_MS + 30_000


def make_series(closes, tf="1h", last_ts=None, spread=0.3, volume=100.0, now_ms=NOW_MS):
    """
    Candles for ``closes`` ending at ``last_ts`` (defaults to the last closed
    boundary). Each bar opens at the previous close.
    """
    step = tf_to_ms(tf)
    if last_ts is None:
        last_ts = last_closed_boundary(tf, now_ms)
    n = len(closes)
    candles = []
    prev = closes[0]
    for i, c in enumerate(closes):
        o = prev
        candles.append(Candle(
            ts=last_ts - (n - 1 - i) * step,
            o=o,
            h=max(o, c) + spread,
            l=min(o, c) - spread,
            c=c,
            v=volume,
        ))
        prev = c
    return candles


@pytest.fixture
def now_ms():
    return NOW_MS


@pytest.fixture
def make_candles():
    """Factory fixture: ``make_candles(closes, tf, last_ts=None, spread=0.3)``."""
    return make_series


@pytest.fixture
def uptrend_1h():
    """300 closed 1h candles rising steadily."""
    closes = [100 + 0.5 * i for i in range(300)]
    return make_series(closes, "1h")


@pytest.fixture
def random_closes():
    """Reproducible random walk for range checks."""
    np.random.seed(42)
    return list(np.cumsum(np.random.randn(200) * 0.5) + 100)


@pytest.fixture
def good_quality():
    return Quality(dq_grade="A", score=100, primary_ok=True, secondary_ok=True)


@pytest.fixture
def sample_book():
    return Orderbook(
        ts=NOW_MS - 500,
        bids=[(100.0, 60.0), (99.5, 60.0)],
        asks=[(100.5, 40.0), (101.0, 40.0)],
    )


@pytest.fixture
def sample_trades():
    return [
        Trade(ts=NOW_MS - 3_000, p=100.0, q=2.0, side="buy"),
        Trade(ts=NOW_MS - 2_000, p=100.1, q=1.0, side="sell"),
        Trade(ts=NOW_MS - 1_000, p=100.2, q=3.0, side="buy"),
    ]
