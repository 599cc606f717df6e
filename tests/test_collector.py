"""
Tests for the market data collector and retry helper.
"""

import asyncio
import random

import pytest

from signalcore.closed_candle import last_closed_boundary, tf_to_ms
from signalcore.collector import MarketDataCollector, VenueReport, fetch_with_retry
from signalcore.config import EngineConfig, FetchConfig
from signalcore.features import compute_features
from signalcore.setups import SetupEngine, build_context

from conftest import NOW_MS, make_series


class GoodAdapter:
    async def get_klines(self, symbol, timeframe, limit):
        return [c.to_dict() for c in make_series([100.0 + i for i in range(limit)], timeframe)]

    async def get_ticker(self, symbol):
        return {'last': 100.5, 'ts': NOW_MS}

    async def get_orderbook(self, symbol, depth):
        return {'ts': NOW_MS - 500, 'bids': [[100.0, 60.0]], 'asks': [[100.5, 40.0]]}

    async def get_recent_trades(self, symbol, limit):
        return [{'ts': NOW_MS - 1_000, 'px': 100.2, 'qty': 1.5, 'side': "Buy"}]


class LiveAdapter(GoodAdapter):
    """Exchange-shaped klines: no confirm flag, the forming bar last."""

    async def get_klines(self, symbol, timeframe, limit):
        live_ts = last_closed_boundary(timeframe, NOW_MS) + tf_to_ms(timeframe)
        candles = make_series([100.0 + 0.1 * i for i in range(limit)], timeframe, last_ts=live_ts)
        return [{k: v for k, v in c.to_dict().items() if k != 'confirm'} for c in candles]


class BrokenAdapter:
    def __init__(self, exc=ConnectionError("venue down")):
        self.exc = exc
        self.calls = 0

    async def _fail(self, *args):
        self.calls += 1
        raise self.exc

    get_klines = _fail
    get_ticker = _fail
    get_orderbook = _fail
    get_recent_trades = _fail


class Sleeps:
    """Records backoff delays instead of sleeping."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class TestFetchWithRetry:
    """Test timeout and backoff behaviour"""

    def test_succeeds_after_failures(self):
        attempts = []

        async def flaky(x):
            attempts.append(x)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return x * 2

        sleeps = Sleeps()
        result = asyncio.run(fetch_with_retry(flaky, 21, max_retries=2, base_delay=0.3,
                                              rng=random.Random(1), sleep=sleeps))

        assert result == 42
        assert len(attempts) == 3
        assert 0.225 <= sleeps.delays[0] <= 0.375
        assert 0.45 <= sleeps.delays[1] <= 0.75

    def test_delay_is_capped(self):
        async def broken():
            raise ConnectionError("reset")

        sleeps = Sleeps()
        with pytest.raises(ConnectionError):
            asyncio.run(fetch_with_retry(broken, max_retries=4, base_delay=1.0, max_delay=2.0,
                                         rng=random.Random(1), sleep=sleeps))

        assert len(sleeps.delays) == 4
        assert max(sleeps.delays) <= 2.0 * 1.25

    def test_timeout_raises(self):
        async def hang():
            await asyncio.sleep(1)

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(fetch_with_retry(hang, timeout=0.01, max_retries=0))

    def test_cancellation_not_retried(self):
        calls = []

        async def cancelled():
            calls.append(1)
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(fetch_with_retry(cancelled, max_retries=3, sleep=Sleeps()))
        assert calls == [1]


class TestMarketDataCollector:
    """Test the per-venue fan-out"""

    @pytest.fixture
    def collector(self):
        return MarketDataCollector(
            {'bybit': GoodAdapter(), 'binance': BrokenAdapter()},
            FetchConfig(max_retries=1, kline_limit=40),
            rng=random.Random(0),
            sleep=Sleeps(),
        )

    def test_primary_and_secondary(self, collector):
        assert collector.primary == "bybit"
        assert collector.secondary == "binance"

    def test_invalid_setup(self):
        with pytest.raises(ValueError):
            MarketDataCollector({})
        with pytest.raises(ValueError):
            MarketDataCollector({'bybit': GoodAdapter()}, primary="okx")

    def test_failed_venue_does_not_fail_collect(self, collector):
        reports = asyncio.run(collector.collect("BTCUSDT", timeframes=("1m", "5m")))

        good, bad = reports['bybit'], reports['binance']
        assert good.ok
        assert sorted(good.candles) == ["1m", "5m"]
        assert len(good.candles['1m']) == 40
        assert good.last_price == 100.5
        assert good.trades[0].side == "buy"
        assert not good.errors

        assert not bad.ok
        assert set(bad.errors) == {"klines:1m", "klines:5m", "orderbook", "trades", "ticker"}
        assert "venue down" in bad.errors['ticker']
        assert bad.to_dict()['ok'] is False

    def test_feature_input(self, collector):
        reports = asyncio.run(collector.collect("BTCUSDT", timeframes=("1m", "5m")))
        inp = collector.feature_input("BTCUSDT", reports, NOW_MS)

        assert inp.primary_ok
        assert not inp.secondary_ok
        assert inp.secondary == {}
        assert inp.orderbook.mid == pytest.approx(100.25)
        assert inp.quality.score == 85
        assert inp.quality.dq_grade == "A"
        assert "Secondary venue unavailable" in inp.quality.reasons

    def test_missing_report_is_unavailable(self, collector):
        inp = collector.feature_input("BTCUSDT", {'bybit': VenueReport(venue="bybit")}, NOW_MS)

        assert not inp.primary_ok
        assert inp.quality.dq_grade == "D"

    def test_cancellation_propagates(self):
        collector = MarketDataCollector({'bybit': BrokenAdapter(asyncio.CancelledError())}, sleep=Sleeps())

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(collector.collect("BTCUSDT", timeframes=("1m",)))


class TestLiveKlines:
    """Test that the forming kline never reaches triggers or the LTF gate"""

    @pytest.fixture
    def inp(self):
        collector = MarketDataCollector({'bybit': LiveAdapter()}, FetchConfig(max_retries=0), sleep=Sleeps())
        reports = asyncio.run(collector.collect("BTCUSDT", timeframes=("5m", "15m", "1h", "4h", "1d")))
        return collector.feature_input("BTCUSDT", reports, NOW_MS)

    def test_live_bar_flagged(self, inp):
        bars = inp.primary['15m']

        assert not bars[-1].confirm
        assert bars[-1].ts == last_closed_boundary("15m", NOW_MS) + tf_to_ms("15m")
        assert all(c.confirm for c in bars[:-1])

    def test_context_uses_closed_triggers(self, inp):
        features = compute_features(inp)
        ctx = build_context(features, inp.primary, NOW_MS)

        assert ctx.trigger_h1.ts == last_closed_boundary("1h", NOW_MS)
        assert ctx.trigger_m15.ts == last_closed_boundary("15m", NOW_MS)

    def test_engine_gate_ready(self, inp):
        features = compute_features(inp)
        out = SetupEngine(EngineConfig()).evaluate(features, inp.primary, NOW_MS)

        assert out.ltf_gate.state == "READY"
        assert out.ltf_gate.actionable
        assert all(s.entry_trigger.proof is None or s.entry_trigger.proof.ok for s in out.setups)
