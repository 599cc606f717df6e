"""
Tests for the liquidation cache and the venue stream collectors.
"""

import asyncio
import json

import pytest

from signalcore.cache import (
    MIN_WINDOW_S,
    LiquidationAgg,
    LiquidationCache,
    binance_liquidations,
    bybit_liquidations,
    parse_binance_liquidations,
    parse_bybit_liquidations,
)
from signalcore.collector import collect_stream_window


class FakeSocket:
    """Replays queued messages, then blocks like an idle stream."""

    def __init__(self, messages):
        self.queue = list(messages)
        self.sent = []

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def recv(self):
        if self.queue:
            return self.queue.pop(0)
        await asyncio.Event().wait()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeConnect:
    def __init__(self, messages=(), fail=None):
        self.socket = FakeSocket(messages)
        self.fail = fail
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        if self.fail is not None:
            raise self.fail
        return self.socket


class TestAggregation:
    """Test side mapping and parsers"""

    def test_sell_liquidates_longs(self):
        agg = LiquidationAgg(window_s=30)
        agg.add("Sell", 100.0, 2.0)
        agg.add("BUY", 50.0, 1.0)
        agg.add("?", 1.0, 1.0)

        assert agg.long_notional == 200.0
        assert agg.short_notional == 50.0
        assert agg.events == 2
        assert agg.to_dict()['by_side'] == {'LONG': 200.0, 'SHORT': 50.0}

    def test_parse_bybit(self):
        msg = {'topic': "allLiquidation.BTCUSDT",
               'data': [{'S': "Sell", 'p': "100", 'v': "2"}, {'side': "Buy", 'price': 1, 'size': "bad"}]}

        assert parse_bybit_liquidations(msg) == [("SELL", 100.0, 2.0)]
        assert parse_bybit_liquidations({'topic': "tickers.BTCUSDT", 'data': {}}) == []

    def test_parse_binance(self):
        msg = {'e': "forceOrder", 'o': {'S': "BUY", 'p': "25000.5", 'q': "0.2"}}

        assert parse_binance_liquidations(msg) == [("BUY", 25000.5, 0.2)]
        assert parse_binance_liquidations({'e': "other"}) == []


class TestWarmup:
    """Test the cache lifecycle"""

    def test_collects_every_venue(self):
        calls = []

        async def good(symbol, window_s):
            calls.append((symbol, window_s))
            agg = LiquidationAgg(window_s=window_s)
            agg.add("SELL", 10.0, 1.0)
            return agg

        async def bad(symbol, window_s):
            raise ConnectionError("refused")

        cache = LiquidationCache(clock=lambda: 1_234)
        snap = asyncio.run(cache.warmup("btcusdt", {'bybit': good, 'binance': bad}, window_s=5))

        assert calls == [("BTCUSDT", MIN_WINDOW_S)]
        assert snap.venues['binance'] is None
        assert snap.venues['bybit'].long_notional == 10.0
        assert snap.updated_at == 1_234
        assert cache.get() is snap
        assert cache.meta() == {'running': False, 'symbol': "BTCUSDT", 'updated_at': 1_234, 'window_s': 30.0}

    def test_empty_symbol_returns_last(self):
        cache = LiquidationCache()
        snap = asyncio.run(cache.warmup("  ", {}))

        assert snap.updated_at is None

    def test_concurrent_warmup_same_symbol(self):
        started = []

        async def slow(symbol, window_s):
            started.append(symbol)
            await asyncio.sleep(0.01)
            return LiquidationAgg(window_s=window_s)

        async def run():
            cache = LiquidationCache(clock=lambda: 1)
            first = asyncio.ensure_future(cache.warmup("ETHUSDT", {'bybit': slow}))
            await asyncio.sleep(0)
            second = await cache.warmup("ETHUSDT", {'bybit': slow})
            return second, await first

        second, first = asyncio.run(run())

        assert started == ["ETHUSDT"]
        assert second.updated_at is None
        assert first.updated_at == 1

    def test_cancellation_propagates(self):
        async def cancelled(symbol, window_s):
            raise asyncio.CancelledError()

        cache = LiquidationCache()
        with pytest.raises(asyncio.CancelledError):
            asyncio.run(cache.warmup("BTCUSDT", {'bybit': cancelled}))
        assert cache.meta()['running'] is False

    def test_clear(self):
        async def good(symbol, window_s):
            return LiquidationAgg(window_s=window_s)

        cache = LiquidationCache(clock=lambda: 5)
        asyncio.run(cache.warmup("BTCUSDT", {'bybit': good}))
        cache.clear()

        assert cache.get().venues == {}
        assert cache.meta()['symbol'] is None


class TestStreams:
    """Test listen-then-close websocket collection"""

    def test_stream_window_parses_json(self):
        connect = FakeConnect([json.dumps({'n': 1}), "not json", json.dumps({'n': 2})])
        window = asyncio.run(collect_stream_window(
            "wss://example", 0.05, lambda m: [m['n']], subscribe={'op': "subscribe"}, connect=connect,
        ))

        assert window.opened
        assert window.messages == 3
        assert window.items == [1, 2]
        assert connect.socket.sent == [{'op': "subscribe"}]

    def test_connection_failure_recorded(self):
        window = asyncio.run(collect_stream_window(
            "wss://example", 0.05, lambda m: [], connect=FakeConnect(fail=OSError("unreachable")),
        ))

        assert not window.opened
        assert "unreachable" in window.error

    def test_bybit_collector(self):
        msg = {'topic': "allLiquidation.BTCUSDT", 'data': [{'S': "Sell", 'p': "100", 'v': "3"}]}
        connect = FakeConnect([json.dumps(msg)])
        agg = asyncio.run(bybit_liquidations(connect)("btcusdt", 0.05))

        assert agg.long_notional == 300.0
        assert connect.socket.sent == [{'op': "subscribe", 'args': ["allLiquidation.BTCUSDT"]}]

    def test_binance_collector_url(self):
        connect = FakeConnect([json.dumps({'o': {'S': "BUY", 'p': "10", 'q': "2"}})])
        agg = asyncio.run(binance_liquidations(connect)("BTCUSDT", 0.05))

        assert agg.short_notional == 20.0
        assert connect.urls == ["wss://fstream.binance.com/ws/btcusdt@forceOrder"]

    def test_unreachable_venue_raises(self):
        collector = binance_liquidations(FakeConnect(fail=OSError("down")))

        with pytest.raises(ConnectionError):
            asyncio.run(collector("BTCUSDT", 0.05))
