"""
Tests for raw input models and snapshot serialization.
"""

import pytest

from signalcore.models import (
    Candle,
    DeltaStats,
    FeaturesSnapshot,
    LeadLag,
    Orderbook,
    Trade,
    candles_to_frame,
    validate_series,
)


class TestCandle:
    """Test candle parsing"""

    def test_from_dict_both_shapes(self):
        short = Candle.from_dict({'ts': 1, 'o': 1, 'h': 2, 'l': 0.5, 'c': 1.5, 'v': 3})
        long = Candle.from_dict({'ts': 1, 'open': 1, 'high': 2, 'low': 0.5, 'close': 1.5, 'volume': 3})

        assert short == long
        assert short.confirm is True

    def test_from_dict_missing_field(self):
        with pytest.raises(ValueError):
            Candle.from_dict({'ts': 1, 'o': 1, 'h': 2})

    def test_validate_series(self):
        good = [Candle(1, 1, 2, 0.5, 1.5), Candle(2, 1.5, 2, 1, 1.8)]
        validate_series(good)

        with pytest.raises(ValueError):
            validate_series([Candle(1, 1, 1.2, 0.5, 1.5)])       # high below close
        with pytest.raises(ValueError):
            validate_series([good[1], good[0]])                   # ts not increasing

    def test_candles_to_frame(self):
        frame = candles_to_frame([Candle(1, 1, 2, 0.5, 1.5, 10)])

        assert list(frame.columns[:6]) == ['time', 'open', 'high', 'low', 'close', 'volume']
        assert frame['close'].iloc[0] == 1.5


class TestTradeAndBook:
    """Test trade and order book validation"""

    def test_trade_side_normalized(self):
        trade = Trade.from_dict({'ts': 1, 'px': 100, 'qty': 2, 'side': 'Buy'})

        assert trade.side == "buy"
        assert trade.p == 100.0

    def test_trade_bad_side(self):
        with pytest.raises(ValueError):
            Trade(ts=1, p=1, q=1, side="hold")

    def test_orderbook_sorting_enforced(self):
        with pytest.raises(ValueError):
            Orderbook(ts=1, bids=[(99, 1), (100, 1)], asks=[(101, 1)])
        with pytest.raises(ValueError):
            Orderbook(ts=1, bids=[(100, 1)], asks=[(102, 1), (101, 1)])

    def test_orderbook_mid_and_depth(self):
        book = Orderbook.from_dict({'ts': 5, 'bids': [[100, 1], [99, 2]], 'asks': [[102, 1]]})

        assert book.mid == 101.0
        assert book.depth == 2


class TestFeaturesSnapshot:
    """Test snapshot flags and serialization"""

    def test_note_sets_partial_once(self):
        snap = FeaturesSnapshot(canon="BTCUSDT", ts=0)
        snap.note("Missing primary candles: 4h")
        snap.note("Missing primary candles: 4h")

        assert snap.partial
        assert snap.notes == ["Missing primary candles: 4h"]

    def test_to_dict_serializes_nested_types(self):
        snap = FeaturesSnapshot(canon="BTCUSDT", ts=0)
        snap.orderflow = {'delta': DeltaStats(buy_qty=1.0)}
        snap.cross = {'lead_lag': LeadLag("none", 0, 0.5, 0.0)}
        d = snap.to_dict()

        assert d['orderflow']['delta']['buy_qty'] == 1.0
        assert d['cross']['lead_lag']['leader'] == "none"
        assert d['flags'] == {'partial': False, 'notes': []}
