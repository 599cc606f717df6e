"""
Tests for Indicator Library

Tests indicator calculations, minimum-length sentinels and period validation.
"""

import math

import numpy as np
import pytest

from signalcore.indicators import (
    adx,
    atr,
    bollinger,
    ema,
    last_value,
    macd,
    rsi,
    sma,
    true_range,
    validate_period,
    value_at,
)


class TestEMA:
    """Test Exponential Moving Average"""

    def test_ema_seed_and_recurrence(self):
        """Test EMA seeds with the SMA and applies k = 2/(n+1)"""
        result = ema([1, 2, 3, 4, 5], 3)

        assert math.isnan(result[0]) and math.isnan(result[1])
        assert result[2] == pytest.approx(2.0)
        assert result[3] == pytest.approx(3.0)
        assert result[4] == pytest.approx(4.0)

    def test_ema_insufficient_history(self):
        """Test EMA returns None below period + 1 values"""
        assert ema([1, 2, 3], 3) is None
        assert ema([], 5) is None

    def test_ema_differs_from_sma(self, random_closes):
        """Test EMA weights recent prices more than SMA"""
        e = ema(random_closes, 20)
        s = sma(random_closes, 20)

        assert not np.allclose(e[-10:], s[-10:])

    def test_ema_deterministic(self, random_closes):
        """Test repeated calls agree and later bars never change earlier values"""
        closes = list(random_closes)
        first = ema(closes, 20)

        np.testing.assert_array_equal(first, ema(closes, 20))
        assert closes == list(random_closes)
        assert ema(closes[:100], 20)[-1] == pytest.approx(first[99])


class TestSMA:
    """Test Simple Moving Average"""

    def test_sma_values(self):
        result = sma([1, 2, 3, 4], 2)

        assert math.isnan(result[0])
        assert list(result[1:]) == pytest.approx([1.5, 2.5, 3.5])

    def test_sma_period_validation(self):
        """Test impossible periods raise"""
        with pytest.raises(ValueError):
            sma([1, 2, 3], 0)
        with pytest.raises(ValueError):
            validate_period(2.5)
        with pytest.raises(ValueError):
            validate_period(True)


class TestRSI:
    """Test Relative Strength Index"""

    def test_rsi_range(self, random_closes):
        """Test RSI stays within 0-100 range"""
        values = rsi(random_closes, 14)
        finite = values[~np.isnan(values)]

        assert len(finite) > 0
        assert finite.min() >= 0
        assert finite.max() <= 100

    def test_rsi_no_losses_is_100(self):
        """Test RSI is 100 when the average loss is zero"""
        assert last_value(rsi(list(range(1, 21)), 14)) == 100.0

    def test_rsi_insufficient_history(self):
        assert rsi(list(range(14)), 14) is None
        assert rsi(list(range(15)), 14) is not None

    def test_rsi_deterministic(self, random_closes):
        """Test repeated calls agree and a prefix reproduces the same values"""
        first = rsi(random_closes, 14)

        np.testing.assert_array_equal(first, rsi(random_closes, 14))
        assert rsi(random_closes[:80], 14)[-1] == pytest.approx(first[79])


class TestMACD:
    """Test MACD"""

    def test_macd_minimum_length(self):
        closes = [100 + math.sin(i / 3) for i in range(40)]

        assert macd(closes[:34]) is None
        assert macd(closes[:35]) is not None

    def test_macd_histogram_is_line_minus_signal(self, random_closes):
        res = macd(random_closes)

        assert last_value(res.histogram) == pytest.approx(last_value(res.line) - last_value(res.signal))

    def test_macd_fast_must_be_faster(self, random_closes):
        with pytest.raises(ValueError):
            macd(random_closes, fast=26, slow=12)


class TestBollinger:
    """Test Bollinger Bands"""

    def test_constant_series_has_zero_width(self):
        bb = bollinger([50.0] * 30, 20, 2.0)

        assert last_value(bb.width) == pytest.approx(0.0, abs=1e-6)
        assert last_value(bb.upper) == pytest.approx(50.0)

    def test_bands_bracket_middle(self, random_closes):
        bb = bollinger(random_closes, 20, 2.0)

        assert last_value(bb.upper) > last_value(bb.middle) > last_value(bb.lower)

    def test_bollinger_insufficient_history(self):
        assert bollinger([1.0] * 19, 20) is None


class TestVolatility:
    """Test True Range, ATR and ADX"""

    def test_true_range_first_bar_undefined(self):
        tr = true_range([11, 12], [9, 10], [10, 11])

        assert math.isnan(tr[0])
        assert tr[1] == pytest.approx(2.0)

    def test_atr_constant_range(self):
        n = 30
        result = atr([11.0] * n, [9.0] * n, [10.0] * n, 14)

        assert last_value(result) == pytest.approx(2.0)
        assert math.isnan(result[13])

    def test_atr_insufficient_history(self):
        assert atr([11.0] * 14, [9.0] * 14, [10.0] * 14, 14) is None

    def test_adx_strong_uptrend(self):
        """Test a clean uptrend saturates ADX with +DI dominating"""
        n = 60
        highs = [101 + i for i in range(n)]
        lows = [99 + i for i in range(n)]
        closes = [100 + i for i in range(n)]
        res = adx(highs, lows, closes, 14)

        assert last_value(res.adx) == pytest.approx(100.0)
        assert last_value(res.plus_di) > last_value(res.minus_di)

    def test_adx_minimum_length(self):
        h = [float(i + 1) for i in range(29)]
        l = [float(i) for i in range(29)]
        c = [i + 0.5 for i in range(29)]

        assert adx(h[:28], l[:28], c[:28], 14) is None
        assert adx(h, l, c, 14) is not None


class TestHelpers:
    """Test series accessors"""

    def test_last_value_hides_nan(self):
        assert last_value(np.array([1.0, np.nan])) is None
        assert last_value(None) is None

    def test_value_at_out_of_range(self):
        assert value_at(np.array([1.0, 2.0]), -5) is None
        assert value_at(np.array([1.0, 2.0]), -2) == 1.0
