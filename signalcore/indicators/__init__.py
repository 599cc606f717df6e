"""
Indicator library: pure numeric transforms over price arrays.
"""
from .base import validate_period, as_array, last_value, value_at
from .moving_averages import ema, sma, rolling_std, bollinger, BollingerResult
from .oscillators import rsi, macd, MacdResult
from .volatility import true_range, atr, adx, AdxResult

__all__ = [
    # Helpers
    'validate_period',
    'as_array',
    'last_value',
    'value_at',

    # Moving averages
    'ema',
    'sma',
    'rolling_std',
    'bollinger',
    'BollingerResult',

    # Oscillators
    'rsi',
    'macd',
    'MacdResult',

    # Volatility / trend strength
    'true_range',
    'atr',
    'adx',
    'AdxResult',
]
