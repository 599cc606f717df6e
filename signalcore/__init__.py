"""
signalcore: multi-timeframe, multi-venue crypto signal engine.

Raw candles, order books and trades go in; a FeaturesSnapshot and a ranked,
gated list of trade setups come out.
"""
from .config import EngineConfig, load_config
from .models import Candle, Trade, Orderbook, FeaturesSnapshot
from .closed_candle import ClosedCandleProof, check_closed, tf_to_ms, last_closed_boundary
from .features import FeatureEngine, FeatureInput, compute_features
from .ltf_gate import LtfGateResult, evaluate_ltf_gate, gate_from_candles
from .setups import SetupEngine, SetupEngineOutput, build_context, build_setups

__version__ = "0.1.0"

__all__ = [
    'EngineConfig',
    'load_config',
    'Candle',
    'Trade',
    'Orderbook',
    'FeaturesSnapshot',
    'ClosedCandleProof',
    'check_closed',
    'tf_to_ms',
    'last_closed_boundary',
    'FeatureEngine',
    'FeatureInput',
    'compute_features',
    'LtfGateResult',
    'evaluate_ltf_gate',
    'gate_from_candles',
    'SetupEngine',
    'SetupEngineOutput',
    'build_context',
    'build_setups',
]
