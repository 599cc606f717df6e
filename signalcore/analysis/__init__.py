"""
Market analysis modules: structure, cross-exchange consensus, order flow,
data quality and key levels.
"""
from .structure import detect_swings, detect_sweep, compute_market_structure_tf, compute_market_structure
from .cross_exchange import (
    deviation_bps,
    deviation_series,
    deviation_z,
    lead_lag,
    consensus_score,
    smoothstep,
)
from .order_flow import (
    orderbook_imbalance,
    imbalance_by_depth,
    aggression_ratio,
    cvd_series,
    trade_delta,
    order_flow_features,
)
from .quality import VenueHealth, grade_venues, venue_health, grade_from_score, is_dq_ok
from .levels import KeyLevels, previous_day_levels

__all__ = [
    # Market structure
    'detect_swings',
    'detect_sweep',
    'compute_market_structure_tf',
    'compute_market_structure',

    # Cross-exchange
    'deviation_bps',
    'deviation_series',
    'deviation_z',
    'lead_lag',
    'consensus_score',
    'smoothstep',

    # Order flow
    'orderbook_imbalance',
    'imbalance_by_depth',
    'aggression_ratio',
    'cvd_series',
    'trade_delta',
    'order_flow_features',

    # Data quality
    'VenueHealth',
    'grade_venues',
    'venue_health',
    'grade_from_score',
    'is_dq_ok',

    # Levels
    'KeyLevels',
    'previous_day_levels',
]
