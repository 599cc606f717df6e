"""
Setup engine: setup families, builders and ranking.
"""
from .models import (
    SetupState,
    EntryValidity,
    SetupFamily,
    EntryZone,
    EntryTrigger,
    Stop,
    TakeProfit,
    Why,
    Setup,
    SetupContext,
    SetupEngineOutput,
)
from .builders import (
    BUILDERS,
    risk_reward,
    resolve_entry,
    build_trend_pullback,
    build_breakout,
    build_range_mean_reversion,
)
from .engine import SetupEngine, build_context, build_setups, pick_preferred, rank_setups

__all__ = [
    # Models
    'SetupState',
    'EntryValidity',
    'SetupFamily',
    'EntryZone',
    'EntryTrigger',
    'Stop',
    'TakeProfit',
    'Why',
    'Setup',
    'SetupContext',
    'SetupEngineOutput',

    # Builders
    'BUILDERS',
    'risk_reward',
    'resolve_entry',
    'build_trend_pullback',
    'build_breakout',
    'build_range_mean_reversion',

    # Engine
    'SetupEngine',
    'build_context',
    'build_setups',
    'rank_setups',
    'pick_preferred',
]
