"""
Engine Configuration
====================

Frozen configuration dataclasses for every engine stage, plus a loader for
``config.yaml``. Omitted keys keep their defaults; unknown keys and
impossible values raise ``ValueError`` immediately since they indicate a
broken deployment rather than a data condition.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / 'config.yaml'


@dataclass(frozen=True)
class FeatureConfig:
    bias_primary_tf: str = "1h"
    bias_fallback_tf: str = "4h"
    bias_min_bars: int = 220
    bias_tfs: Tuple[str, ...] = ("15m", "1h", "4h", "1d")
    adx_min_bars: int = 60
    adx_trending: float = 18.0
    ema_slope_bars: int = 5
    vol_low_pct: float = 0.4
    vol_high_pct: float = 1.0
    entry_tfs: Tuple[str, ...] = ("5m", "15m")
    volatility_tfs: Tuple[str, ...] = ("5m", "15m", "1h", "4h")
    structure_tfs: Tuple[str, ...] = ("15m", "1h", "4h")
    imbalance_depths: Tuple[int, ...] = (10, 50, 200)

    def __post_init__(self):
        if self.bias_min_bars < 1:
            raise ValueError("bias_min_bars must be >= 1")
        if self.adx_trending < 0:
            raise ValueError("adx_trending must be >= 0")
        if not 0 < self.vol_low_pct < self.vol_high_pct:
            raise ValueError("vol thresholds must satisfy 0 < vol_low_pct < vol_high_pct")
        if any(d < 1 for d in self.imbalance_depths):
            raise ValueError("imbalance_depths must all be >= 1")


@dataclass(frozen=True)
class StructureConfig:
    left: int = 2
    right: int = 2
    swings_cap: int = 20
    sweep_lookback: int = 3

    def __post_init__(self):
        if self.left < 1 or self.right < 1:
            raise ValueError("pivot window sides must be >= 1")
        if self.swings_cap < 1:
            raise ValueError("swings_cap must be >= 1")
        if self.sweep_lookback < 1:
            raise ValueError("sweep_lookback must be >= 1")


@dataclass(frozen=True)
class CrossConfig:
    window: int = 120
    min_samples: int = 30
    max_lag: int = 3
    leader_min_corr: float = 0.15

    def __post_init__(self):
        if self.min_samples < 2 or self.window < self.min_samples:
            raise ValueError("window must be >= min_samples >= 2")
        if self.max_lag < 0:
            raise ValueError("max_lag must be >= 0")


@dataclass(frozen=True)
class SetupConfig:
    rr_floor: float = 1.5
    pullback_stop_atr: float = 0.25
    breakout_zone_atr: float = 0.35
    breakout_accept_atr: float = 0.1
    breakout_tp_atr: float = 2.0
    range_zone_atr: float = 0.35
    range_stop_atr: float = 0.25
    expiry_bars: int = 6
    trigger_tf: str = "1h"
    ltf_tf: str = "15m"

    def __post_init__(self):
        if self.rr_floor <= 0:
            raise ValueError("rr_floor must be > 0")
        if self.expiry_bars < 1:
            raise ValueError("expiry_bars must be >= 1")


@dataclass(frozen=True)
class FetchConfig:
    timeout_s: float = 12.0
    max_retries: int = 2
    base_delay_s: float = 0.3
    max_delay_s: float = 5.0
    kline_limit: int = 300
    orderbook_depth: int = 200
    trades_limit: int = 500
    timeframes: Tuple[str, ...] = ("1m", "5m", "15m", "1h", "4h", "1d")

    def __post_init__(self):
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")


@dataclass(frozen=True)
class ScanConfig:
    settle_ms: int = 2500
    dwell_ms: int = 18000
    max_found: int = 20

    def __post_init__(self):
        if self.settle_ms < 0 or self.dwell_ms < 0:
            raise ValueError("settle_ms and dwell_ms must be >= 0")
        if self.max_found < 1:
            raise ValueError("max_found must be >= 1")


@dataclass(frozen=True)
class LiquidationConfig:
    window_s: float = 30.0

    def __post_init__(self):
        if self.window_s <= 0:
            raise ValueError("window_s must be > 0")


@dataclass(frozen=True)
class EngineConfig:
    """Aggregate configuration handed to the pipeline."""
    features: FeatureConfig = field(default_factory=FeatureConfig)
    structure: StructureConfig = field(default_factory=StructureConfig)
    cross: CrossConfig = field(default_factory=CrossConfig)
    setups: SetupConfig = field(default_factory=SetupConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    liquidations: LiquidationConfig = field(default_factory=LiquidationConfig)


def _build_section(cls, raw: Optional[Dict[str, Any]]):
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"Config section for {cls.__name__} must be a mapping, got {type(raw).__name__}")

    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown keys for {cls.__name__}: {sorted(unknown)}")

    # YAML lists arrive as lists; the dataclasses hold tuples
    values = {k: tuple(v) if isinstance(v, list) else v for k, v in raw.items()}
    return cls(**values)


def config_from_dict(raw: Optional[Dict[str, Any]]) -> EngineConfig:
    """
    Build an EngineConfig from a plain mapping.

    Args:
        raw: Mapping with optional sections (features, structure, cross, ...)

    Returns:
        Validated EngineConfig

    Raises:
        ValueError: on unknown sections/keys or invalid values
    """
    raw = raw or {}
    sections = {f.name: f for f in fields(EngineConfig)}
    unknown = set(raw) - set(sections)
    if unknown:
        raise ValueError(f"Unknown config sections: {sorted(unknown)}")

    kwargs = {}
    for name, f in sections.items():
        if name in raw:
            kwargs[name] = _build_section(f.default_factory, raw[name])
    return EngineConfig(**kwargs)


def load_config(path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """Load config.yaml (or an explicit path). Missing file means defaults."""
    path = Path(path) if path is not None else CONFIG_PATH
    if not path.exists():
        logger.info(f"No config file at {path}, using defaults")
        return EngineConfig()

    with open(path) as f:
        raw = yaml.safe_load(f)

    config = config_from_dict(raw)
    logger.info(f"Loaded engine config from {path}")
    return config
