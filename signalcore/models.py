"""
Market Data Models
==================

Plain dataclasses for the raw inputs (candles, trades, order books) and for
the derived structures published in a FeaturesSnapshot. Every published
type has a ``to_dict()`` so the presentation layer receives JSON-ready
structures.
"""

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# RAW INPUTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Candle:
    """One OHLCV bar. ``ts`` is the bar open time in epoch milliseconds."""
    ts: int
    o: float
    h: float
    l: float
    c: float
    v: float = 0.0
    confirm: bool = True   # False while the bar is still forming

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'Candle':
        """Accepts both ``{ts,o,h,l,c,v}`` and ``{ts,open,high,low,close,volume}``."""
        try:
            return cls(
                ts=int(raw['ts']),
                o=float(raw['o'] if 'o' in raw else raw['open']),
                h=float(raw['h'] if 'h' in raw else raw['high']),
                l=float(raw['l'] if 'l' in raw else raw['low']),
                c=float(raw['c'] if 'c' in raw else raw['close']),
                v=float(raw.get('v', raw.get('volume', 0.0)) or 0.0),
                confirm=bool(raw.get('confirm', True)),
            )
        except KeyError as e:
            raise ValueError(f"Candle missing field {e}: {raw}") from e

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Trade:
    ts: int
    p: float
    q: float
    side: str   # "buy" or "sell"

    def __post_init__(self):
        self.side = str(self.side).lower()
        if self.side not in ("buy", "sell"):
            raise ValueError(f"Trade side must be buy or sell, got {self.side!r}")

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'Trade':
        """Accepts adapter shape ``{ts, px, qty, side}`` as well as ``{ts, p, q, side}``."""
        try:
            return cls(
                ts=int(raw['ts']),
                p=float(raw['p'] if 'p' in raw else raw['px']),
                q=float(raw['q'] if 'q' in raw else raw['qty']),
                side=raw['side'],
            )
        except KeyError as e:
            raise ValueError(f"Trade missing field {e}: {raw}") from e


@dataclass
class Orderbook:
    """Book snapshot; bids sorted descending by price, asks ascending."""
    ts: int
    bids: List[Tuple[float, float]] = field(default_factory=list)
    asks: List[Tuple[float, float]] = field(default_factory=list)
    depth: Optional[int] = None

    def __post_init__(self):
        self.bids = [(float(p), float(s)) for p, s in self.bids]
        self.asks = [(float(p), float(s)) for p, s in self.asks]
        if any(self.bids[i][0] < self.bids[i + 1][0] for i in range(len(self.bids) - 1)):
            raise ValueError("Orderbook bids must be sorted descending by price")
        if any(self.asks[i][0] > self.asks[i + 1][0] for i in range(len(self.asks) - 1)):
            raise ValueError("Orderbook asks must be sorted ascending by price")
        if self.depth is None:
            self.depth = max(len(self.bids), len(self.asks))

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'Orderbook':
        return cls(
            ts=int(raw.get('ts', 0)),
            bids=raw.get('bids') or [],
            asks=raw.get('asks') or [],
            depth=raw.get('depth'),
        )

    @property
    def mid(self) -> Optional[float]:
        if not self.bids or not self.asks:
            return None
        return (self.bids[0][0] + self.asks[0][0]) / 2


def validate_series(candles: Sequence[Candle]) -> None:
    """
    Check OHLC invariants and strictly increasing timestamps.

    Raises:
        ValueError: on the first violating bar. A broken series is an
            adapter bug, not a data-completeness condition.
    """
    prev_ts = None
    for i, c in enumerate(candles):
        if c.h < max(c.o, c.c) or c.l > min(c.o, c.c):
            raise ValueError(f"Candle {i} (ts={c.ts}) violates OHLC bounds: {c}")
        if prev_ts is not None and c.ts <= prev_ts:
            raise ValueError(f"Candle {i} ts={c.ts} not after previous ts={prev_ts}")
        prev_ts = c.ts


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Candle list to an OHLCV DataFrame (columns: time, open, high, low, close, volume, confirm)."""
    return pd.DataFrame({
        'time': [c.ts for c in candles],
        'open': [c.o for c in candles],
        'high': [c.h for c in candles],
        'low': [c.l for c in candles],
        'close': [c.c for c in candles],
        'volume': [c.v for c in candles],
        'confirm': [c.confirm for c in candles],
    })


# ═══════════════════════════════════════════════════════════════════════════
# MARKET STRUCTURE
# ═══════════════════════════════════════════════════════════════════════════

class SwingType(str, Enum):
    HIGH = "HIGH"
    LOW = "LOW"


class Direction(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class StructureKind(str, Enum):
    BOS = "BOS"
    CHOCH = "CHOCH"


class Trend(str, Enum):
    BULL = "BULL"
    BEAR = "BEAR"
    RANGE = "RANGE"
    UNKNOWN = "UNKNOWN"


@dataclass
class SwingPoint:
    type: SwingType
    ts: int
    price: float
    strength: int   # pivot half-width that confirmed it
    index: int = -1

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type.value, 'ts': self.ts, 'price': self.price, 'strength': self.strength}


@dataclass
class StructureEvent:
    kind: StructureKind
    dir: Direction
    tf: str
    ts: int
    level: float
    close: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value, 'dir': self.dir.value, 'tf': self.tf,
            'ts': self.ts, 'level': self.level, 'close': self.close,
        }


@dataclass
class SweepEvent:
    dir: Direction
    tf: str
    ts: int
    level: float
    high: float
    low: float
    close: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dir': self.dir.value, 'tf': self.tf, 'ts': self.ts, 'level': self.level,
            'high': self.high, 'low': self.low, 'close': self.close,
        }


@dataclass
class MarketStructureTF:
    tf: str
    trend: Trend = Trend.UNKNOWN
    confirmed_count: int = 0
    last_swing_high: Optional[SwingPoint] = None
    last_swing_low: Optional[SwingPoint] = None
    recent_swings: List[SwingPoint] = field(default_factory=list)
    last_bos: Optional[StructureEvent] = None
    last_choch: Optional[StructureEvent] = None
    last_sweep: Optional[SweepEvent] = None
    bos_up: bool = False
    bos_down: bool = False
    choch_up: bool = False
    choch_down: bool = False
    sweep_up: bool = False
    sweep_down: bool = False

    def to_dict(self) -> Dict[str, Any]:
        def opt(x):
            return x.to_dict() if x is not None else None

        return {
            'tf': self.tf,
            'trend': self.trend.value,
            'confirmed_count': self.confirmed_count,
            'last_swing_high': opt(self.last_swing_high),
            'last_swing_low': opt(self.last_swing_low),
            'recent_swings': [s.to_dict() for s in self.recent_swings],
            'last_bos': opt(self.last_bos),
            'last_choch': opt(self.last_choch),
            'last_sweep': opt(self.last_sweep),
            'flags': {
                'bos_up': self.bos_up, 'bos_down': self.bos_down,
                'choch_up': self.choch_up, 'choch_down': self.choch_down,
                'sweep_up': self.sweep_up, 'sweep_down': self.sweep_down,
            },
        }


# ═══════════════════════════════════════════════════════════════════════════
# FEATURE SNAPSHOT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class BiasTfSnapshot:
    """Per-timeframe bias. Trend fields stay None ("pending") until complete."""
    tf: str
    have: int
    need: int
    complete: bool = False
    trend_dir: Optional[str] = None        # "bull" | "bear" | "sideways"
    trend_strength: Optional[float] = None
    vol_regime: Optional[str] = None       # "low" | "normal" | "high"
    adx14: Optional[float] = None
    ema200: Optional[float] = None
    ema200_slope_bps: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LeadLag:
    leader: str      # "primary" | "secondary" | "none"
    lag_bars: int
    score: float
    corr: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DeltaStats:
    buy_qty: float = 0.0
    sell_qty: float = 0.0
    delta_qty: float = 0.0
    delta_norm: float = 0.0
    cvd: float = 0.0
    divergence_score: float = 0.0
    divergence_dir: str = "none"
    absorption_score: float = 0.0
    absorption_dir: str = "none"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Quality:
    dq_grade: str = "D"
    score: int = 0
    primary_ok: bool = False
    secondary_ok: bool = False
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FeaturesSnapshot:
    canon: str
    ts: int
    quality: Quality = field(default_factory=Quality)
    bias: Dict[str, Any] = field(default_factory=dict)
    bias_by_tf: Dict[str, BiasTfSnapshot] = field(default_factory=dict)
    entry: Dict[str, Any] = field(default_factory=dict)
    orderflow: Dict[str, Any] = field(default_factory=dict)
    cross: Dict[str, Any] = field(default_factory=dict)
    market_structure: Dict[str, MarketStructureTF] = field(default_factory=dict)
    partial: bool = False
    notes: List[str] = field(default_factory=list)

    def note(self, message: str) -> None:
        """Record a missing input; the snapshot becomes partial."""
        self.partial = True
        if message not in self.notes:
            self.notes.append(message)

    def to_dict(self) -> Dict[str, Any]:
        orderflow = dict(self.orderflow)
        if isinstance(orderflow.get('delta'), DeltaStats):
            orderflow['delta'] = orderflow['delta'].to_dict()
        cross = dict(self.cross)
        if isinstance(cross.get('lead_lag'), LeadLag):
            cross['lead_lag'] = cross['lead_lag'].to_dict()
        return {
            'canon': self.canon,
            'ts': self.ts,
            'quality': self.quality.to_dict(),
            'bias': dict(self.bias),
            'bias_by_tf': {tf: b.to_dict() for tf, b in self.bias_by_tf.items()},
            'entry': self.entry,
            'orderflow': orderflow,
            'cross': cross,
            'market_structure': {tf: ms.to_dict() for tf, ms in self.market_structure.items()},
            'flags': {'partial': self.partial, 'notes': list(self.notes)},
        }
