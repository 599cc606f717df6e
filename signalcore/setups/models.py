"""
Setup Data Structures

States, validity codes, the shared Setup shape every family fills in, the
builder context and the engine output.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..analysis.levels import KeyLevels
from ..closed_candle import ClosedCandleProof
from ..ltf_gate import LtfGateResult
from ..models import Candle


class SetupState(str, Enum):
    BUILD_UP = "BUILD-UP"
    ALMOST_READY = "ALMOST_READY"
    READY = "READY"
    TRIGGERED = "TRIGGERED"
    INVALID = "INVALID"
    EXPIRED = "EXPIRED"

    @property
    def terminal(self) -> bool:
        return self in (SetupState.INVALID, SetupState.EXPIRED)


class EntryValidity(str, Enum):
    ENTRY_OK = "ENTRY_OK"
    ENTRY_WAIT = "ENTRY_WAIT"
    ENTRY_OFF = "ENTRY_OFF"


class SetupFamily(str, Enum):
    TREND_PULLBACK = "trend_pullback"
    BREAKOUT = "breakout"
    RANGE_MEAN_REVERSION = "range_mean_reversion"


# Wait reasons
MISSING_FIELD = "MISSING_FIELD"
OTHER = "OTHER"

# Blockers
RR_BLOCKER = "RR(TP1)<{floor:g}"
INVALID_RISK_BLOCKER = "INVALID_RISK (SL wrong side)"
NOT_IN_ZONE_BLOCKER = "PRICE_NOT_IN_ENTRY_ZONE"
DQ_BLOCKER = "DQ_NOT_OK"


@dataclass
class EntryZone:
    low: float
    high: float
    source_paths: List[str] = field(default_factory=list)
    note: str = ""

    @property
    def mid(self) -> float:
        return (self.low + self.high) / 2

    def contains(self, price: float) -> bool:
        return self.low <= price <= self.high

    def to_dict(self) -> Dict[str, Any]:
        return {'low': self.low, 'high': self.high, 'source_paths': list(self.source_paths), 'note': self.note}


@dataclass
class EntryTrigger:
    type: str = ""
    timeframe: str = ""
    candle: Optional[Candle] = None
    proof: Optional[ClosedCandleProof] = None
    status: str = "UNCONFIRMED"   # "CONFIRMED" once the closed candle qualifies
    notes: str = ""

    @property
    def confirmed(self) -> bool:
        return self.status == "CONFIRMED"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'timeframe': self.timeframe,
            'candle': self.candle.to_dict() if self.candle else None,
            'proof': self.proof.to_dict() if self.proof else None,
            'status': self.status,
            'notes': self.notes,
        }


@dataclass
class Stop:
    price: Optional[float] = None
    rule: str = ""
    source_paths: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'price': self.price, 'rule': self.rule, 'source_paths': list(self.source_paths)}


@dataclass
class TakeProfit:
    price: Optional[float] = None
    rr: Optional[float] = None
    source_paths: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'price': self.price, 'RR': self.rr, 'source_paths': list(self.source_paths)}


@dataclass
class Why:
    bullets: List[str] = field(default_factory=list)
    paths: List[str] = field(default_factory=list)
    missing_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'bullets': list(self.bullets), 'paths': list(self.paths), 'missing_fields': list(self.missing_fields)}


@dataclass
class Setup:
    """One candidate trade setup. Builders start from the BUILD-UP / ENTRY_WAIT template."""
    title: str
    family: SetupFamily
    symbol: str
    direction: str = "LONG"
    state: SetupState = SetupState.BUILD_UP
    entry_validity: EntryValidity = EntryValidity.ENTRY_WAIT
    entry_blocker: str = ""
    wait_reason: str = ""
    wait_source_path: str = ""
    confidence: int = 0
    entry_zone: Optional[EntryZone] = None
    entry_trigger: EntryTrigger = field(default_factory=EntryTrigger)
    stop: Stop = field(default_factory=Stop)
    take_profit: List[TakeProfit] = field(default_factory=lambda: [TakeProfit()])
    why: Why = field(default_factory=Why)

    @property
    def id(self) -> str:
        """Canonical id: stable across ticks for the same symbol, family and direction."""
        return f"{self.symbol}:{self.family.value}:{self.direction}"

    @property
    def tp1(self) -> TakeProfit:
        return self.take_profit[0]

    def wait(self, reason: str, source_path: str, blocker: str) -> 'Setup':
        self.entry_validity = EntryValidity.ENTRY_WAIT
        self.wait_reason = reason
        self.wait_source_path = source_path
        self.entry_blocker = blocker
        return self

    def off(self, blocker: str) -> 'Setup':
        self.entry_validity = EntryValidity.ENTRY_OFF
        self.entry_blocker = blocker
        return self

    def missing(self, path: str) -> None:
        entry = f"MISSING FIELD: {path}"
        if entry not in self.why.missing_fields:
            self.why.missing_fields.append(entry)

    def because(self, bullet: str, path: Optional[str] = None) -> None:
        self.why.bullets.append(bullet)
        if path and path not in self.why.paths:
            self.why.paths.append(path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'family': self.family.value,
            'symbol': self.symbol,
            'direction': self.direction,
            'state': self.state.value,
            'entry_validity': self.entry_validity.value,
            'entry_blocker': self.entry_blocker,
            'wait_reason': self.wait_reason,
            'wait_source_path': self.wait_source_path,
            'confidence': self.confidence,
            'entry_zone': self.entry_zone.to_dict() if self.entry_zone else None,
            'entry_trigger': self.entry_trigger.to_dict(),
            'stop': self.stop.to_dict(),
            'take_profit': [tp.to_dict() for tp in self.take_profit],
            'why': self.why.to_dict(),
        }


@dataclass
class SetupContext:
    """
    Raw inputs the builders read besides the FeaturesSnapshot.

    Every field may be None; builders record the missing ones instead of
    failing.
    """
    symbol: str
    now_ms: int
    last_price: Optional[float] = None
    atr_h1: Optional[float] = None
    htf_trend: Optional[str] = None        # "bull" | "bear" | "sideways"
    htf_trend_path: str = "bias_by_tf[4h].trend_dir"
    ema20_h4: Optional[float] = None
    ema50_h4: Optional[float] = None
    trigger_h1: Optional[Candle] = None
    trigger_m15: Optional[Candle] = None
    key_levels: KeyLevels = field(default_factory=KeyLevels)
    ltf_gate: Optional[LtfGateResult] = None


@dataclass
class SetupEngineOutput:
    ts: int
    symbol: str
    setups: List[Setup] = field(default_factory=list)
    preferred_id: Optional[str] = None
    dq_ok: bool = False
    ltf_gate: Optional[LtfGateResult] = None

    @property
    def preferred(self) -> Optional[Setup]:
        return next((s for s in self.setups if s.id == self.preferred_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ts': self.ts,
            'symbol': self.symbol,
            'setups': [s.to_dict() for s in self.setups],
            'preferred_id': self.preferred_id,
            'dq_ok': self.dq_ok,
            'ltf_gate': self.ltf_gate.to_dict() if self.ltf_gate else None,
        }
