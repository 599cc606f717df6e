"""
Scan Loop
=========

Time-slices the engine across a liquidity-ranked symbol universe, one active
symbol at a time.

Every symbol goes through two phases after it becomes active:

    SETTLING  fresh data is not trusted yet (``settle_ms``)
    DWELLING  evaluations are recorded until ``dwell_ms`` elapses, then the
              cursor advances to the next symbol

``PAUSED`` freezes recording and rotation; ``IDLE`` means the universe is
empty. The loop is advanced only by ``tick(now_ms, evaluation)`` from a single
scheduler, so its state is never touched concurrently.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set

from .config import ScanConfig
from .setups.models import SetupEngineOutput

logger = logging.getLogger(__name__)

# Rotation never happens faster than this
MIN_DWELL_MS = 5_000


class ScanState(str, Enum):
    IDLE = "IDLE"
    SETTLING = "SETTLING"
    DWELLING = "DWELLING"
    PAUSED = "PAUSED"


@dataclass
class ScanPhase:
    symbol: str
    settle_until: int
    dwell_until: int


@dataclass
class ScanFound:
    key: str                  # "{symbol}::{setup_id}"
    symbol: str
    found_ts: int
    setup_id: str
    state: str
    confidence: int
    title: str
    output: Optional[SetupEngineOutput] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'symbol': self.symbol,
            'found_ts': self.found_ts,
            'setup_id': self.setup_id,
            'state': self.state,
            'confidence': self.confidence,
            'title': self.title,
        }


class ScanLoop:
    """
    Symbol-rotation state machine.

    Example:
        loop = ScanLoop(["BTCUSDT", "ETHUSDT"])
        loop.tick(now_ms)                      # starts settling BTCUSDT
        loop.tick(now_ms + 3_000, output)      # dwelling: output recorded
    """

    def __init__(self, symbols: Sequence[str] = (), config: Optional[ScanConfig] = None):
        self.config = config or ScanConfig()
        self.settle_ms = max(0, self.config.settle_ms)
        self.dwell_ms = max(MIN_DWELL_MS, self.config.dwell_ms)

        self.symbols: List[str] = list(symbols)
        self.cursor = 0
        self.paused = False
        self.phase: Optional[ScanPhase] = None
        self.found: List[ScanFound] = []
        self.seen: Set[str] = set()
        self._state = ScanState.IDLE

    # ═══════════════════════════════════════════════════════════════════════
    # CONTROL
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def active_symbol(self) -> Optional[str]:
        if not self.symbols:
            return None
        return self.symbols[min(self.cursor, len(self.symbols) - 1)]

    def set_symbols(self, symbols: Sequence[str]) -> None:
        """Replace the universe; the cursor wraps to 0 when it falls off the end."""
        self.symbols = list(symbols)
        if self.cursor >= len(self.symbols):
            self.cursor = 0
        logger.info(f"Scan universe updated: {len(self.symbols)} symbols")

    def pause(self) -> None:
        self.paused = True
        self._state = ScanState.PAUSED
        logger.info(f"Scan paused on {self.active_symbol}")

    def resume(self) -> None:
        self.paused = False
        logger.info(f"Scan resumed on {self.active_symbol}")

    def select(self, key: str) -> Optional[ScanFound]:
        return next((f for f in self.found if f.key == key), None)

    # ═══════════════════════════════════════════════════════════════════════
    # TICK
    # ═══════════════════════════════════════════════════════════════════════

    def _start_phase(self, symbol: str, now_ms: int) -> None:
        self.phase = ScanPhase(
            symbol=symbol,
            settle_until=now_ms + self.settle_ms,
            dwell_until=now_ms + self.settle_ms + self.dwell_ms,
        )
        logger.debug(f"Scan phase started for {symbol} at {now_ms}")

    def _record(self, symbol: str, output: SetupEngineOutput, now_ms: int) -> Optional[ScanFound]:
        if output.symbol != symbol:
            return None
        setup = output.preferred
        if setup is None:
            return None

        key = f"{symbol}::{setup.id}"
        if key in self.seen:
            return None
        self.seen.add(key)

        if len(self.found) >= self.config.max_found:
            return None

        item = ScanFound(
            key=key,
            symbol=symbol,
            found_ts=now_ms,
            setup_id=setup.id,
            state=setup.state.value,
            confidence=setup.confidence,
            title=setup.title,
            output=output,
        )
        self.found.insert(0, item)
        logger.info(f"Scan found {key} ({setup.state.value}, confidence {setup.confidence})")
        return item

    def tick(self, now_ms: int, evaluation: Optional[SetupEngineOutput] = None) -> Optional[ScanFound]:
        """
        Advance the loop.

        Args:
            now_ms: Scheduler time
            evaluation: Latest SetupEngineOutput for the active symbol, if any

        Returns:
            The newly found setup, or None
        """
        symbol = self.active_symbol
        if symbol is None:
            self._state = ScanState.IDLE
            self.phase = None
            return None

        if self.phase is None or self.phase.symbol != symbol:
            self._start_phase(symbol, now_ms)

        if self.paused:
            self._state = ScanState.PAUSED
            return None

        if now_ms < self.phase.settle_until:
            self._state = ScanState.SETTLING
            return None

        self._state = ScanState.DWELLING
        item = self._record(symbol, evaluation, now_ms) if evaluation is not None else None

        if now_ms >= self.phase.dwell_until and len(self.symbols) > 1:
            self.cursor = (self.cursor + 1) % len(self.symbols)
            nxt = self.active_symbol
            logger.info(f"Scan rotating {symbol} -> {nxt}")
            self._start_phase(nxt, now_ms)
            self._state = ScanState.SETTLING

        return item

    def status(self, now_ms: int) -> Dict[str, Any]:
        phase = self.phase
        return {
            'state': self._state.value,
            'paused': self.paused,
            'universe_count': len(self.symbols),
            'active_symbol': self.active_symbol,
            'cursor': self.cursor,
            'settle_left_ms': max(0, phase.settle_until - now_ms) if phase else 0,
            'dwell_left_ms': max(0, phase.dwell_until - now_ms) if phase else 0,
            'found_count': len(self.found),
        }
