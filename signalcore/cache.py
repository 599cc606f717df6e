"""
Liquidation Cache
=================

Holds the most recent liquidation aggregation per venue for one symbol.

The cache is a plain object owned by whoever runs the pipeline and passed in
where it is needed. ``warmup`` runs every venue's collector concurrently for
one fixed window and replaces the cached result; a venue whose collector
fails is cached as None.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from .collector import collect_stream_window

logger = logging.getLogger(__name__)

# Shortest window a warmup will listen for
MIN_WINDOW_S = 30.0

LiquidationCollector = Callable[[str, float], Awaitable[Any]]


@dataclass
class LiquidationAgg:
    """Liquidated notional by position side over one window."""
    window_s: float
    long_notional: float = 0.0
    short_notional: float = 0.0
    events: int = 0

    def add(self, side: str, price: float, qty: float) -> None:
        # A SELL liquidation order closes a long position
        side = side.upper()
        if side == "SELL":
            self.long_notional += price * qty
        elif side == "BUY":
            self.short_notional += price * qty
        else:
            return
        self.events += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'window_s': self.window_s,
            'by_side': {'LONG': self.long_notional, 'SHORT': self.short_notional},
            'events': self.events,
        }


@dataclass
class LiquidationSnapshot:
    venues: Dict[str, Optional[Any]] = field(default_factory=dict)
    updated_at: Optional[int] = None
    window_s: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'venues': {
                k: v.to_dict() if hasattr(v, 'to_dict') else v
                for k, v in self.venues.items()
            },
            'updated_at': self.updated_at,
            'window_s': self.window_s,
        }


class LiquidationCache:
    """
    Explicit liquidation cache with a create / warmup / clear lifecycle.

    Example:
        cache = LiquidationCache(clock=lambda: now_ms)
        await cache.warmup("BTCUSDT", {'bybit': collect_bybit}, window_s=30)
        cache.get().venues['bybit']
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        """
        Args:
            clock: Returns the current time in epoch ms (defaults to wall clock)
        """
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._last = LiquidationSnapshot()
        self._symbol: Optional[str] = None
        self._running = False

    async def warmup(
        self,
        symbol: str,
        collectors: Dict[str, LiquidationCollector],
        window_s: float = MIN_WINDOW_S,
    ) -> LiquidationSnapshot:
        """
        Collect every venue for one window and cache the result.

        A warmup already in flight for the same symbol returns the current
        snapshot instead of starting another.

        Args:
            symbol: Venue symbol
            collectors: Venue name -> ``async (symbol, window_s) -> aggregation``
            window_s: Listening window, raised to at least MIN_WINDOW_S

        Returns:
            The cached snapshot after the warmup
        """
        sym = str(symbol or "").upper().strip()
        if not sym:
            return self._last
        if self._running and self._symbol == sym:
            return self._last

        self._running = True
        self._symbol = sym
        window_s = max(MIN_WINDOW_S, float(window_s))

        try:
            names = list(collectors)
            results = await asyncio.gather(
                *(collectors[name](sym, window_s) for name in names),
                return_exceptions=True,
            )

            venues = {}
            for name, result in zip(names, results):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, Exception):
                    logger.warning(f"[{sym}] liquidation collector {name} failed: {result!r}")
                    venues[name] = None
                else:
                    venues[name] = result

            self._last = LiquidationSnapshot(venues=venues, updated_at=self._clock(), window_s=window_s)
            logger.info(
                f"[{sym}] liquidation cache warmed ({window_s:.0f}s window, "
                f"{sum(v is not None for v in venues.values())}/{len(venues)} venues)"
            )
            return self._last
        finally:
            self._running = False

    def get(self) -> LiquidationSnapshot:
        return self._last

    def meta(self) -> Dict[str, Any]:
        return {
            'running': self._running,
            'symbol': self._symbol,
            'updated_at': self._last.updated_at,
            'window_s': self._last.window_s,
        }

    def clear(self) -> None:
        self._last = LiquidationSnapshot()
        self._symbol = None
        self._running = False
        logger.info("Liquidation cache cleared")


# ═══════════════════════════════════════════════════════════════════════════
# VENUE STREAMS
# ═══════════════════════════════════════════════════════════════════════════

BYBIT_PUBLIC_WS = "wss://stream.bybit.com/v5/public/linear"
BINANCE_FUTURES_WS = "wss://fstream.binance.com/ws"


def parse_bybit_liquidations(message: Dict[str, Any]):
    """``{topic: allLiquidation.X, data: [{S, p, v}] | {...}}`` -> [(side, price, qty)]."""
    if not isinstance(message, dict) or "allLiquidation" not in str(message.get('topic', "")):
        return []
    payload = message.get('data')
    rows = payload if isinstance(payload, list) else [payload] if payload else []

    out = []
    for row in rows:
        try:
            side = str(row.get('side') or row.get('S') or "").upper()
            size = row.get('size', row.get('v', row.get('q')))
            out.append((side, float(row.get('price', row.get('p'))), float(size)))
        except (TypeError, ValueError):
            continue
    return out


def parse_binance_liquidations(message: Dict[str, Any]):
    """forceOrder payload ``{o: {S, p, q}}`` -> [(side, price, qty)]."""
    order = message.get('o') if isinstance(message, dict) else None
    if not order:
        return []
    try:
        return [(str(order.get('S', "")).upper(), float(order['p']), float(order['q']))]
    except (KeyError, TypeError, ValueError):
        return []


def stream_liquidation_collector(
    url_for: Callable[[str], str],
    parse: Callable[[Dict[str, Any]], Any],
    subscribe_for: Optional[Callable[[str], Dict[str, Any]]] = None,
    connect: Optional[Callable] = None,
) -> LiquidationCollector:
    """
    Build a collector that listens to one venue stream for a window and
    aggregates liquidated notional by side.
    """
    async def collect(symbol: str, window_s: float) -> LiquidationAgg:
        kwargs = {'connect': connect} if connect is not None else {}
        window = await collect_stream_window(
            url_for(symbol),
            window_s,
            parse,
            subscribe=subscribe_for(symbol) if subscribe_for else None,
            **kwargs,
        )
        if window.error and not window.opened:
            raise ConnectionError(window.error)

        agg = LiquidationAgg(window_s=window_s)
        for side, price, qty in window.items:
            agg.add(side, price, qty)
        return agg

    return collect


def bybit_liquidations(connect: Optional[Callable] = None) -> LiquidationCollector:
    return stream_liquidation_collector(
        lambda symbol: BYBIT_PUBLIC_WS,
        parse_bybit_liquidations,
        lambda symbol: {'op': 'subscribe', 'args': [f"allLiquidation.{symbol.upper()}"]},
        connect,
    )


def binance_liquidations(connect: Optional[Callable] = None) -> LiquidationCollector:
    return stream_liquidation_collector(
        lambda symbol: f"{BINANCE_FUTURES_WS}/{symbol.lower()}@forceOrder",
        parse_binance_liquidations,
        connect=connect,
    )
