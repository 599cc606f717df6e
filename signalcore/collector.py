"""
Market Data Collector
=====================

Boundary layer between exchange adapters and the synchronous engine.

- ``fetch_with_retry`` wraps one adapter call with a timeout and exponential
  backoff with jitter.
- ``MarketDataCollector`` fans out klines, order book, trades and ticker for
  every venue in parallel. A failing source is recorded on its venue's
  ``VenueReport`` and never fails the aggregate.
- ``collect_stream_window`` listens to a websocket for a fixed window and
  closes it (liquidation / trade aggregation).

Cancellation is never swallowed: ``asyncio.CancelledError`` propagates out of
every coroutine here.
"""

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import websockets

from .analysis.quality import grade_venues, venue_health
from .closed_candle import mark_forming
from .config import FetchConfig
from .features import FeatureInput
from .models import Candle, Orderbook, Trade

logger = logging.getLogger(__name__)


class ExchangeAdapter(Protocol):
    """
    Async venue adapter. Shapes:

    - klines: ``[{ts, o, h, l, c, v, confirm?}]`` ascending by ts
    - ticker: ``{last, ts}``
    - orderbook: ``{ts, depth, bids: [[px, sz]], asks: [[px, sz]]}``
    - trades: ``[{ts, px, qty, side}]``
    """

    async def get_klines(self, symbol: str, timeframe: str, limit: int) -> List[Dict[str, Any]]:
        ...

    async def get_ticker(self, symbol: str) -> Dict[str, Any]:
        ...

    async def get_orderbook(self, symbol: str, depth: int) -> Dict[str, Any]:
        ...

    async def get_recent_trades(self, symbol: str, limit: int) -> List[Dict[str, Any]]:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# RETRY
# ═══════════════════════════════════════════════════════════════════════════

async def fetch_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args,
    timeout: float = 12.0,
    max_retries: int = 2,
    base_delay: float = 0.3,
    max_delay: float = 5.0,
    rng: Optional[random.Random] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs
) -> Any:
    """
    Execute an adapter call with a timeout and exponential backoff retry.

    Args:
        func: Async function to call
        *args: Positional arguments for func
        timeout: Per-attempt timeout in seconds
        max_retries: Retries after the first attempt
        base_delay: Base delay for exponential backoff
        max_delay: Upper bound for a single backoff delay
        rng: Random source for jitter (seed it for reproducible delays)
        sleep: Awaitable sleep, injectable for tests
        **kwargs: Keyword arguments for func

    Returns:
        Result from func

    Raises:
        The last exception once all retries are exhausted
    """
    rng = rng or random.Random()
    name = getattr(func, '__name__', repr(func))

    for attempt in range(max_retries + 1):
        try:
            return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)

        except Exception as e:
            if attempt == max_retries:
                logger.warning(f"{name} failed after {max_retries} retries: {e!r}")
                raise

            # Exponential backoff with jitter
            delay = min(base_delay * (2 ** attempt), max_delay)
            jitter = delay * (0.75 + rng.random() * 0.5)
            logger.debug(f"{name} attempt {attempt + 1} failed ({e!r}), retrying in {jitter:.2f}s")
            await sleep(jitter)


# ═══════════════════════════════════════════════════════════════════════════
# FAN-OUT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class VenueReport:
    """What one venue delivered this cycle. Failed sources leave their field None."""
    venue: str
    candles: Dict[str, List[Candle]] = field(default_factory=dict)
    orderbook: Optional[Orderbook] = None
    trades: Optional[List[Trade]] = None
    last_price: Optional[float] = None
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """A venue is usable once any kline series arrived."""
        return bool(self.candles)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'venue': self.venue,
            'ok': self.ok,
            'timeframes': sorted(self.candles),
            'orderbook': self.orderbook is not None,
            'trades': len(self.trades) if self.trades is not None else None,
            'last_price': self.last_price,
            'errors': dict(self.errors),
        }


def _closed_flags(candles_by_tf: Dict[str, List[Candle]], now_ms: int) -> Dict[str, List[Candle]]:
    return {tf: mark_forming(bars, tf, now_ms) for tf, bars in candles_by_tf.items()}


class MarketDataCollector:
    """
    Parallel fetch of every source from every venue.

    Example:
        collector = MarketDataCollector({'bybit': bybit, 'binance': binance})
        reports = await collector.collect("BTCUSDT")
        inp = collector.feature_input("BTCUSDT", reports, now_ms)
    """

    def __init__(
        self,
        adapters: Dict[str, ExchangeAdapter],
        config: Optional[FetchConfig] = None,
        primary: Optional[str] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            adapters: Venue name -> adapter, insertion order decides primary
            config: Timeouts, retries and fetch sizes
            primary: Primary venue name (defaults to the first adapter)
            rng: Random source for retry jitter
            sleep: Awaitable sleep, injectable for tests
        """
        if not adapters:
            raise ValueError("MarketDataCollector needs at least one adapter")
        self.adapters = dict(adapters)
        self.config = config or FetchConfig()
        self.primary = primary or next(iter(self.adapters))
        if self.primary not in self.adapters:
            raise ValueError(f"Primary venue {self.primary!r} has no adapter")
        self.rng = rng or random.Random()
        self.sleep = sleep

    @property
    def secondary(self) -> Optional[str]:
        return next((v for v in self.adapters if v != self.primary), None)

    async def _call(self, func, *args):
        return await fetch_with_retry(
            func,
            *args,
            timeout=self.config.timeout_s,
            max_retries=self.config.max_retries,
            base_delay=self.config.base_delay_s,
            max_delay=self.config.max_delay_s,
            rng=self.rng,
            sleep=self.sleep,
        )

    async def _guarded(self, venue: str, source: str, coro) -> Tuple[str, str, Any, Optional[str]]:
        # Only Exception is caught; CancelledError keeps propagating
        try:
            return venue, source, await coro, None
        except Exception as e:
            return venue, source, None, f"{type(e).__name__}: {e}"

    def _jobs(self, venue: str, adapter: ExchangeAdapter, symbol: str,
              timeframes: Sequence[str], limit: int) -> List[Awaitable]:
        cfg = self.config
        jobs = [
            self._guarded(venue, f"klines:{tf}", self._call(adapter.get_klines, symbol, tf, limit))
            for tf in timeframes
        ]
        jobs.append(self._guarded(venue, "orderbook",
                                  self._call(adapter.get_orderbook, symbol, cfg.orderbook_depth)))
        jobs.append(self._guarded(venue, "trades",
                                  self._call(adapter.get_recent_trades, symbol, cfg.trades_limit)))
        jobs.append(self._guarded(venue, "ticker", self._call(adapter.get_ticker, symbol)))
        return jobs

    @staticmethod
    def _store(report: VenueReport, source: str, value: Any) -> None:
        if source.startswith("klines:"):
            if value:
                report.candles[source.split(":", 1)[1]] = [
                    c if isinstance(c, Candle) else Candle.from_dict(c) for c in value
                ]
        elif source == "orderbook":
            report.orderbook = value if isinstance(value, Orderbook) else Orderbook.from_dict(value)
        elif source == "trades":
            report.trades = [t if isinstance(t, Trade) else Trade.from_dict(t) for t in value or []]
        elif source == "ticker":
            last = (value or {}).get('last')
            report.last_price = float(last) if last is not None else None

    async def collect(
        self,
        symbol: str,
        timeframes: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, VenueReport]:
        """
        Fetch every source from every venue concurrently.

        Args:
            symbol: Venue symbol, e.g. ``BTCUSDT``
            timeframes: Kline timeframes (defaults to config)
            limit: Klines per timeframe (defaults to config)

        Returns:
            Venue name -> VenueReport; never raises for venue faults
        """
        timeframes = tuple(timeframes or self.config.timeframes)
        limit = limit or self.config.kline_limit

        jobs = []
        for venue, adapter in self.adapters.items():
            jobs.extend(self._jobs(venue, adapter, symbol, timeframes, limit))

        start = time.time()
        results = await asyncio.gather(*jobs)

        reports = {venue: VenueReport(venue=venue) for venue in self.adapters}
        for venue, source, value, error in results:
            report = reports[venue]
            if error is not None:
                report.errors[source] = error
                continue
            try:
                self._store(report, source, value)
            except (ValueError, TypeError) as e:
                report.errors[source] = f"{type(e).__name__}: {e}"

        for report in reports.values():
            if report.errors:
                logger.warning(
                    f"[{symbol}] {report.venue} degraded: "
                    f"{', '.join(f'{k} ({v})' for k, v in report.errors.items())}"
                )

        logger.debug(f"[{symbol}] collected {len(jobs)} sources in {time.time() - start:.2f}s")
        return reports

    def feature_input(self, canon: str, reports: Dict[str, VenueReport], now_ms: int) -> FeatureInput:
        """Assemble the Feature Engine input from one ``collect`` result.

        Bars still open at ``now_ms`` are flagged as forming so that no
        downstream consumer treats the live kline as closed.
        """
        primary = reports.get(self.primary) or VenueReport(venue=self.primary)
        secondary = reports.get(self.secondary) if self.secondary else None
        secondary = secondary or VenueReport(venue=self.secondary or "")
        primary_candles = _closed_flags(primary.candles, now_ms)
        secondary_candles = _closed_flags(secondary.candles, now_ms)

        quality = grade_venues(
            venue_health(now_ms, primary.ok, primary.orderbook, primary.trades, primary_candles),
            venue_health(now_ms, secondary.ok, secondary.orderbook, secondary.trades, secondary_candles),
        )
        return FeatureInput(
            canon=canon,
            ts=now_ms,
            primary=primary_candles,
            secondary=secondary_candles,
            orderbook=primary.orderbook,
            trades=primary.trades,
            primary_ok=primary.ok,
            secondary_ok=secondary.ok,
            quality=quality,
        )


# ═══════════════════════════════════════════════════════════════════════════
# STREAM WINDOWS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class StreamWindow:
    """Aggregated outcome of one listen-then-close cycle."""
    url: str
    window_s: float
    messages: int = 0
    items: List[Any] = field(default_factory=list)
    opened: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'window_s': self.window_s,
            'messages': self.messages,
            'items': len(self.items),
            'opened': self.opened,
            'error': self.error,
        }


async def collect_stream_window(
    url: str,
    window_s: float,
    parse: Callable[[Any], Sequence[Any]],
    subscribe: Optional[Dict[str, Any]] = None,
    connect: Callable = websockets.connect,
) -> StreamWindow:
    """
    Listen to a websocket for ``window_s`` seconds, then close it.

    Args:
        url: Websocket endpoint
        window_s: Listening window in seconds
        parse: Maps one decoded JSON message to zero or more items
        subscribe: Optional subscribe message sent after connecting
        connect: Connection factory (``websockets.connect``)

    Returns:
        StreamWindow; connection failures are recorded in ``error``
    """
    result = StreamWindow(url=url, window_s=window_s)
    loop = asyncio.get_running_loop()

    try:
        async with connect(url) as ws:
            result.opened = True
            if subscribe is not None:
                await ws.send(json.dumps(subscribe))

            deadline = loop.time() + window_s
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=remaining)
                except asyncio.TimeoutError:
                    break

                result.messages += 1
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    continue
                result.items.extend(parse(data) or [])

    except websockets.exceptions.ConnectionClosed as e:
        result.error = f"closed: {e}"
    except (OSError, websockets.exceptions.WebSocketException) as e:
        result.error = f"{type(e).__name__}: {e}"
        logger.warning(f"Stream window {url} failed: {e}")

    return result
