"""Streaming Subscription Service: one shared stream per instrument, fanned out to callbacks."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from .connection import ConnectionManager
from .errors import ReconnectExhausted
from .interface import StreamStrategy
from .models import MarketData
from .registry import STREAM_PROVIDERS, has_websocket_support, is_fast_tick, normalize_category
from .settings import MarketSettings, WebSocketConfig
from .simulator import MarketSimulator
from .wire import StreamEndpoint, apply_tick, parse_message, stream_endpoint

logger = logging.getLogger(__name__)

Subscriber = Callable[[MarketData], None]
Unsubscribe = Callable[[], None]
ConnectionFactory = Callable[..., ConnectionManager]


def stream_key(symbol: str, category: str) -> str:
    return f"{normalize_category(category)}:{symbol}".lower()


@dataclass(eq=False)
class StreamEntry:
    """Registry entry for one ``category:symbol`` stream."""

    key: str
    symbol: str
    category: str
    provider: str | None = None
    strategy: StreamStrategy | None = None
    subscribers: list[Subscriber] = field(default_factory=list)
    last_data: MarketData | None = None

    @property
    def mode(self) -> str:
        return self.strategy.mode if self.strategy else ""


class SimulatedStream(StreamStrategy):
    """Timer-driven stream: evolves ``last_data`` with the simulator every interval."""

    mode = "simulated"

    def __init__(
        self,
        entry: StreamEntry,
        simulator: MarketSimulator,
        publish: Callable[[MarketData], None],
        interval: float,
    ) -> None:
        self._entry = entry
        self._simulator = simulator
        self._publish = publish
        self.interval = interval
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name=f"sim-stream:{self._entry.key}")

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _run(self) -> None:
        entry = self._entry
        while True:
            await asyncio.sleep(self.interval)
            try:
                if entry.last_data is not None:
                    data = self._simulator.update(entry.last_data)
                else:
                    data = self._simulator.generate(entry.symbol, entry.category)
                self._publish(data)
            except Exception:
                logger.exception("Simulated stream step failed for %s", entry.key)


class LiveStream(StreamStrategy):
    """Stream fed by an upstream WebSocket through a ConnectionManager.

    Push messages are mapped with the provider's wire parser and folded into
    the entry's last snapshot. Messages that cannot be mapped, or that arrive
    before any base snapshot exists, are dropped.
    """

    mode = "live"

    def __init__(
        self,
        entry: StreamEntry,
        provider: str,
        endpoint: StreamEndpoint,
        publish: Callable[[MarketData], None],
        config: WebSocketConfig,
        connection_factory: ConnectionFactory = ConnectionManager,
        on_exhausted: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entry = entry
        self.provider = provider
        self._publish = publish
        self._on_exhausted = on_exhausted
        self._clock = clock
        self.manager = connection_factory(
            endpoint.url,
            self._handle_message,
            on_error=self._handle_error,
            subscription_message=endpoint.subscription_message,
            heartbeat_message=endpoint.heartbeat_message,
            max_reconnect_attempts=config.reconnect_attempts,
            reconnect_delay=config.reconnect_delay,
            heartbeat_interval=config.heartbeat_interval,
            connection_timeout=config.connection_timeout,
        )

    def start(self) -> None:
        self.manager.connect()

    async def stop(self) -> None:
        await self.manager.cleanup()

    async def restart(self) -> None:
        await self.manager.cleanup()
        self.manager.connect()

    def _handle_message(self, message: Any) -> None:
        tick = parse_message(self.provider, message)
        if tick is None:
            return
        last = self._entry.last_data
        if last is None:
            logger.debug("Dropping %s tick for %s: no base snapshot yet", self.provider, self._entry.key)
            return
        self._publish(apply_tick(last, tick, self._clock()))

    def _handle_error(self, error: BaseException) -> None:
        if isinstance(error, ReconnectExhausted):
            logger.error("Live stream for %s gave up: %s", self._entry.key, error)
            if self._on_exhausted:
                self._on_exhausted()
        else:
            logger.warning("Live stream error for %s: %s", self._entry.key, error)


class SubscriptionService:
    """Reference-counted registry of streams keyed by ``category:symbol``.

    All registry mutation happens synchronously on the event loop, so two
    concurrent subscribers can never create duplicate streams for one key.
    """

    def __init__(
        self,
        simulator: MarketSimulator,
        settings: MarketSettings | None = None,
        connection_factory: ConnectionFactory = ConnectionManager,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._simulator = simulator
        self._settings = settings or MarketSettings()
        self._connection_factory = connection_factory
        self._clock = clock
        self._entries: dict[str, StreamEntry] = {}
        self._teardowns: set[asyncio.Task] = set()

    # --- Public API ---

    def subscribe(
        self,
        symbol: str,
        category: str,
        callback: Subscriber,
        initial_data: MarketData | None = None,
    ) -> Unsubscribe:
        """Register ``callback`` for updates and return its unsubscribe function.

        Must be called from the event loop. The last known snapshot, if any,
        is delivered on the next loop iteration, never synchronously.
        """
        loop = asyncio.get_running_loop()
        canonical = normalize_category(category)
        key = stream_key(symbol, canonical)

        entry = self._entries.get(key)
        if entry is None:
            entry = StreamEntry(key=key, symbol=symbol, category=canonical, last_data=initial_data)
            entry.subscribers.append(callback)
            self._entries[key] = entry
            entry.strategy = self._select_strategy(entry)
            entry.strategy.start()
            logger.info("Opened %s stream for %s", entry.mode, key)
        else:
            entry.subscribers.append(callback)
            if entry.last_data is None and initial_data is not None:
                entry.last_data = initial_data
            logger.debug("Added subscriber to %s (%d total)", key, len(entry.subscribers))

        if entry.last_data is not None:
            loop.call_soon(self._deliver, entry, callback, entry.last_data)

        unsubscribed = False

        def unsubscribe() -> None:
            nonlocal unsubscribed
            if unsubscribed:
                return
            unsubscribed = True
            try:
                entry.subscribers.remove(callback)
            except ValueError:
                pass
            if not entry.subscribers and self._entries.get(key) is entry:
                del self._entries[key]
                logger.info("Last subscriber left %s, closing stream", key)
                self._schedule(self._stop_strategy(entry.strategy))

        return unsubscribe

    def has_active_connection(self, symbol: str, category: str) -> bool:
        return stream_key(symbol, category) in self._entries

    @property
    def active_connection_count(self) -> int:
        return len(self._entries)

    def get_entry(self, symbol: str, category: str) -> StreamEntry | None:
        return self._entries.get(stream_key(symbol, category))

    def last_data(self, symbol: str, category: str) -> MarketData | None:
        entry = self.get_entry(symbol, category)
        return entry.last_data if entry else None

    async def close_connection(self, symbol: str, category: str) -> bool:
        """Drop a stream regardless of its subscribers. Returns False if none existed."""
        entry = self._entries.pop(stream_key(symbol, category), None)
        if entry is None:
            return False
        entry.subscribers.clear()
        await self._stop_strategy(entry.strategy)
        logger.info("Closed stream %s", entry.key)
        return True

    async def close_all(self) -> None:
        """Close every stream and wait for pending teardowns."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.subscribers.clear()
            await self._stop_strategy(entry.strategy)
        if self._teardowns:
            await asyncio.gather(*self._teardowns, return_exceptions=True)
        if entries:
            logger.info("Closed %d streams", len(entries))

    async def reconnect_all(self) -> int:
        """Restart every live connection. Returns how many were restarted."""
        restarted = 0
        for entry in list(self._entries.values()):
            if isinstance(entry.strategy, LiveStream):
                await entry.strategy.restart()
                restarted += 1
        return restarted

    # --- Internals ---

    def _select_strategy(self, entry: StreamEntry) -> StreamStrategy:
        endpoint = None
        provider = STREAM_PROVIDERS.get(entry.category)
        if (
            provider
            and not self._settings.force_simulation
            and entry.category not in self._settings.simulation_only_categories
            and has_websocket_support(entry.symbol, entry.category)
        ):
            endpoint = stream_endpoint(entry.symbol, entry.category, provider, self._settings)

        if endpoint is None or provider is None:
            return self._simulated(entry)

        entry.provider = provider
        return LiveStream(
            entry,
            provider,
            endpoint,
            lambda data: self._publish(entry, data),
            self._settings.websocket,
            connection_factory=self._connection_factory,
            on_exhausted=lambda: self._degrade(entry),
            clock=self._clock,
        )

    def _simulated(self, entry: StreamEntry) -> SimulatedStream:
        ws = self._settings.websocket
        interval = ws.fast_stream_interval if is_fast_tick(entry.symbol) else ws.stream_interval
        entry.provider = None
        return SimulatedStream(entry, self._simulator, lambda data: self._publish(entry, data), interval)

    def _degrade(self, entry: StreamEntry) -> None:
        """Swap a live stream that gave up for a simulated one."""
        if self._entries.get(entry.key) is not entry:
            return
        previous = entry.strategy
        entry.strategy = self._simulated(entry)
        entry.strategy.start()
        logger.warning("Falling back to simulated stream for %s", entry.key)
        self._schedule(self._stop_strategy(previous))

    def _publish(self, entry: StreamEntry, data: MarketData) -> None:
        entry.last_data = data
        for callback in list(entry.subscribers):
            try:
                callback(data)
            except Exception:
                logger.exception("Subscriber callback failed for %s", entry.key)

    @staticmethod
    def _deliver(entry: StreamEntry, callback: Subscriber, data: MarketData) -> None:
        if callback not in entry.subscribers:
            return
        # A publish since subscribe() already handed this callback newer data
        if entry.last_data is not data:
            return
        try:
            callback(data)
        except Exception:
            logger.exception("Subscriber callback failed for %s", entry.key)

    @staticmethod
    async def _stop_strategy(strategy: StreamStrategy | None) -> None:
        if strategy is None:
            return
        try:
            await strategy.stop()
        except Exception:
            logger.exception("Stream teardown failed")

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._teardowns.add(task)
        task.add_done_callback(self._teardowns.discard)
