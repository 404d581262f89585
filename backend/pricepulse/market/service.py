"""Market Data Orchestrator: cache, providers and simulator behind one call that never fails."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import replace

from .cache import MarketDataCache
from .client import RequestClient
from .errors import MarketDataError
from .models import MarketData, MarketRequest
from .registry import normalize_category
from .settings import MarketSettings
from .simulator import MarketSimulator
from .subscriptions import Subscriber, SubscriptionService, Unsubscribe

logger = logging.getLogger(__name__)

BatchItem = tuple[str, str] | tuple[str, str, float | None]


def batch_key(symbol: str, category: str) -> str:
    """Result key for get_batch_market_data(): ``"criptomonedas:BTC"``."""
    return f"{normalize_category(category)}:{symbol}"


def _unpack(item: BatchItem) -> tuple[str, str, float | None]:
    symbol, category, *rest = item
    return symbol, category, rest[0] if rest else None


class MarketDataService:
    """The only entry point the rest of the application needs.

    get_market_data() resolves, in order:
      1. simulation-only categories (or force-mock): simulator
      2. a fresh cache entry
      3. the provider chain via the Request Client
      4. the simulator, if anything above raised
    and caches whatever it returns.
    """

    def __init__(
        self,
        cache: MarketDataCache,
        client: RequestClient,
        simulator: MarketSimulator,
        subscriptions: SubscriptionService,
        settings: MarketSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.cache = cache
        self.client = client
        self.simulator = simulator
        self.subscriptions = subscriptions
        self._settings = settings or MarketSettings()
        self._sleep = sleep

    async def get_market_data(
        self, symbol: str, category: str, base_value: float | None = None
    ) -> MarketData:
        """Snapshot for one instrument. Never raises."""
        canonical = normalize_category(category)
        try:
            return await self._resolve(symbol, canonical, base_value)
        except Exception as e:
            logger.error("Market data for %s (%s) failed, simulating: %s", symbol, canonical, e)
            return self._simulate(symbol, canonical, base_value)

    async def get_batch_market_data(
        self,
        requests: Iterable[BatchItem],
        batch_size: int | None = None,
        pause: float | None = None,
    ) -> dict[str, MarketData | None]:
        """get_market_data() for many instruments, in fixed batches.

        Items are ``(symbol, category)`` or ``(symbol, category, base_value)``.
        Results are keyed by ``batch_key()`` (``"category:symbol"`` with the
        category normalized), so one symbol in two categories keeps both.
        An item that fails maps to None without aborting the rest.
        """
        http = self._settings.http
        size = max(1, batch_size or http.batch_size)
        delay = http.batch_pause if pause is None else pause
        pending = [_unpack(item) for item in requests]
        results: dict[str, MarketData | None] = {}

        for start in range(0, len(pending), size):
            if start:
                await self._sleep(delay)
            batch = pending[start:start + size]
            outcomes = await asyncio.gather(
                *(self.get_market_data(*item) for item in batch),
                return_exceptions=True,
            )
            for (symbol, category, _), outcome in zip(batch, outcomes):
                key = batch_key(symbol, category)
                if isinstance(outcome, BaseException):
                    logger.error("Batch item %s failed: %s", key, outcome)
                    results[key] = None
                else:
                    results[key] = outcome
        return results

    async def subscribe(
        self,
        symbol: str,
        category: str,
        callback: Subscriber,
        initial_data: MarketData | None = None,
    ) -> Unsubscribe:
        """Stream updates for an instrument, seeded with a current snapshot."""
        if initial_data is None and not self.subscriptions.has_active_connection(symbol, category):
            initial_data = await self.get_market_data(symbol, category)
        return self.subscriptions.subscribe(symbol, category, callback, initial_data)

    # --- Internals ---

    async def _resolve(self, symbol: str, category: str, base_value: float | None) -> MarketData:
        if self._settings.force_mock_data or category in self._settings.simulation_only_categories:
            return self._simulate(symbol, category, base_value)

        cached = self.cache.get(symbol, category, allow_stale=False)
        if cached is not None:
            logger.debug("Cache hit for %s (%s)", symbol, category)
            return cached

        request = MarketRequest(symbol=symbol, category=category, base_value=base_value)
        response = await self.client.fetch(request)
        if response.data is None:
            raise MarketDataError(f"{response.provider} returned no data for {symbol}")

        # A one-off fetch is never real-time; only live stream updates are
        data = replace(response.data, category=category, is_real_time=False)
        if response.simulated:
            logger.info("Serving simulated data for %s (%s)", symbol, category)
        self._store(symbol, category, data)
        return data

    def _simulate(self, symbol: str, category: str, base_value: float | None) -> MarketData:
        data = self.simulator.generate(symbol, category, base_value)
        self._store(symbol, category, data)
        return data

    def _store(self, symbol: str, category: str, data: MarketData) -> None:
        try:
            self.cache.put(symbol, category, data)
        except Exception:
            logger.exception("Could not cache %s (%s)", symbol, category)
