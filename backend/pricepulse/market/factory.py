"""Factory for the market data context."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .cache import FileStore, MarketDataCache, MemoryStore
from .client import RequestClient, RetryPolicy
from .providers import build_providers
from .service import MarketDataService
from .settings import MarketSettings
from .simulator import MarketSimulator
from .subscriptions import SubscriptionService

logger = logging.getLogger(__name__)


@dataclass
class MarketContext:
    """Everything the market data core owns, wired together.

    Owned by the application root; nothing in the core is process-global.
    """

    settings: MarketSettings
    cache: MarketDataCache
    simulator: MarketSimulator
    client: RequestClient
    subscriptions: SubscriptionService
    service: MarketDataService
    _running: bool = field(default=False, repr=False)

    async def start(self) -> None:
        """Open the HTTP session and start the cache sweeper. No-op if running."""
        if self._running:
            return
        await self.client.start()
        await self.cache.start()
        self._running = True
        logger.info("Market data context started")

    async def stop(self) -> None:
        """Close every stream, stop the sweeper, close the session. Idempotent."""
        await self.subscriptions.close_all()
        await self.cache.stop()
        await self.client.close()
        if self._running:
            logger.info("Market data context stopped")
        self._running = False


def create_market_context(settings: MarketSettings | None = None) -> MarketContext:
    """Build an unstarted context. Caller must await ctx.start().

    - settings omitted -> MarketSettings.from_env()
    - settings.cache_dir set -> file-backed durable cache, else in-memory
    """
    if settings is None:
        settings = MarketSettings.from_env()

    if settings.cache_dir:
        logger.info("Durable market cache: %s", settings.cache_dir)
        store = FileStore(settings.cache_dir)
    else:
        store = MemoryStore()

    simulator = MarketSimulator()
    cache = MarketDataCache(store=store)
    client = RequestClient(
        build_providers(settings, simulator),
        policy=RetryPolicy.from_config(settings.http),
        timeout=settings.http.timeout,
    )
    subscriptions = SubscriptionService(simulator, settings)
    service = MarketDataService(cache, client, simulator, subscriptions, settings)

    if settings.force_mock_data:
        logger.info("Market data source: simulator only (force mock)")
    else:
        logger.info("Market data source: provider chains with simulator fallback")

    return MarketContext(
        settings=settings,
        cache=cache,
        simulator=simulator,
        client=client,
        subscriptions=subscriptions,
        service=service,
    )
