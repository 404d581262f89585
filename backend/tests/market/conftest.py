"""Fixtures for market data tests."""

from collections.abc import Callable

import pytest

from pricepulse.market.models import MarketData, PricePoint
from pricepulse.market.registry import CRYPTO
from pricepulse.market.simulator import MarketSimulator


@pytest.fixture
def simulator() -> MarketSimulator:
    """Seeded simulator so runs are reproducible."""
    return MarketSimulator(seed=42)


@pytest.fixture
def make_market_data() -> Callable[..., MarketData]:
    """Factory for small, hand-built MarketData snapshots."""

    def _make(
        symbol: str = "BTC",
        category: str = CRYPTO,
        prices: tuple[float, ...] = (100.0, 110.0),
        start: float = 1_000.0,
        step: float = 3600.0,
    ) -> MarketData:
        history = [PricePoint(start + i * step, p) for i, p in enumerate(prices)]
        return MarketData.from_history(
            symbol, symbol, category, history, last_updated=history[-1].timestamp
        )

    return _make
