"""Trend-walk market simulator: the last-resort source that never fails."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace

import numpy as np

from .models import MarketData, PricePoint, bounded_history
from .registry import BASKETS, COMMODITIES, CRYPTO, FOREX, INDICES, STOCKS, SYNTHETIC
from .seed_prices import CATEGORY_PARAMS, DEFAULT_CATEGORY, base_price, instrument_name

logger = logging.getLogger(__name__)

HISTORY_HOURS = 24
HOUR = 3600.0


def symbol_seed(symbol: str) -> int:
    """Stable per-symbol seed: the sum of its character codes."""
    return sum(ord(ch) for ch in symbol)


def infer_category(data: MarketData) -> str:
    """Guess a category from name/symbol for snapshots that do not carry one.

    Only used for legacy values with an empty ``category``; everything the
    core produces sets the category explicitly.
    """
    name = data.name
    symbol = data.symbol
    if any(word in name for word in ("Volatility", "Boom", "Crash", "Step")):
        return SYNTHETIC
    if "/" in symbol and "BTC" not in symbol:
        return FOREX
    if "Basket" in name:
        return BASKETS
    if "Índice" in name or "Index" in name:
        return INDICES
    if any(word in name for word in ("Oro", "Gold", "Oil", "Silver", "Copper", "Platinum")):
        return COMMODITIES
    if any(word in name for word in ("Inc.", "Corp.", "Co.")):
        return STOCKS
    if 1 <= len(symbol) <= 5 and symbol.isalpha() and symbol.isupper():
        return STOCKS
    return CRYPTO


class MarketSimulator:
    """Generates and evolves synthetic MarketData snapshots.

    generate() walks 24 hourly samples forward from a category base price:

        p(i) = max(p(i-1) * (1 + r(i) + trend(i)), 0.1 * base)
        r(i)     ~ U(-volatility, +volatility)
        trend(i) = daily_trend * trend_strength * (i / 24) * volatility

    where daily_trend is +1 or -1 per call. update() applies one smaller step
    (half volatility) that follows the previous 24h direction 80% of the time.

    The shared numpy Generator is seeded once, from the wall clock unless an
    explicit seed is given, so repeated calls within a process evolve rather
    than repeat and a fixed seed reproduces a run exactly.
    """

    def __init__(
        self,
        seed: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._seed = seed
        self._rng: np.random.Generator | None = None
        self._clock = clock

    # --- Public API ---

    def generate(
        self, symbol: str, category: str, base_value: float | None = None
    ) -> MarketData:
        """Full 24h snapshot for any instrument. Never raises."""
        try:
            return self._generate(symbol, category, base_value)
        except Exception:
            logger.exception("Simulator failed to generate %s (%s), using baseline", symbol, category)
            return self.baseline(symbol, category, base_value)

    def update(self, previous: MarketData) -> MarketData:
        """Evolve a snapshot by one step. Returns the input unchanged on failure."""
        try:
            return self._update(previous)
        except Exception:
            logger.exception("Simulator failed to update %s, keeping previous value", previous.symbol)
            return previous

    def baseline(
        self, symbol: str, category: str, base_value: float | None = None
    ) -> MarketData:
        """Flat 24h series at the base price. Used when generation itself fails."""
        price = base_value if base_value and base_value > 0 else base_price(symbol, category)
        now = self._clock()
        history = [
            PricePoint(timestamp=now - (HISTORY_HOURS - 1 - i) * HOUR, price=price)
            for i in range(HISTORY_HOURS)
        ]
        return MarketData.from_history(
            symbol, instrument_name(symbol, category), category, history, last_updated=now
        )

    # --- Internals ---

    def _generator(self) -> np.random.Generator:
        if self._rng is None:
            seed = self._seed if self._seed is not None else time.time_ns()
            self._rng = np.random.default_rng(seed)
        return self._rng

    @staticmethod
    def _params(category: str) -> dict[str, float]:
        return CATEGORY_PARAMS.get(category) or CATEGORY_PARAMS[DEFAULT_CATEGORY]

    def _generate(
        self, symbol: str, category: str, base_value: float | None
    ) -> MarketData:
        params = self._params(category)
        volatility = params["volatility"]
        trend_strength = params["trend_strength"]
        base = base_value if base_value and base_value > 0 else base_price(symbol, category)

        # Per-call stream: stable symbol component + the next draw of the shared state
        draw = int(self._generator().integers(0, 2**32))
        rng = np.random.default_rng([symbol_seed(symbol), draw])

        daily_trend = 1 if rng.random() > 0.5 else -1
        random_components = (rng.random(HISTORY_HOURS) * 2 - 1) * volatility

        now = self._clock()
        price = base
        history: list[PricePoint] = []
        for i in range(HISTORY_HOURS):
            trend = daily_trend * trend_strength * (i / HISTORY_HOURS) * volatility
            price += price * (random_components[i] + trend)
            price = max(price, base * 0.1)
            history.append(
                PricePoint(timestamp=now - (HISTORY_HOURS - 1 - i) * HOUR, price=float(price))
            )

        return MarketData.from_history(
            symbol, instrument_name(symbol, category), category, history, last_updated=now
        )

    def _update(self, previous: MarketData) -> MarketData:
        category = previous.category or infer_category(previous)
        volatility = self._params(category)["volatility"] * 0.5
        rng = self._generator()

        continue_trend = rng.random() < 0.8
        change = (rng.random() * 2 - 1) * volatility
        if continue_trend:
            prev_direction = 1 if previous.change_24h > 0 else -1
            change = abs(change) * prev_direction * 0.7 + change * 0.3

        new_price = float(previous.current_price * (1 + change))
        if not np.isfinite(new_price) or new_price <= 0:
            raise ValueError(f"non-positive simulated price {new_price!r}")

        now = self._clock()
        history = bounded_history((*previous.price_history, PricePoint(now, new_price)))
        first = history[0].price
        change_24h = new_price - first

        return replace(
            previous,
            category=category,
            current_price=new_price,
            change_24h=change_24h,
            change_percent_24h=(change_24h / first * 100) if first else 0.0,
            high_24h=max(previous.high_24h, new_price),
            low_24h=min(previous.low_24h, new_price),
            price_history=history,
            last_updated=now,
            is_real_time=False,
        )
