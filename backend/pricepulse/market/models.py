"""Data models for market data."""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

MAX_HISTORY_POINTS = 100


@dataclass(frozen=True, slots=True)
class PricePoint:
    """One (timestamp, price) sample. Timestamps are Unix seconds."""

    timestamp: float
    price: float

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "price": self.price}


def bounded_history(
    points: Iterable[PricePoint], limit: int = MAX_HISTORY_POINTS
) -> tuple[PricePoint, ...]:
    """Keep only the most recent ``limit`` points, oldest evicted first."""
    history = tuple(points)
    if len(history) > limit:
        history = history[-limit:]
    return history


@dataclass(frozen=True, slots=True)
class MarketData:
    """Immutable snapshot of one instrument, exchanged at every boundary.

    ``is_real_time`` is True only for values produced by an active streaming
    update. Cached, stale, fetched-once and simulated values carry False.
    """

    symbol: str
    name: str
    category: str
    current_price: float
    change_24h: float
    change_percent_24h: float
    high_24h: float
    low_24h: float
    price_history: tuple[PricePoint, ...]
    last_updated: float = field(default_factory=time.time)  # Unix seconds
    is_real_time: bool = False

    @property
    def direction(self) -> str:
        """'up', 'down', or 'flat' over the 24h window."""
        if self.change_24h > 0:
            return "up"
        elif self.change_24h < 0:
            return "down"
        return "flat"

    @property
    def last_point(self) -> PricePoint:
        return self.price_history[-1]

    def stale(self, last_updated: float | None = None) -> MarketData:
        """Same data, flagged as not real-time."""
        return replace(
            self,
            is_real_time=False,
            last_updated=self.last_updated if last_updated is None else last_updated,
        )

    def to_dict(self) -> dict:
        """Serialize for JSON / SSE transmission and the durable cache."""
        return {
            "symbol": self.symbol,
            "name": self.name,
            "category": self.category,
            "current_price": self.current_price,
            "change_24h": self.change_24h,
            "change_percent_24h": self.change_percent_24h,
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
            "price_history": [p.to_dict() for p in self.price_history],
            "last_updated": self.last_updated,
            "is_real_time": self.is_real_time,
            "direction": self.direction,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MarketData:
        """Inverse of to_dict(). Raises KeyError/TypeError/ValueError on bad input."""
        history = tuple(
            PricePoint(timestamp=float(p["timestamp"]), price=float(p["price"]))
            for p in raw["price_history"]
        )
        if not history:
            raise ValueError("price_history must not be empty")
        return cls(
            symbol=str(raw["symbol"]),
            name=str(raw.get("name") or raw["symbol"]),
            category=str(raw.get("category", "")),
            current_price=float(raw["current_price"]),
            change_24h=float(raw["change_24h"]),
            change_percent_24h=float(raw["change_percent_24h"]),
            high_24h=float(raw["high_24h"]),
            low_24h=float(raw["low_24h"]),
            price_history=history,
            last_updated=float(raw["last_updated"]),
            is_real_time=bool(raw.get("is_real_time", False)),
        )

    @classmethod
    def from_history(
        cls,
        symbol: str,
        name: str,
        category: str,
        history: Iterable[PricePoint],
        *,
        current_price: float | None = None,
        change_24h: float | None = None,
        change_percent_24h: float | None = None,
        high_24h: float | None = None,
        low_24h: float | None = None,
        last_updated: float | None = None,
    ) -> MarketData:
        """Build a snapshot from a price series, deriving whatever is not given.

        Missing quote fields are computed from the series, and high/low are
        widened so that they always bracket the current price.
        """
        points = bounded_history(history)
        if not points:
            raise ValueError(f"empty price history for {symbol}")

        price = points[-1].price if current_price is None else current_price
        first = points[0].price
        if change_24h is None:
            change_24h = price - first
        if change_percent_24h is None:
            reference = price - change_24h
            change_percent_24h = (change_24h / reference * 100) if reference else 0.0

        prices = [p.price for p in points]
        high = max(prices) if high_24h is None else high_24h
        low = min(prices) if low_24h is None else low_24h

        return cls(
            symbol=symbol,
            name=name,
            category=category,
            current_price=price,
            change_24h=change_24h,
            change_percent_24h=change_percent_24h,
            high_24h=max(high, price),
            low_24h=min(low, price),
            price_history=points,
            last_updated=time.time() if last_updated is None else last_updated,
            is_real_time=False,
        )


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached snapshot with its write time and expiry (Unix seconds)."""

    data: MarketData
    timestamp: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict:
        return {
            "data": self.data.to_dict(),
            "timestamp": self.timestamp,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CacheEntry:
        return cls(
            data=MarketData.from_dict(raw["data"]),
            timestamp=float(raw["timestamp"]),
            expires_at=float(raw["expiresAt"]),
        )


@dataclass(frozen=True, slots=True)
class MarketRequest:
    """One logical quote request against a provider chain."""

    symbol: str
    category: str
    instrument: str | None = None  # per-instrument chain override
    skip_retry: bool = False
    base_value: float | None = None


@dataclass(frozen=True, slots=True)
class MarketResponse:
    """What the Request Client hands back: the raw payload and who produced it.

    ``data`` is the payload already parsed by the answering provider.
    """

    provider: str
    payload: Any
    status: int = 200
    simulated: bool = False
    data: MarketData | None = None
