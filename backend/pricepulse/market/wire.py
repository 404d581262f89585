"""Upstream WebSocket endpoints and push-message mapping, one table per concern."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import urlencode

from .models import MAX_HISTORY_POINTS, MarketData, PricePoint, bounded_history
from .providers import binance_pair
from .registry import BASKETS
from .settings import MarketSettings

logger = logging.getLogger(__name__)

HISTORY_POINT_INTERVAL = 60.0  # Seconds between appended history points


@dataclass(frozen=True, slots=True)
class Tick:
    """The fields a push message can carry. Only ``price`` is mandatory."""

    price: float
    high: float | None = None
    low: float | None = None
    change_percent: float | None = None


@dataclass(frozen=True, slots=True)
class StreamEndpoint:
    url: str
    subscription_message: Any = None
    heartbeat_message: Any = None


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def parse_binance(message: Any) -> Tick | None:
    """24h ticker push: {"e": "24hrTicker", "c": last, "h", "l", "P": pct}."""
    if not isinstance(message, dict) or message.get("e") != "24hrTicker":
        return None
    return Tick(
        price=float(message["c"]),
        high=_optional_float(message.get("h")),
        low=_optional_float(message.get("l")),
        change_percent=_optional_float(message.get("P")),
    )


def parse_twelve_data(message: Any) -> Tick | None:
    # Subscribe-status and heartbeat events carry no price
    if not isinstance(message, dict) or "price" not in message:
        return None
    return Tick(price=float(message["price"]))


def parse_deriv(message: Any) -> Tick | None:
    tick = message.get("tick") if isinstance(message, dict) else None
    if not tick:
        return None
    return Tick(price=float(tick["quote"]))


def parse_polygon(message: Any) -> Tick | None:
    """Polygon pushes arrays of events; the last trade ("ev": "T") wins."""
    events = message if isinstance(message, list) else [message]
    trades = [e for e in events if isinstance(e, dict) and e.get("ev") == "T"]
    if not trades:
        return None
    return Tick(price=float(trades[-1]["p"]))


WIRE_PARSERS: dict[str, Callable[[Any], Tick | None]] = {
    "BINANCE": parse_binance,
    "TWELVE_DATA": parse_twelve_data,
    "DERIV": parse_deriv,
    "POLYGON_IO": parse_polygon,
}


def parse_message(provider: str, message: Any) -> Tick | None:
    """Map one push message to a Tick, or None if it is not a usable quote."""
    parser = WIRE_PARSERS.get(provider)
    if parser is None:
        return None
    try:
        tick = parser(message)
    except (KeyError, IndexError, TypeError, ValueError) as e:
        logger.warning("Dropping malformed %s message: %s", provider, e)
        return None
    if tick is not None and tick.price <= 0:
        logger.warning("Dropping %s message with non-positive price %s", provider, tick.price)
        return None
    return tick


def apply_tick(
    last: MarketData,
    tick: Tick,
    now: float,
    min_interval: float = HISTORY_POINT_INTERVAL,
    limit: int = MAX_HISTORY_POINTS,
) -> MarketData:
    """Fold a live quote into the previous snapshot.

    The 24h change is measured against the same opening reference as
    ``last`` unless the push carries its own percentage. A history point is
    appended only when ``min_interval`` has passed since the newest one.
    """
    price = tick.price
    if tick.change_percent is not None and tick.change_percent > -100:
        change_percent = tick.change_percent
        change = price - price / (1 + change_percent / 100)
    else:
        reference = last.current_price - last.change_24h
        change = price - reference
        change_percent = (change / reference * 100) if reference else 0.0

    high = tick.high if tick.high is not None else last.high_24h
    low = tick.low if tick.low is not None else last.low_24h

    history = last.price_history
    if not history or now - history[-1].timestamp >= min_interval:
        history = bounded_history((*history, PricePoint(now, price)), limit)

    return replace(
        last,
        current_price=price,
        change_24h=change,
        change_percent_24h=change_percent,
        high_24h=max(high, price),
        low_24h=min(low, price),
        price_history=history,
        last_updated=now,
        is_real_time=True,
    )


def stream_endpoint(
    symbol: str,
    category: str,
    provider: str,
    settings: MarketSettings,
) -> StreamEndpoint | None:
    """Where (and how) to subscribe to live quotes, or None if ``provider`` has no stream.

    Keyed providers resolve to None when no API key is configured.
    """
    if provider == "BINANCE":
        stream = f"{binance_pair(symbol).lower()}@ticker"
        return StreamEndpoint(
            url=f"wss://stream.binance.com:9443/ws/{stream}",
            subscription_message={"method": "SUBSCRIBE", "params": [stream], "id": 1},
        )

    if provider == "TWELVE_DATA":
        key = settings.api_key("TWELVE_DATA")
        if not key:
            return None
        query = urlencode({"apikey": key, "symbols": symbol})
        return StreamEndpoint(
            url=f"wss://ws.twelvedata.com/v1/quotes/price?{query}",
            subscription_message={"action": "subscribe", "params": {"symbols": symbol}},
            heartbeat_message={"action": "heartbeat"},
        )

    if provider == "POLYGON_IO":
        key = settings.api_key("POLYGON_IO")
        if not key:
            return None
        return StreamEndpoint(
            url=f"wss://socket.polygon.io/stocks?{urlencode({'apiKey': key})}",
            subscription_message={"action": "subscribe", "params": f"T.{symbol.upper()}"},
        )

    if provider == "DERIV":
        sym = symbol.lower()
        path = f"basket/{sym}" if category == BASKETS else sym
        return StreamEndpoint(url=f"wss://ws.deriv.com/v3/{path}", subscription_message={"ticks": sym})

    # COIN_GECKO, COINCAP, YAHOO_FINANCE and anything unknown
    return None
