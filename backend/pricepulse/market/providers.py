"""Upstream price providers, one class per API, plus the simulator-backed MOCK."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import abstractmethod
from typing import Any

import aiohttp

from .errors import ProviderError
from .interface import Provider
from .models import MarketData, MarketRequest, PricePoint
from .registry import API_URLS, FOREX, INDICES, MOCK, PROXY_PATHS, normalize_category
from .seed_prices import instrument_name
from .settings import MarketSettings
from .simulator import MarketSimulator

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}
HOUR = 3600.0
DAY = 24 * HOUR

COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "BNB": "binancecoin",
    "SOL": "solana",
    "XRP": "ripple",
    "DOGE": "dogecoin",
    "ADA": "cardano",
    "AVAX": "avalanche-2",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "LTC": "litecoin",
    "MATIC": "matic-network",
    "SHIB": "shiba-inu",
}

COINCAP_IDS: dict[str, str] = {**COINGECKO_IDS, "BNB": "binance-coin", "AVAX": "avalanche", "MATIC": "polygon"}

YAHOO_SYMBOLS: dict[str, str] = {
    "SPX": "^GSPC",
    "NASDAQ": "^IXIC",
    "DJI": "^DJI",
    "FTSE": "^FTSE",
    "DAX": "^GDAXI",
    "NIKKEI": "^N225",
    "GOLD": "GC=F",
    "SILVER": "SI=F",
    "OIL": "CL=F",
    "NGAS": "NG=F",
    "COPPER": "HG=F",
    "CORN": "ZC=F",
    "WHEAT": "ZW=F",
}

TWELVE_DATA_SYMBOLS: dict[str, str] = {
    "GOLD": "XAU/USD",
    "SILVER": "XAG/USD",
    "OIL": "WTI/USD",
    "NGAS": "NG/USD",
}


def base_asset(symbol: str) -> str:
    return symbol.split("/")[0].strip().upper()


def binance_pair(symbol: str) -> str:
    """'BTC' -> 'BTCUSDT', 'ETH/USD' -> 'ETHUSDT'."""
    if "/" in symbol:
        base, quote = (part.strip().upper() for part in symbol.split("/", 1))
    else:
        base, quote = symbol.strip().upper(), "USDT"
    if quote == "USD":
        quote = "USDT"
    return f"{base}{quote}"


def classify_error(provider: str, exc: BaseException) -> ProviderError:
    """Map a transport/decoding exception onto the retryable-vs-terminal taxonomy.

    Retryable: timeouts, connection failures, HTTP 429 and 5xx.
    Terminal: every other HTTP status and any malformed response.
    """
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return ProviderError(provider, "request timed out", retryable=True)
    if isinstance(exc, aiohttp.ContentTypeError):
        return ProviderError(provider, f"malformed response: {exc.message}", status=exc.status)
    if isinstance(exc, aiohttp.ClientResponseError):
        retryable = exc.status == 429 or 500 <= exc.status < 600
        return ProviderError(provider, f"HTTP {exc.status}: {exc.message}", retryable=retryable, status=exc.status)
    if isinstance(exc, (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError)):
        return ProviderError(provider, f"connection error: {exc}", retryable=True)
    if isinstance(exc, (KeyError, IndexError, TypeError, ValueError)):
        return ProviderError(provider, f"malformed response: {exc!r}")
    return ProviderError(provider, f"unexpected error: {exc!r}")


class HttpProvider(Provider):
    """Provider that answers with one JSON GET against its base URL."""

    def __init__(self, settings: MarketSettings | None = None) -> None:
        self._settings = settings or MarketSettings()

    @property
    def base_url(self) -> str:
        if self._settings.use_proxy and self.name in PROXY_PATHS:
            return self._settings.proxy_base_url.rstrip("/") + PROXY_PATHS[self.name]
        return API_URLS[self.name]

    @property
    def api_key(self) -> str:
        return self._settings.api_key(self.name)

    @abstractmethod
    def endpoint(self, request: MarketRequest) -> tuple[str, dict[str, str]]:
        """Path (relative to base_url) and query parameters for ``request``."""

    @abstractmethod
    def _parse(self, payload: Any, request: MarketRequest, now: float) -> MarketData:
        """Provider-specific payload mapping. May raise KeyError/ValueError/..."""

    def check_payload(self, payload: Any) -> None:
        """Hook for APIs that report errors inside a 200 response body."""

    async def fetch(self, session: aiohttp.ClientSession | None, request: MarketRequest) -> Any:
        if session is None:
            raise ProviderError(self.name, "no HTTP session available")

        path, params = self.endpoint(request)
        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self._settings.http.timeout)
        try:
            async with session.get(url, params=params, headers=NO_CACHE_HEADERS, timeout=timeout) as resp:
                resp.raise_for_status()
                payload = await resp.json(content_type=None)
        except Exception as e:
            raise classify_error(self.name, e) from e

        self.check_payload(payload)
        return payload

    def parse(self, payload: Any, request: MarketRequest) -> MarketData:
        try:
            return self._parse(payload, request, time.time())
        except ProviderError:
            raise
        except (KeyError, IndexError, TypeError, ValueError, ZeroDivisionError) as e:
            raise ProviderError(self.name, f"malformed payload: {e!r}") from e

    @staticmethod
    def _name(request: MarketRequest, fallback: Any = None) -> str:
        return str(fallback) if fallback else instrument_name(request.symbol, normalize_category(request.category))


class CoinGeckoProvider(HttpProvider):
    name = "COIN_GECKO"

    def endpoint(self, request: MarketRequest) -> tuple[str, dict[str, str]]:
        asset = base_asset(request.symbol)
        coin_id = COINGECKO_IDS.get(asset, asset.lower())
        return "/coins/markets", {
            "vs_currency": "usd",
            "ids": coin_id,
            "sparkline": "true",
            "price_change_percentage": "24h",
        }

    def _parse(self, payload: Any, request: MarketRequest, now: float) -> MarketData:
        if not payload:
            raise ProviderError(self.name, f"unknown coin for {request.symbol}")
        item = payload[0]
        price = float(item["current_price"])

        sparkline = (item.get("sparkline_in_7d") or {}).get("price") or []
        recent = [float(p) for p in sparkline[-24:] if p is not None]
        history = [
            PricePoint(timestamp=now - (len(recent) - i) * HOUR, price=p)
            for i, p in enumerate(recent)
        ]
        history.append(PricePoint(timestamp=now, price=price))

        return MarketData.from_history(
            request.symbol,
            self._name(request, item.get("name")),
            normalize_category(request.category),
            history,
            current_price=price,
            change_24h=float(item.get("price_change_24h") or 0.0),
            change_percent_24h=float(item.get("price_change_percentage_24h") or 0.0),
            high_24h=float(item["high_24h"]) if item.get("high_24h") is not None else None,
            low_24h=float(item["low_24h"]) if item.get("low_24h") is not None else None,
            last_updated=now,
        )


class CoinCapProvider(HttpProvider):
    name = "COINCAP"

    def endpoint(self, request: MarketRequest) -> tuple[str, dict[str, str]]:
        asset = base_asset(request.symbol)
        return f"/assets/{COINCAP_IDS.get(asset, asset.lower())}", {}

    def _parse(self, payload: Any, request: MarketRequest, now: float) -> MarketData:
        data = payload["data"]
        price = float(data["priceUsd"])
        percent = float(data.get("changePercent24h") or 0.0)
        opening = price / (1 + percent / 100) if percent > -100 else price
        history = [PricePoint(now - DAY, opening), PricePoint(now, price)]
        return MarketData.from_history(
            request.symbol,
            self._name(request, data.get("name")),
            normalize_category(request.category),
            history,
            change_percent_24h=percent,
            last_updated=now,
        )


class BinanceProvider(HttpProvider):
    name = "BINANCE"

    def endpoint(self, request: MarketRequest) -> tuple[str, dict[str, str]]:
        return "/api/v3/ticker/24hr", {"symbol": binance_pair(request.symbol)}

    def _parse(self, payload: Any, request: MarketRequest, now: float) -> MarketData:
        price = float(payload["lastPrice"])
        opened = float(payload["openPrice"])
        open_time = float(payload.get("openTime", (now - DAY) * 1000)) / 1000.0
        close_time = float(payload.get("closeTime", now * 1000)) / 1000.0
        history = [PricePoint(open_time, opened), PricePoint(max(close_time, open_time), price)]
        return MarketData.from_history(
            request.symbol,
            self._name(request),
            normalize_category(request.category),
            history,
            current_price=price,
            change_24h=float(payload["priceChange"]),
            change_percent_24h=float(payload["priceChangePercent"]),
            high_24h=float(payload["highPrice"]),
            low_24h=float(payload["lowPrice"]),
            last_updated=now,
        )


class TwelveDataProvider(HttpProvider):
    name = "TWELVE_DATA"

    def endpoint(self, request: MarketRequest) -> tuple[str, dict[str, str]]:
        symbol = TWELVE_DATA_SYMBOLS.get(request.symbol.upper(), request.symbol)
        return "/quote", {"symbol": symbol, "apikey": self.api_key}

    def check_payload(self, payload: Any) -> None:
        # Twelve Data reports errors (including rate limits) with HTTP 200
        if isinstance(payload, dict) and payload.get("status") == "error":
            code = int(payload.get("code") or 0)
            raise ProviderError(
                self.name,
                str(payload.get("message", "error response")),
                retryable=code == 429 or code >= 500,
                status=code or None,
            )

    def _parse(self, payload: Any, request: MarketRequest, now: float) -> MarketData:
        price = float(payload["close"])
        previous = float(payload["previous_close"])
        history = [PricePoint(now - DAY, previous), PricePoint(now, price)]
        return MarketData.from_history(
            request.symbol,
            self._name(request, payload.get("name")),
            normalize_category(request.category),
            history,
            change_24h=price - previous,
            change_percent_24h=float(payload.get("percent_change") or 0.0),
            high_24h=float(payload["high"]) if payload.get("high") else None,
            low_24h=float(payload["low"]) if payload.get("low") else None,
            last_updated=now,
        )


class AlphaVantageProvider(HttpProvider):
    name = "ALPHA_VANTAGE"

    def endpoint(self, request: MarketRequest) -> tuple[str, dict[str, str]]:
        if normalize_category(request.category) == FOREX and "/" in request.symbol:
            base, quote = request.symbol.upper().split("/", 1)
            return "", {
                "function": "CURRENCY_EXCHANGE_RATE",
                "from_currency": base,
                "to_currency": quote,
                "apikey": self.api_key,
            }
        return "", {"function": "GLOBAL_QUOTE", "symbol": request.symbol.upper(), "apikey": self.api_key}

    def check_payload(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        if "Note" in payload or "Information" in payload:
            # Free tier throttling message
            raise ProviderError(self.name, "rate limited", retryable=True, status=429)
        if "Error Message" in payload:
            raise ProviderError(self.name, str(payload["Error Message"]))

    def _parse(self, payload: Any, request: MarketRequest, now: float) -> MarketData:
        category = normalize_category(request.category)
        if "Realtime Currency Exchange Rate" in payload:
            rate = float(payload["Realtime Currency Exchange Rate"]["5. Exchange Rate"])
            return MarketData.from_history(
                request.symbol, self._name(request), category, [PricePoint(now, rate)], last_updated=now
            )

        quote = payload["Global Quote"]
        price = float(quote["05. price"])
        previous = float(quote["08. previous close"])
        percent = float(str(quote.get("10. change percent", "0")).rstrip("%") or 0.0)
        return MarketData.from_history(
            request.symbol,
            self._name(request),
            category,
            [PricePoint(now - DAY, previous), PricePoint(now, price)],
            change_24h=float(quote.get("09. change") or price - previous),
            change_percent_24h=percent,
            high_24h=float(quote["03. high"]),
            low_24h=float(quote["04. low"]),
            last_updated=now,
        )


class PolygonProvider(HttpProvider):
    name = "POLYGON_IO"

    @staticmethod
    def ticker(request: MarketRequest) -> str:
        category = normalize_category(request.category)
        if category == FOREX:
            return "C:" + request.symbol.replace("/", "").upper()
        if category == INDICES:
            return "I:" + request.symbol.upper()
        return request.symbol.upper()

    def endpoint(self, request: MarketRequest) -> tuple[str, dict[str, str]]:
        return f"/aggs/ticker/{self.ticker(request)}/prev", {"adjusted": "true", "apiKey": self.api_key}

    def _parse(self, payload: Any, request: MarketRequest, now: float) -> MarketData:
        results = payload.get("results") or []
        if not results:
            raise ProviderError(self.name, f"no aggregates for {request.symbol}")
        bar = results[0]
        opened_at = float(bar["t"]) / 1000.0
        history = [PricePoint(opened_at, float(bar["o"])), PricePoint(max(now, opened_at), float(bar["c"]))]
        return MarketData.from_history(
            request.symbol,
            self._name(request),
            normalize_category(request.category),
            history,
            high_24h=float(bar["h"]),
            low_24h=float(bar["l"]),
            last_updated=now,
        )


class YahooFinanceProvider(HttpProvider):
    name = "YAHOO_FINANCE"

    @staticmethod
    def yahoo_symbol(request: MarketRequest) -> str:
        symbol = request.symbol.upper()
        if symbol in YAHOO_SYMBOLS:
            return YAHOO_SYMBOLS[symbol]
        if normalize_category(request.category) == FOREX:
            return symbol.replace("/", "") + "=X"
        return symbol

    def endpoint(self, request: MarketRequest) -> tuple[str, dict[str, str]]:
        return f"/chart/{self.yahoo_symbol(request)}", {"interval": "1h", "range": "1d"}

    def _parse(self, payload: Any, request: MarketRequest, now: float) -> MarketData:
        chart = payload["chart"]
        if chart.get("error"):
            raise ProviderError(self.name, str(chart["error"]))
        result = chart["result"][0]
        meta = result["meta"]
        price = float(meta["regularMarketPrice"])

        closes = result["indicators"]["quote"][0].get("close") or []
        history = [
            PricePoint(float(ts), float(close))
            for ts, close in zip(result.get("timestamp") or [], closes)
            if close is not None
        ]
        if not history or history[-1].timestamp < now:
            history.append(PricePoint(now, price))

        previous = meta.get("chartPreviousClose")
        return MarketData.from_history(
            request.symbol,
            self._name(request, meta.get("longName") or meta.get("shortName")),
            normalize_category(request.category),
            history,
            current_price=price,
            change_24h=price - float(previous) if previous else None,
            high_24h=float(meta["regularMarketDayHigh"]) if meta.get("regularMarketDayHigh") else None,
            low_24h=float(meta["regularMarketDayLow"]) if meta.get("regularMarketDayLow") else None,
            last_updated=now,
        )


class DerivProvider(HttpProvider):
    name = "DERIV"

    def endpoint(self, request: MarketRequest) -> tuple[str, dict[str, str]]:
        return "/ticks", {"ticks": request.symbol.lower(), "count": "500"}

    def _parse(self, payload: Any, request: MarketRequest, now: float) -> MarketData:
        ticks = payload["ticks"]
        history = [PricePoint(float(t["epoch"]), float(t["quote"])) for t in ticks]
        return MarketData.from_history(
            request.symbol,
            self._name(request),
            normalize_category(request.category),
            history,
            last_updated=now,
        )


class MockProvider(Provider):
    """Terminal chain entry: answers from the simulator without any I/O."""

    name = MOCK
    simulated = True

    def __init__(self, simulator: MarketSimulator) -> None:
        self._simulator = simulator

    async def fetch(self, session: aiohttp.ClientSession | None, request: MarketRequest) -> Any:
        snapshot = self._simulator.generate(
            request.symbol, normalize_category(request.category), request.base_value
        )
        return snapshot.to_dict()

    def parse(self, payload: Any, request: MarketRequest) -> MarketData:
        try:
            return MarketData.from_dict(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(self.name, f"malformed payload: {e!r}") from e


HTTP_PROVIDERS: tuple[type[HttpProvider], ...] = (
    CoinGeckoProvider,
    CoinCapProvider,
    BinanceProvider,
    TwelveDataProvider,
    AlphaVantageProvider,
    PolygonProvider,
    YahooFinanceProvider,
    DerivProvider,
)


def build_providers(settings: MarketSettings, simulator: MarketSimulator) -> dict[str, Provider]:
    """Instantiate every known provider, keyed by registry id."""
    providers: dict[str, Provider] = {cls.name: cls(settings) for cls in HTTP_PROVIDERS}
    providers[MOCK] = MockProvider(simulator)
    return providers
