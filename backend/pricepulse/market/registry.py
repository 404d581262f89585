"""Provider registry: which upstream serves which instrument, and in what order.

Static configuration only. Every chain ends in MOCK, which is answered by the
simulator and cannot fail.
"""

from __future__ import annotations

MOCK = "MOCK"

# Canonical category keys
CRYPTO = "criptomonedas"
FOREX = "forex"
INDICES = "indices"
COMMODITIES = "materias-primas"
DERIVATIVES = "derivados"
SYNTHETIC = "sinteticos"
BASKETS = "baskets"
STOCKS = "acciones"

CATEGORY_ALIASES: dict[str, str] = {
    "cripto": CRYPTO,
    "crypto": CRYPTO,
    "criptomonedas": CRYPTO,
    "forex": FOREX,
    "divisas": FOREX,
    "indices": INDICES,
    "índices": INDICES,
    "materias-primas": COMMODITIES,
    "commodities": COMMODITIES,
    "derivados": DERIVATIVES,
    "derivatives": DERIVATIVES,
    "sinteticos": SYNTHETIC,
    "sintéticos": SYNTHETIC,
    "synthetic": SYNTHETIC,
    "volatility": SYNTHETIC,
    "boom": SYNTHETIC,
    "crash": SYNTHETIC,
    "baskets": BASKETS,
    "acciones": STOCKS,
    "stocks": STOCKS,
    "equities": STOCKS,
}

# Categories with no usable upstream in the current provider landscape
SIMULATION_ONLY_CATEGORIES: frozenset[str] = frozenset({SYNTHETIC, DERIVATIVES, BASKETS, STOCKS})

API_URLS: dict[str, str] = {
    "COIN_GECKO": "https://api.coingecko.com/api/v3",
    "BINANCE": "https://api.binance.com",
    "TWELVE_DATA": "https://api.twelvedata.com",
    "COINCAP": "https://api.coincap.io/v2",
    "ALPHA_VANTAGE": "https://www.alphavantage.co/query",
    "POLYGON_IO": "https://api.polygon.io/v2",
    "DERIV": "https://deriv-api.deriv.com/api",
    "YAHOO_FINANCE": "https://query1.finance.yahoo.com/v8/finance",
}

# Local dev proxy paths (appended to MarketSettings.proxy_base_url)
PROXY_PATHS: dict[str, str] = {
    "COIN_GECKO": "/proxy/coingecko",
    "BINANCE": "/proxy/binance",
    "TWELVE_DATA": "/proxy/twelvedata",
    "COINCAP": "/proxy/coincap",
    "POLYGON_IO": "/proxy/polygon",
    "ALPHA_VANTAGE": "/proxy/alphavantage",
    "DERIV": "/proxy/deriv",
    "YAHOO_FINANCE": "/proxy/yahoo",
}

PROVIDER_CHAINS: dict[str, tuple[str, ...]] = {
    CRYPTO: ("COIN_GECKO", "COINCAP", "BINANCE", MOCK),
    FOREX: ("TWELVE_DATA", "ALPHA_VANTAGE", "YAHOO_FINANCE", MOCK),
    INDICES: ("TWELVE_DATA", "POLYGON_IO", "YAHOO_FINANCE", MOCK),
    COMMODITIES: ("TWELVE_DATA", "ALPHA_VANTAGE", "YAHOO_FINANCE", MOCK),
    SYNTHETIC: ("DERIV", MOCK),
    DERIVATIVES: ("DERIV", MOCK),
    BASKETS: ("DERIV", MOCK),
    STOCKS: ("POLYGON_IO", "TWELVE_DATA", "YAHOO_FINANCE", MOCK),
}

# Per-instrument overrides, checked before the category chain
INSTRUMENT_CHAINS: dict[str, tuple[str, ...]] = {
    "BTC": ("BINANCE", "COIN_GECKO", MOCK),
    "ETH": ("BINANCE", "COIN_GECKO", MOCK),
    "BTC/USD": ("BINANCE", "COIN_GECKO", MOCK),
    "ETH/USD": ("BINANCE", "COIN_GECKO", MOCK),
    "EUR/USD": ("TWELVE_DATA", "YAHOO_FINANCE", MOCK),
    "SPX": ("TWELVE_DATA", "YAHOO_FINANCE", MOCK),
    "volatility-50": (MOCK,),
    "volatility-75": (MOCK,),
    "AAPL": ("POLYGON_IO", "TWELVE_DATA", "YAHOO_FINANCE", MOCK),
    "MSFT": ("POLYGON_IO", "TWELVE_DATA", "YAHOO_FINANCE", MOCK),
    "AMZN": ("POLYGON_IO", "TWELVE_DATA", "YAHOO_FINANCE", MOCK),
    "GOOGL": ("POLYGON_IO", "TWELVE_DATA", "YAHOO_FINANCE", MOCK),
    "NVDA": ("POLYGON_IO", "TWELVE_DATA", "YAHOO_FINANCE", MOCK),
}

# Preferred streaming provider per category. DERIV and POLYGON_IO categories
# are simulation-only by default; they stream live only when
# MarketSettings.simulation_only_categories leaves them out.
STREAM_PROVIDERS: dict[str, str] = {
    CRYPTO: "BINANCE",
    FOREX: "TWELVE_DATA",
    INDICES: "TWELVE_DATA",
    COMMODITIES: "TWELVE_DATA",
    STOCKS: "POLYGON_IO",
    DERIVATIVES: "DERIV",
    SYNTHETIC: "DERIV",
    BASKETS: "DERIV",
}

# Symbol fragments that never have a public WebSocket
NO_WEBSOCKET_SUPPORT: tuple[str, ...] = (
    "vol50", "vol75", "vol100", "baskets-enrg", "crash-1000", "boom-1000",
)

# The only indices with a reliable quote stream
STREAMABLE_INDICES: frozenset[str] = frozenset({"ustec", "us500", "us30", "uk100", "germany40"})

STREAMABLE_CATEGORIES: frozenset[str] = frozenset({CRYPTO, FOREX, INDICES, STOCKS, DERIVATIVES, BASKETS})

# Cache TTL in seconds
CACHE_TTL: dict[str, float] = {
    CRYPTO: 120.0,
    FOREX: 300.0,
    INDICES: 300.0,
    COMMODITIES: 300.0,
    SYNTHETIC: 60.0,
    DERIVATIVES: 60.0,
    BASKETS: 60.0,
    STOCKS: 300.0,
}
DEFAULT_CACHE_TTL = 300.0

FAST_TICK_SUFFIX = "-1s"


def normalize_category(category: str) -> str:
    """Map any known alias ('cripto', 'volatility', 'stocks', ...) to its canonical key."""
    key = category.strip().lower()
    return CATEGORY_ALIASES.get(key, key)


def provider_chain(category: str, instrument: str | None = None) -> tuple[str, ...]:
    """Ordered fallback providers for an instrument. Always ends in MOCK."""
    if instrument and instrument in INSTRUMENT_CHAINS:
        chain = INSTRUMENT_CHAINS[instrument]
    else:
        chain = PROVIDER_CHAINS.get(normalize_category(category), ())
    if not chain or chain[-1] != MOCK:
        chain = (*chain, MOCK)
    return chain


def cache_ttl(category: str) -> float:
    return CACHE_TTL.get(normalize_category(category), DEFAULT_CACHE_TTL)


def has_websocket_support(symbol: str, category: str) -> bool:
    """Whether an instrument can be streamed from a real upstream at all."""
    sym = symbol.lower()
    cat = category.strip().lower()

    if any(fragment in sym for fragment in NO_WEBSOCKET_SUPPORT):
        return False
    if (
        sym.startswith("vol")
        or "crash" in sym
        or "boom" in sym
        or (cat == BASKETS and "enrg" in sym)
        or cat in ("volatility", "boom", "crash")
    ):
        return False

    canonical = normalize_category(cat)
    if canonical == INDICES and sym not in STREAMABLE_INDICES:
        return False
    return canonical in STREAMABLE_CATEGORIES


def is_fast_tick(symbol: str) -> bool:
    return symbol.lower().endswith(FAST_TICK_SUFFIX)
