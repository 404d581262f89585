"""Seed prices and per-category parameters for the market simulator."""

from __future__ import annotations

# Per-category simulation profile
# volatility: max fractional move per hourly sample
# trend_strength: how strongly the daily trend biases each sample (0..1)
CATEGORY_PARAMS: dict[str, dict[str, float]] = {
    "criptomonedas": {"volatility": 0.05, "trend_strength": 0.6},
    "forex": {"volatility": 0.01, "trend_strength": 0.8},  # Very stable
    "indices": {"volatility": 0.02, "trend_strength": 0.7},
    "materias-primas": {"volatility": 0.03, "trend_strength": 0.5},
    "derivados": {"volatility": 0.04, "trend_strength": 0.3},
    "sinteticos": {"volatility": 0.07, "trend_strength": 0.2},  # Mostly noise
    "baskets": {"volatility": 0.025, "trend_strength": 0.65},
    "acciones": {"volatility": 0.035, "trend_strength": 0.45},
}

# Unknown categories simulate like synthetic indices
DEFAULT_CATEGORY = "sinteticos"

# Realistic starting prices (USD) per category; "default" covers unlisted symbols
SEED_PRICES: dict[str, dict[str, float]] = {
    "criptomonedas": {
        "BTC": 27500.0,
        "ETH": 1850.0,
        "BNB": 215.0,
        "XRP": 0.62,
        "ADA": 0.38,
        "DOGE": 0.089,
        "SOL": 102.0,
        "DOT": 5.9,
        "SHIB": 0.00002232,
        "AVAX": 39.0,
        "MATIC": 0.98,
        "LTC": 70.0,
        "BTC/USD": 27500.0,
        "ETH/USD": 1850.0,
        "default": 500.0,
    },
    "forex": {
        "EUR/USD": 1.07,
        "GBP/USD": 1.25,
        "USD/JPY": 156.37,
        "USD/CHF": 0.905,
        "USD/CAD": 1.375,
        "EUR/GBP": 0.854,
        "default": 1.0,
    },
    "indices": {
        "SPX": 5200.0,
        "NASDAQ": 16450.0,
        "DJI": 39000.0,
        "FTSE": 8000.0,
        "DAX": 18000.0,
        "NIKKEI": 38000.0,
        "default": 10000.0,
    },
    "materias-primas": {
        "GOLD": 2300.0,
        "SILVER": 28.0,
        "OIL": 82.0,
        "NGAS": 2.1,
        "COPPER": 4.55,
        "CORN": 442.0,
        "WHEAT": 608.0,
        "default": 100.0,
    },
    "derivados": {"default": 10000.0},
    "sinteticos": {
        "volatility-10": 10000.0,
        "volatility-25": 25000.0,
        "volatility-50": 50000.0,
        "volatility-75": 75000.0,
        "volatility-100": 100000.0,
        "boom-1000": 16000.0,
        "crash-1000": 17000.0,
        "default": 10000.0,
    },
    "baskets": {
        "FAANG": 15000.0,
        "ENRG": 12000.0,
        "TECH": 18000.0,
        "BANK": 9000.0,
        "HLTH": 1567.89,
        "GAME": 945.32,
        "AUTO": 1123.45,
        "REIT": 756.78,
        "AIML": 1789.23,
        "CRYP": 2134.56,
        "default": 10000.0,
    },
    "acciones": {
        "AAPL": 192.53,
        "MSFT": 378.94,
        "GOOGL": 143.67,
        "AMZN": 145.23,
        "TSLA": 248.42,
        "NVDA": 487.56,
        "META": 342.89,
        "NFLX": 456.78,
        "DIS": 89.67,
        "JPM": 167.45,
        "KO": 58.34,
        "BAC": 32.45,
        "default": 150.0,
    },
}

FALLBACK_PRICE = 500.0

INSTRUMENT_NAMES: dict[str, dict[str, str]] = {
    "criptomonedas": {
        "BTC": "Bitcoin",
        "ETH": "Ethereum",
        "BNB": "Binance Coin",
        "XRP": "Ripple",
        "ADA": "Cardano",
        "DOGE": "Dogecoin",
        "SOL": "Solana",
        "DOT": "Polkadot",
        "SHIB": "Shiba Inu",
        "AVAX": "Avalanche",
        "MATIC": "Polygon",
        "LTC": "Litecoin",
        "BTC/USD": "Bitcoin/USD",
        "ETH/USD": "Ethereum/USD",
    },
    "indices": {
        "SPX": "S&P 500",
        "NASDAQ": "NASDAQ Composite",
        "DJI": "Dow Jones Industrial Average",
        "FTSE": "FTSE 100",
        "DAX": "DAX Index",
        "NIKKEI": "Nikkei 225",
    },
    "materias-primas": {
        "GOLD": "Gold",
        "SILVER": "Silver",
        "OIL": "Crude Oil WTI",
        "NGAS": "Natural Gas",
        "COPPER": "Copper",
        "CORN": "Corn",
        "WHEAT": "Wheat",
    },
    "sinteticos": {
        "volatility-10": "Volatility 10 Index",
        "volatility-25": "Volatility 25 Index",
        "volatility-50": "Volatility 50 Index",
        "volatility-75": "Volatility 75 Index",
        "volatility-100": "Volatility 100 Index",
        "boom-1000": "Boom 1000 Index",
        "crash-1000": "Crash 1000 Index",
    },
    "baskets": {
        "FAANG": "FAANG Tech Basket",
        "ENRG": "Energy Basket",
        "TECH": "Technology Basket",
        "BANK": "Banking Basket",
        "HLTH": "Healthcare Basket",
        "GAME": "Gaming & Entertainment Basket",
        "AUTO": "Automotive Basket",
        "REIT": "Real Estate Basket",
        "AIML": "AI & Machine Learning Basket",
        "CRYP": "Crypto Index Basket",
    },
    "acciones": {
        "AAPL": "Apple Inc.",
        "MSFT": "Microsoft Corp.",
        "GOOGL": "Alphabet Inc.",
        "AMZN": "Amazon.com Inc.",
        "TSLA": "Tesla Inc.",
        "NVDA": "NVIDIA Corp.",
        "META": "Meta Platforms Inc.",
        "NFLX": "Netflix Inc.",
        "DIS": "Walt Disney Co.",
        "JPM": "JPMorgan Chase & Co.",
        "KO": "Coca-Cola Co.",
        "BAC": "Bank of America Corp.",
    },
}


def base_price(symbol: str, category: str) -> float:
    prices = SEED_PRICES.get(category)
    if not prices:
        return FALLBACK_PRICE
    return prices.get(symbol, prices.get("default", FALLBACK_PRICE))


def instrument_name(symbol: str, category: str) -> str:
    return INSTRUMENT_NAMES.get(category, {}).get(symbol, symbol)
