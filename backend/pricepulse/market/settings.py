"""Runtime configuration for the market data core."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .registry import SIMULATION_ONLY_CATEGORIES


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else default


@dataclass(frozen=True, slots=True)
class HttpConfig:
    """Request Client knobs. Durations are in seconds."""

    timeout: float = 12.0
    retry_attempts: int = 3
    initial_backoff: float = 0.3
    max_backoff: float = 10.0
    backoff_jitter: float = 0.1  # +/- fraction applied to each sleep
    batch_size: int = 5
    batch_pause: float = 0.3


@dataclass(frozen=True, slots=True)
class WebSocketConfig:
    """Connection Manager knobs. Durations are in seconds."""

    connection_timeout: float = 10.0
    reconnect_attempts: int = 3
    reconnect_delay: float = 2.0
    heartbeat_interval: float = 30.0
    stream_interval: float = 2.0
    fast_stream_interval: float = 1.0


@dataclass(frozen=True, slots=True)
class MarketSettings:
    """Everything the market data context needs, loaded once at startup."""

    force_mock_data: bool = False
    force_simulation: bool = False
    use_proxy: bool = False
    proxy_base_url: str = "http://localhost:3000"
    cache_dir: str | None = None
    simulation_only_categories: frozenset[str] = SIMULATION_ONLY_CATEGORIES
    api_keys: dict[str, str] = field(default_factory=dict)
    http: HttpConfig = field(default_factory=HttpConfig)
    websocket: WebSocketConfig = field(default_factory=WebSocketConfig)

    def api_key(self, provider: str) -> str:
        return self.api_keys.get(provider, "")

    @classmethod
    def from_env(cls) -> MarketSettings:
        """Build settings from environment variables.

        - PRICEPULSE_FORCE_MOCK_DATA   -> never call upstream APIs
        - PRICEPULSE_FORCE_SIMULATION  -> never open WebSockets
        - PRICEPULSE_USE_PROXY / PRICEPULSE_PROXY_BASE_URL -> dev proxy routing
        - PRICEPULSE_CACHE_DIR         -> enables the file-backed durable cache
        - PRICEPULSE_HTTP_TIMEOUT      -> per-request timeout in seconds
        - TWELVE_DATA_API_KEY, ALPHA_VANTAGE_API_KEY, POLYGON_API_KEY, COIN_API_KEY
        """
        api_keys = {
            "TWELVE_DATA": os.environ.get("TWELVE_DATA_API_KEY", "").strip(),
            "ALPHA_VANTAGE": os.environ.get("ALPHA_VANTAGE_API_KEY", "").strip(),
            "POLYGON_IO": os.environ.get("POLYGON_API_KEY", "").strip(),
            "COIN_API": os.environ.get("COIN_API_KEY", "").strip(),
        }
        cache_dir = os.environ.get("PRICEPULSE_CACHE_DIR", "").strip() or None

        return cls(
            force_mock_data=_env_flag("PRICEPULSE_FORCE_MOCK_DATA"),
            force_simulation=_env_flag("PRICEPULSE_FORCE_SIMULATION"),
            use_proxy=_env_flag("PRICEPULSE_USE_PROXY"),
            proxy_base_url=os.environ.get("PRICEPULSE_PROXY_BASE_URL", "http://localhost:3000").strip(),
            cache_dir=cache_dir,
            api_keys={k: v for k, v in api_keys.items() if v},
            http=HttpConfig(timeout=_env_float("PRICEPULSE_HTTP_TIMEOUT", 12.0)),
        )
