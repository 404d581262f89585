"""Market data core for PricePulse.

Public API:
    MarketData            - Immutable instrument snapshot dataclass
    MarketSettings        - Runtime configuration, usually from_env()
    MarketDataService     - Orchestrator: get_market_data / subscribe, never raises
    MarketContext         - Owns cache, client, simulator and streams; start()/stop()
    create_market_context - Factory that wires a MarketContext from settings
    create_stream_router  - FastAPI router factory for snapshot and SSE endpoints
"""

from .factory import MarketContext, create_market_context
from .models import MarketData, PricePoint
from .service import MarketDataService
from .settings import MarketSettings
from .stream import create_stream_router

__all__ = [
    "MarketData",
    "PricePoint",
    "MarketSettings",
    "MarketDataService",
    "MarketContext",
    "create_market_context",
    "create_stream_router",
]
