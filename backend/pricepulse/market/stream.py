"""HTTP snapshot and SSE streaming endpoints for market data."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from .models import MarketData
from .service import MarketDataService

logger = logging.getLogger(__name__)


def create_stream_router(service: MarketDataService) -> APIRouter:
    """Create the market data router bound to a service.

    This factory pattern lets us inject the MarketDataService without globals.
    """
    router = APIRouter(prefix="/api", tags=["market"])

    @router.get("/market/{category}/{symbol}")
    async def get_market(category: str, symbol: str) -> dict:
        """Current snapshot for one instrument. Always 200: worst case is simulated data."""
        data = await service.get_market_data(symbol, category)
        return data.to_dict()

    @router.get("/stream/{category}/{symbol}")
    async def stream_market(category: str, symbol: str, request: Request) -> StreamingResponse:
        """SSE endpoint for live updates of one instrument.

        The client connects with EventSource and receives the current
        snapshot first, then one event per update:

            data: {"symbol": "BTC", "current_price": 27510.2, ...}
        """
        return StreamingResponse(
            _generate_events(service, symbol, category, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    return router


def _format_event(data: MarketData) -> str:
    return f"data: {json.dumps(data.to_dict())}\n\n"


async def _generate_events(
    service: MarketDataService,
    symbol: str,
    category: str,
    request: Request,
    poll_interval: float = 1.0,
) -> AsyncGenerator[str, None]:
    """Async generator that yields SSE-formatted market data events.

    Subscribes on entry and unsubscribes when the client disconnects
    (detected via request.is_disconnected() every ``poll_interval``).
    """
    # Tell the client to retry after 1 second if the connection drops
    yield "retry: 1000\n\n"

    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected: %s (%s:%s)", client_ip, category, symbol)

    snapshot = await service.get_market_data(symbol, category)
    yield _format_event(snapshot)

    queue: asyncio.Queue[MarketData] = asyncio.Queue()
    unsubscribe = await service.subscribe(symbol, category, queue.put_nowait, initial_data=snapshot)

    try:
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break
            try:
                update = await asyncio.wait_for(queue.get(), timeout=poll_interval)
            except asyncio.TimeoutError:
                continue
            # A new stream replays the snapshot we already sent
            if update is snapshot:
                continue
            yield _format_event(update)
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
    finally:
        unsubscribe()
