"""Tests for the HTTP snapshot and SSE endpoints."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from pricepulse.market.factory import create_market_context
from pricepulse.market.settings import MarketSettings, WebSocketConfig
from pricepulse.market.stream import _generate_events, create_stream_router


def make_context():
    settings = MarketSettings(force_mock_data=True, websocket=WebSocketConfig(stream_interval=60.0))
    return create_market_context(settings)


class TestRouter:
    """Tests for create_stream_router."""

    def test_market_snapshot(self):
        """Test that the snapshot route returns MarketData JSON."""
        ctx = make_context()
        app = FastAPI()
        app.include_router(create_stream_router(ctx.service))

        with TestClient(app) as client:
            response = client.get("/api/market/cripto/BTC")

        assert response.status_code == 200
        body = response.json()
        assert body["symbol"] == "BTC"
        assert body["category"] == "criptomonedas"
        assert len(body["price_history"]) == 24
        assert body["is_real_time"] is False

    def test_routes_registered(self):
        """Test that both routes exist on a fresh router."""
        router = create_stream_router(make_context().service)
        paths = {route.path for route in router.routes}
        assert paths == {"/api/market/{category}/{symbol}", "/api/stream/{category}/{symbol}"}


@pytest.mark.asyncio
class TestEventStream:
    """Tests for the SSE event generator."""

    async def test_snapshot_then_unsubscribe_on_disconnect(self):
        """Test that the stream sends a retry hint and snapshot, then cleans up."""
        ctx = make_context()
        request = MagicMock()
        request.client = None
        request.is_disconnected = AsyncMock(side_effect=[False, True])

        events = [
            event
            async for event in _generate_events(
                ctx.service, "volatility-10", "sinteticos", request, poll_interval=0.01
            )
        ]

        assert events[0] == "retry: 1000\n\n"
        assert len(events) == 2
        payload = json.loads(events[1].removeprefix("data: "))
        assert payload["symbol"] == "volatility-10"
        assert ctx.subscriptions.active_connection_count == 0
        await ctx.stop()

    async def test_updates_are_forwarded(self):
        """Test that subscriber updates become SSE events."""
        settings = MarketSettings(force_mock_data=True, websocket=WebSocketConfig(stream_interval=0.02))
        ctx = create_market_context(settings)
        request = MagicMock()
        request.client = None
        request.is_disconnected = AsyncMock(side_effect=[False] * 20 + [True])

        events = [
            event
            async for event in _generate_events(
                ctx.service, "volatility-10", "sinteticos", request, poll_interval=0.05
            )
        ]
        await ctx.stop()

        prices = [json.loads(e.removeprefix("data: "))["current_price"] for e in events[1:]]
        assert len(prices) > 2
