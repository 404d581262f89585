"""Tests for market data models."""

from dataclasses import replace

import pytest

from pricepulse.market.models import (
    CacheEntry,
    MarketData,
    PricePoint,
    bounded_history,
)


class TestMarketData:
    """Unit tests for the MarketData snapshot."""

    def test_from_history_derives_fields(self):
        """Test that missing quote fields are derived from the series."""
        history = [PricePoint(1.0, 100.0), PricePoint(2.0, 120.0), PricePoint(3.0, 110.0)]
        data = MarketData.from_history("BTC", "Bitcoin", "criptomonedas", history, last_updated=3.0)

        assert data.current_price == 110.0
        assert data.change_24h == 10.0
        assert data.change_percent_24h == pytest.approx(10.0)
        assert data.high_24h == 120.0
        assert data.low_24h == 100.0
        assert data.is_real_time is False
        assert data.last_updated == 3.0

    def test_from_history_widens_high_low(self):
        """Test that explicit high/low are widened to bracket the current price."""
        history = [PricePoint(1.0, 100.0)]
        data = MarketData.from_history(
            "X", "X", "forex", history, current_price=105.0, high_24h=102.0, low_24h=101.0
        )
        assert data.high_24h == 105.0
        assert data.low_24h == 101.0

    def test_from_history_rejects_empty(self):
        """Test that an empty series is rejected."""
        with pytest.raises(ValueError):
            MarketData.from_history("X", "X", "forex", [])

    def test_direction(self, make_market_data):
        """Test direction for rising, falling and flat snapshots."""
        assert make_market_data(prices=(100.0, 110.0)).direction == "up"
        assert make_market_data(prices=(110.0, 100.0)).direction == "down"
        assert make_market_data(prices=(100.0, 100.0)).direction == "flat"

    def test_stale_flags_not_real_time(self, make_market_data):
        """Test that stale() clears is_real_time and can move last_updated."""
        live = replace(make_market_data(), is_real_time=True)
        stale = live.stale(last_updated=42.0)

        assert stale.is_real_time is False
        assert stale.last_updated == 42.0
        assert stale.current_price == live.current_price

    def test_to_dict(self, make_market_data):
        """Test serialization shape."""
        result = make_market_data().to_dict()
        assert result["symbol"] == "BTC"
        assert result["category"] == "criptomonedas"
        assert result["direction"] == "up"
        assert result["price_history"][-1] == {"timestamp": 4600.0, "price": 110.0}

    def test_from_dict_round_trip(self, make_market_data):
        """Test that from_dict() inverts to_dict()."""
        data = make_market_data(prices=(1.0, 2.0, 3.0))
        assert MarketData.from_dict(data.to_dict()) == data

    def test_from_dict_rejects_empty_history(self, make_market_data):
        """Test that a stored snapshot without history is invalid."""
        raw = make_market_data().to_dict()
        raw["price_history"] = []
        with pytest.raises(ValueError):
            MarketData.from_dict(raw)

    def test_immutability(self, make_market_data):
        """Test that MarketData is frozen."""
        data = make_market_data()
        with pytest.raises(AttributeError):
            data.current_price = 1.0  # type: ignore[misc]


class TestBoundedHistory:
    """Tests for history truncation."""

    def test_keeps_most_recent(self):
        """Test that the oldest points are evicted first."""
        points = [PricePoint(float(i), float(i)) for i in range(150)]
        bounded = bounded_history(points)
        assert len(bounded) == 100
        assert bounded[0].timestamp == 50.0
        assert bounded[-1].timestamp == 149.0

    def test_short_history_untouched(self):
        """Test that short series pass through."""
        points = [PricePoint(1.0, 1.0)]
        assert bounded_history(points) == tuple(points)


class TestCacheEntry:
    """Tests for CacheEntry."""

    def test_expiry_boundary(self, make_market_data):
        """Test that an entry expires strictly after expires_at."""
        entry = CacheEntry(data=make_market_data(), timestamp=0.0, expires_at=10.0)
        assert entry.is_expired(9.0) is False
        assert entry.is_expired(10.0) is False
        assert entry.is_expired(11.0) is True

    def test_to_dict_keys(self, make_market_data):
        """Test the stored text format."""
        entry = CacheEntry(data=make_market_data(), timestamp=1.0, expires_at=2.0)
        raw = entry.to_dict()
        assert set(raw) == {"data", "timestamp", "expiresAt"}
        assert CacheEntry.from_dict(raw) == entry
