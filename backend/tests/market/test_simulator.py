"""Tests for the market simulator."""

from unittest.mock import patch

from pricepulse.market.models import MarketData, PricePoint
from pricepulse.market.registry import CRYPTO, FOREX, STOCKS, SYNTHETIC
from pricepulse.market.seed_prices import FALLBACK_PRICE, base_price, instrument_name
from pricepulse.market.simulator import MarketSimulator, infer_category, symbol_seed

NOW = 1_700_000_000.0


class TestMarketSimulator:
    """Unit tests for MarketSimulator."""

    def test_generate_shape(self):
        """Test 24 points, current price on the last point, high/low over the series."""
        sim = MarketSimulator(seed=1, clock=lambda: NOW)
        data = sim.generate("BTC", CRYPTO)
        prices = [p.price for p in data.price_history]

        assert len(data.price_history) == 24
        assert data.current_price == prices[-1]
        assert data.high_24h == max(prices)
        assert data.low_24h == min(prices)
        assert data.is_real_time is False
        assert data.category == CRYPTO
        assert data.name == "Bitcoin"

    def test_generate_timestamps_hourly(self):
        """Test that samples are one hour apart and end at the clock time."""
        sim = MarketSimulator(seed=1, clock=lambda: NOW)
        history = sim.generate("ETH", CRYPTO).price_history

        assert history[-1].timestamp == NOW
        assert history[0].timestamp == NOW - 23 * 3600
        assert all(b.timestamp - a.timestamp == 3600 for a, b in zip(history, history[1:]))

    def test_generate_price_floor(self):
        """Test that prices never fall below 10% of the base."""
        sim = MarketSimulator(seed=3)
        base = base_price("volatility-100", SYNTHETIC)
        for _ in range(50):
            data = sim.generate("volatility-100", SYNTHETIC)
            assert min(p.price for p in data.price_history) >= base * 0.1

    def test_same_seed_reproduces(self):
        """Test that a fixed seed reproduces the same walk."""
        first = MarketSimulator(seed=7, clock=lambda: NOW).generate("AAPL", STOCKS)
        second = MarketSimulator(seed=7, clock=lambda: NOW).generate("AAPL", STOCKS)
        assert first == second

    def test_repeated_calls_evolve(self):
        """Test that repeated calls within one run do not repeat."""
        sim = MarketSimulator(seed=7, clock=lambda: NOW)
        first = sim.generate("AAPL", STOCKS)
        second = sim.generate("AAPL", STOCKS)
        assert first.price_history != second.price_history

    def test_base_value_override(self):
        """Test that an explicit base value anchors the walk."""
        sim = MarketSimulator(seed=5)
        data = sim.generate("EUR/USD", FOREX, base_value=2.0)
        assert 1.5 < data.price_history[0].price < 2.5

    def test_unknown_instrument_uses_fallbacks(self):
        """Test that unknown categories use the fallback price and default profile."""
        assert base_price("ZZZ", "nothing") == FALLBACK_PRICE
        assert instrument_name("ZZZ", "nothing") == "ZZZ"
        data = MarketSimulator(seed=5).generate("ZZZ", "nothing")
        assert len(data.price_history) == 24

    def test_generate_never_raises(self):
        """Test that a failing walk degrades to a flat baseline."""
        sim = MarketSimulator(seed=5, clock=lambda: NOW)
        with patch.object(sim, "_generate", side_effect=RuntimeError("boom")):
            data = sim.generate("BTC", CRYPTO)

        assert len(data.price_history) == 24
        assert data.high_24h == data.low_24h == data.current_price == base_price("BTC", CRYPTO)

    def test_update_appends_one_point(self, make_market_data):
        """Test that update() adds one point and keeps running high/low."""
        ticks = iter([NOW, NOW + 1])
        sim = MarketSimulator(seed=9, clock=lambda: next(ticks))
        previous = make_market_data(prices=(100.0, 105.0, 103.0))

        updated = sim.update(previous)

        assert len(updated.price_history) == 4
        assert updated.price_history[-1] == PricePoint(NOW, updated.current_price)
        assert updated.high_24h >= max(previous.high_24h, updated.current_price)
        assert updated.low_24h <= min(previous.low_24h, updated.current_price)
        assert updated.is_real_time is False
        assert updated.category == previous.category

    def test_update_bounds_history(self, make_market_data):
        """Test that history stays at 100 points."""
        previous = make_market_data(prices=tuple(100.0 + i for i in range(100)))
        updated = MarketSimulator(seed=9).update(previous)
        assert len(updated.price_history) == 100
        assert updated.price_history[0] == previous.price_history[1]

    def test_update_small_step(self, make_market_data):
        """Test that one step moves at most half the category volatility."""
        previous = make_market_data(prices=(100.0, 100.0))
        sim = MarketSimulator(seed=11)
        for _ in range(50):
            updated = sim.update(previous)
            assert abs(updated.current_price / previous.current_price - 1) <= 0.05 * 0.5 + 1e-9

    def test_update_never_raises(self, make_market_data):
        """Test that a failing step returns the input unchanged."""
        sim = MarketSimulator(seed=9)
        previous = make_market_data()
        with patch.object(sim, "_update", side_effect=RuntimeError("boom")):
            assert sim.update(previous) is previous

    def test_update_infers_missing_category(self):
        """Test that legacy snapshots without a category get one."""
        legacy = MarketData.from_history(
            "volatility-10", "Volatility 10 Index", "", [PricePoint(1.0, 10_000.0)]
        )
        updated = MarketSimulator(seed=9).update(legacy)
        assert updated.category == SYNTHETIC


class TestHelpers:
    """Tests for module-level helpers."""

    def test_symbol_seed(self):
        """Test the character-code sum seed."""
        assert symbol_seed("AB") == 65 + 66

    def test_infer_category(self):
        """Test the name/symbol heuristics."""

        def snap(symbol: str, name: str) -> MarketData:
            return MarketData.from_history(symbol, name, "", [PricePoint(1.0, 1.0)])

        assert infer_category(snap("crash-1000", "Crash 1000 Index")) == SYNTHETIC
        assert infer_category(snap("EUR/USD", "EUR/USD")) == FOREX
        assert infer_category(snap("FAANG", "FAANG Tech Basket")) == "baskets"
        assert infer_category(snap("SPX", "S&P 500 Index")) == "indices"
        assert infer_category(snap("GOLD", "Gold")) == "materias-primas"
        assert infer_category(snap("AAPL", "Apple Inc.")) == STOCKS
        assert infer_category(snap("btc-usdt", "bitcoin")) == CRYPTO
