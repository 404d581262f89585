"""Tests for MarketDataCache and its durable stores."""

import json
from dataclasses import replace

import pytest

from pricepulse.market.cache import (
    INDEX_KEY,
    STALE_GRACE,
    FileStore,
    MarketDataCache,
    MemoryStore,
    durable_key,
)
from pricepulse.market.registry import CRYPTO


class Clock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestMarketDataCache:
    """Unit tests for the two-tier cache."""

    def test_put_and_get(self, make_market_data):
        """Test writing and reading a snapshot."""
        cache = MarketDataCache(clock=Clock())
        data = make_market_data()
        cache.put("BTC", CRYPTO, data)
        assert cache.get("BTC", CRYPTO) == data

    def test_miss(self):
        """Test that unknown instruments read as None."""
        assert MarketDataCache().get("BTC", CRYPTO) is None

    def test_fresh_read_keeps_real_time_flag(self, make_market_data):
        """Test that reading at T-1 returns is_real_time unchanged."""
        clock = Clock()
        cache = MarketDataCache(clock=clock)
        data = replace(make_market_data(), is_real_time=True)
        cache.put("BTC", CRYPTO, data, ttl=10)

        clock.now += 9
        assert cache.get("BTC", CRYPTO).is_real_time is True

    def test_expired_read_is_flagged_stale(self, make_market_data):
        """Test that reading at T+1 returns the same prices flagged not real-time."""
        clock = Clock()
        cache = MarketDataCache(clock=clock)
        data = replace(make_market_data(), is_real_time=True)
        written_at = clock.now
        cache.put("BTC", CRYPTO, data, ttl=10)

        clock.now += 11
        stale = cache.get("BTC", CRYPTO)

        assert stale.is_real_time is False
        assert stale.last_updated == written_at
        assert stale.current_price == data.current_price
        assert stale.price_history == data.price_history

    def test_expired_read_without_stale(self, make_market_data):
        """Test that allow_stale=False turns an expired entry into a miss."""
        clock = Clock()
        cache = MarketDataCache(clock=clock)
        cache.put("BTC", CRYPTO, make_market_data(), ttl=10)

        clock.now += 11
        assert cache.get("BTC", CRYPTO, allow_stale=False) is None
        assert cache.get("BTC", CRYPTO) is not None

    def test_default_ttl_from_category(self, make_market_data):
        """Test that the TTL comes from the category table."""
        cache = MarketDataCache(clock=Clock())
        entry = cache.put("BTC", CRYPTO, make_market_data())
        assert entry.expires_at - entry.timestamp == 120.0

    def test_keys_are_normalized(self, make_market_data):
        """Test that symbol case and category aliases share an entry."""
        cache = MarketDataCache(clock=Clock())
        data = make_market_data()
        cache.put("BTC", "cripto", data)
        assert cache.get("btc", CRYPTO) == data

    def test_durable_fallback(self, make_market_data):
        """Test that a fresh memory tier reads through to the durable store."""
        store = MemoryStore()
        clock = Clock()
        data = make_market_data()
        MarketDataCache(store=store, clock=clock).put("BTC", CRYPTO, data)

        restarted = MarketDataCache(store=store, clock=clock)
        assert len(restarted) == 0
        assert restarted.get("BTC", CRYPTO) == data
        assert len(restarted) == 1

    def test_index_maintained(self, make_market_data):
        """Test that durable keys are listed once in the index."""
        cache = MarketDataCache(clock=Clock())
        cache.put("BTC", CRYPTO, make_market_data())
        cache.put("BTC", CRYPTO, make_market_data())
        cache.put("ETH", CRYPTO, make_market_data(symbol="ETH"))
        assert cache.keys() == [durable_key("BTC", CRYPTO), durable_key("ETH", CRYPTO)]

    def test_remove(self, make_market_data):
        """Test that remove() clears both tiers and the index."""
        store = MemoryStore()
        cache = MarketDataCache(store=store, clock=Clock())
        cache.put("BTC", CRYPTO, make_market_data())
        cache.remove("BTC", CRYPTO)
        assert cache.get("BTC", CRYPTO) is None
        assert cache.keys() == []
        assert store.get(durable_key("BTC", CRYPTO)) is None

    def test_remove_nonexistent(self):
        """Test removing an instrument that was never cached."""
        MarketDataCache().remove("BTC", CRYPTO)  # Should not raise

    def test_unreadable_entry_is_a_miss(self):
        """Test that corrupt durable text is discarded."""
        store = MemoryStore()
        store.set(durable_key("BTC", CRYPTO), "not json")
        assert MarketDataCache(store=store).get("BTC", CRYPTO) is None

    def test_sweep_respects_grace(self, make_market_data):
        """Test that sweep() only purges entries past expiry plus the grace window."""
        clock = Clock()
        store = MemoryStore()
        cache = MarketDataCache(store=store, clock=clock)
        cache.put("BTC", CRYPTO, make_market_data(), ttl=10)
        clock.now += 5
        cache.put("ETH", CRYPTO, make_market_data(symbol="ETH"), ttl=10)

        clock.now += 10 + STALE_GRACE - 4
        assert cache.sweep() == 1

        assert cache.keys() == [durable_key("ETH", CRYPTO)]
        assert store.get(durable_key("BTC", CRYPTO)) is None
        assert cache.get("BTC", CRYPTO) is None
        assert cache.get("ETH", CRYPTO) is not None

    def test_sweep_drops_dangling_index_keys(self):
        """Test that index keys with no stored entry are removed."""
        store = MemoryStore()
        store.set(INDEX_KEY, json.dumps(["missing"]))
        cache = MarketDataCache(store=store)
        assert cache.sweep() == 0
        assert cache.keys() == []

    def test_contains(self, make_market_data):
        """Test membership by memory key."""
        cache = MarketDataCache(clock=Clock())
        cache.put("BTC", CRYPTO, make_market_data())
        assert "criptomonedas:btc" in cache
        assert "criptomonedas:eth" not in cache


@pytest.mark.asyncio
class TestCacheSweeper:
    """Tests for the background sweep task."""

    async def test_start_stop_idempotent(self):
        """Test that start() and stop() can be repeated safely."""
        cache = MarketDataCache()
        await cache.start(interval=60)
        await cache.start(interval=60)
        await cache.stop()
        await cache.stop()


class TestFileStore:
    """Tests for the file-backed durable store."""

    def test_round_trip(self, tmp_path):
        """Test set/get/delete with a key that is not a valid file name."""
        store = FileStore(tmp_path / "cache")
        store.set("pricepulse_market_data_forex_eur/usd", "hello")
        assert store.get("pricepulse_market_data_forex_eur/usd") == "hello"

        store.delete("pricepulse_market_data_forex_eur/usd")
        assert store.get("pricepulse_market_data_forex_eur/usd") is None

    def test_missing_key(self, tmp_path):
        """Test reading and deleting an absent key."""
        store = FileStore(tmp_path)
        assert store.get("nope") is None
        store.delete("nope")  # Should not raise

    def test_backs_cache_across_instances(self, tmp_path, make_market_data):
        """Test that a new cache over the same directory sees earlier writes."""
        data = make_market_data()
        MarketDataCache(store=FileStore(tmp_path), clock=Clock()).put("BTC", CRYPTO, data)
        reopened = MarketDataCache(store=FileStore(tmp_path), clock=Clock())
        assert reopened.get("BTC", CRYPTO) == data
