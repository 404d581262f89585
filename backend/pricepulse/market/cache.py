"""Two-tier market data cache: in-process map plus a durable side store."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from .models import CacheEntry, MarketData
from .registry import cache_ttl, normalize_category

logger = logging.getLogger(__name__)

CACHE_PREFIX = "pricepulse_market_data_"
INDEX_KEY = f"{CACHE_PREFIX}index"
STALE_GRACE = 7 * 24 * 3600.0  # Durable entries survive 7 days past expiry
SWEEP_INTERVAL = 24 * 3600.0


class DurableStore(ABC):
    """Minimal string key/value store that outlives the process."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored text, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store text under key, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. No-op if absent."""


class MemoryStore(DurableStore):
    """Dict-backed store. Durable only for the lifetime of the object."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class FileStore(DurableStore):
    """One text file per key under a directory.

    File names are a sha1 of the key, since keys carry symbols like 'EUR/USD'.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def memory_key(symbol: str, category: str) -> str:
    return f"{normalize_category(category)}:{symbol.lower()}"


def durable_key(symbol: str, category: str) -> str:
    return f"{CACHE_PREFIX}{normalize_category(category)}_{symbol.lower()}"


class MarketDataCache:
    """Latest MarketData per ``category:symbol``, with TTL and explicit staleness.

    Reads hit the in-memory map first and fall back to the durable store. An
    expired entry is still returned, but flagged ``is_real_time=False`` with
    ``last_updated`` set to the original write time, so callers always know
    when they are looking at old data.

    Only touched from the event loop, so it takes no locks.
    """

    def __init__(
        self,
        store: DurableStore | None = None,
        ttl_lookup: Callable[[str], float] = cache_ttl,
        clock: Callable[[], float] = time.time,
        stale_grace: float = STALE_GRACE,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._store = store if store is not None else MemoryStore()
        self._ttl_lookup = ttl_lookup
        self._clock = clock
        self._grace = stale_grace
        self._sweeper: asyncio.Task | None = None

    # --- Public API ---

    def get(self, symbol: str, category: str, allow_stale: bool = True) -> MarketData | None:
        """Cached snapshot or None.

        With ``allow_stale=False`` an expired entry reads as a miss.
        """
        entry = self.get_entry(symbol, category)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            if not allow_stale:
                return None
            return entry.data.stale(last_updated=entry.timestamp)
        return entry.data

    def get_entry(self, symbol: str, category: str) -> CacheEntry | None:
        """Raw entry lookup: memory first, then the durable store."""
        key = memory_key(symbol, category)
        entry = self._entries.get(key)
        if entry is not None:
            return entry

        entry = self._read_durable(durable_key(symbol, category))
        if entry is not None:
            self._entries.setdefault(key, entry)
        return entry

    def put(
        self,
        symbol: str,
        category: str,
        data: MarketData,
        ttl: float | None = None,
    ) -> CacheEntry:
        """Write both tiers. TTL defaults to the category's configured value."""
        if ttl is None:
            ttl = self._ttl_lookup(category)
        now = self._clock()
        entry = CacheEntry(data=data, timestamp=now, expires_at=now + ttl)

        self._entries[memory_key(symbol, category)] = entry

        key = durable_key(symbol, category)
        try:
            self._store.set(key, json.dumps(entry.to_dict()))
            index = self._read_index()
            if key not in index:
                index.append(key)
                self._store.set(INDEX_KEY, json.dumps(index))
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Durable cache write failed for %s: %s", key, e)
        return entry

    def remove(self, symbol: str, category: str) -> None:
        self._entries.pop(memory_key(symbol, category), None)
        key = durable_key(symbol, category)
        try:
            self._store.delete(key)
            index = self._read_index()
            if key in index:
                index.remove(key)
                self._store.set(INDEX_KEY, json.dumps(index))
        except OSError as e:
            logger.warning("Durable cache delete failed for %s: %s", key, e)

    def keys(self) -> list[str]:
        """Durable keys currently listed in the index."""
        return self._read_index()

    def sweep(self) -> int:
        """Purge entries that expired more than the grace window ago.

        Returns the number of durable entries removed.
        """
        now = self._clock()
        for key, entry in list(self._entries.items()):
            if now > entry.expires_at + self._grace:
                del self._entries[key]

        removed = 0
        valid: list[str] = []
        for key in self._read_index():
            entry = self._read_durable(key)
            if entry is None:
                continue
            if now > entry.expires_at + self._grace:
                try:
                    self._store.delete(key)
                    removed += 1
                except OSError as e:
                    logger.warning("Could not purge %s: %s", key, e)
                    valid.append(key)
            else:
                valid.append(key)

        try:
            self._store.set(INDEX_KEY, json.dumps(valid))
        except OSError as e:
            logger.warning("Could not rewrite cache index: %s", e)
        if removed:
            logger.info("Cache sweep removed %d expired entries", removed)
        return removed

    async def start(self, interval: float = SWEEP_INTERVAL) -> None:
        """Start the periodic sweep. No-op if already running."""
        if self._sweeper and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(interval), name="cache-sweeper")
        logger.info("Cache sweeper started (every %.0fs)", interval)

    async def stop(self) -> None:
        """Stop the periodic sweep. Safe to call multiple times."""
        if self._sweeper and not self._sweeper.done():
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
        self._sweeper = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    # --- Internals ---

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache sweep failed")

    def _read_durable(self, key: str) -> CacheEntry | None:
        try:
            raw = self._store.get(key)
            if raw is None:
                return None
            return CacheEntry.from_dict(json.loads(raw))
        except (OSError, KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding unreadable cache entry %s: %s", key, e)
            return None

    def _read_index(self) -> list[str]:
        try:
            raw = self._store.get(INDEX_KEY)
            keys = json.loads(raw) if raw else []
        except (OSError, ValueError) as e:
            logger.warning("Cache index unreadable, starting empty: %s", e)
            return []
        return [k for k in keys if isinstance(k, str)]
