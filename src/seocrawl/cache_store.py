"""
Content-Addressable Page Cache.

Stores previously fetched PageRecords as individual JSON files keyed by a
hash of the normalized URL. The cache is best-effort: unreadable entries
are removed and reported as misses, and no cache failure ever reaches
the crawl.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional
import asyncio
import json
import logging
import os
import tempfile
import threading
import time

from seocrawl.exceptions import CacheError
from seocrawl.models import PageRecord
from seocrawl.urls import url_key

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A single cached page with its lifetime."""
    url: str
    record: PageRecord
    fetched_at: float
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if this entry has expired."""
        return (now if now is not None else time.time()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "url": self.url,
            "record": self.record.to_dict(),
            "fetched_at": self.fetched_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        """Deserialize from dictionary."""
        return cls(
            url=data["url"],
            record=PageRecord.from_dict(data["record"]),
            fetched_at=float(data["fetched_at"]),
            expires_at=float(data["expires_at"]),
        )


class PageCache:
    """
    File-backed cache mapping normalized URLs to PageRecords.

    Methods are synchronous and thread-safe; async callers should run them
    with asyncio.to_thread so file I/O stays off the event loop.
    """

    def __init__(
        self,
        cache_dir: Path,
        ttl_seconds: float = 86400,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the page cache.

        Args:
            cache_dir: Directory to store cache files
            ttl_seconds: Time-to-live for cache entries
            enabled: Whether caching is enabled
            clock: Wall-clock time source (seconds since epoch)
        """
        self.cache_dir = Path(cache_dir)
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._initialized = False

        self._hits = 0
        self._misses = 0
        self._stored = 0
        self._evicted = 0

    def initialize(self) -> None:
        """Create the cache directory and drop entries that expired while idle."""
        if not self.enabled or self._initialized:
            return
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cache disabled, could not create {self.cache_dir}: {e}")
            self.enabled = False
            return
        self._initialized = True
        logger.info(f"Cache directory initialized: {self.cache_dir}")
        self.sweep()

    def _entry_path(self, url: str) -> Path:
        """Get the file path for a URL's entry."""
        key = url_key(url)
        # First 2 chars as subdirectory to avoid too many files in one dir
        return self.cache_dir / key[:2] / f"{key}.json"

    def _read_entry(self, path: Path) -> CacheEntry:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return CacheEntry.from_dict(json.load(f))
        except FileNotFoundError:
            raise
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CacheError(f"Corrupted cache entry {path.name}: {e}") from e

    def _write_entry(self, path: Path, entry: CacheEntry) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(entry.to_dict(), f)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise CacheError(f"Could not write cache entry {path.name}: {e}") from e

    def _remove(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Could not remove cache entry {path.name}: {e}")
            return False
        self._evicted += 1
        return True

    def get(self, url: str) -> Optional[PageRecord]:
        """
        Retrieve a cached record if present and not expired.

        Args:
            url: Normalized URL

        Returns:
            Cached PageRecord or None if missing, expired, or unreadable
        """
        if not self.enabled:
            return None

        path = self._entry_path(url)
        with self._lock:
            try:
                entry = self._read_entry(path)
            except FileNotFoundError:
                self._misses += 1
                return None
            except CacheError as e:
                logger.warning(str(e))
                self._remove(path)
                self._misses += 1
                return None

            if entry.is_expired(self._clock()):
                self._remove(path)
                self._misses += 1
                logger.debug(f"Cache expired for: {url}")
                return None

            self._hits += 1
            logger.debug(f"Cache hit for: {url}")
            return entry.record

    def set(self, url: str, record: PageRecord) -> bool:
        """
        Store a record in the cache.

        Args:
            url: Normalized URL
            record: PageRecord to cache

        Returns:
            True if the record was written
        """
        if not self.enabled or self.ttl_seconds <= 0:
            return False

        now = self._clock()
        entry = CacheEntry(
            url=url,
            record=record,
            fetched_at=now,
            expires_at=now + self.ttl_seconds,
        )
        path = self._entry_path(url)
        with self._lock:
            try:
                self._write_entry(path, entry)
            except CacheError as e:
                logger.warning(f"Failed to cache response for {url}: {e}")
                return False
            self._stored += 1
        logger.debug(f"Cached response for: {url}")
        return True

    def is_cached(self, url: str) -> bool:
        """Whether a live entry exists, without touching hit/miss counters."""
        if not self.enabled:
            return False
        try:
            entry = self._read_entry(self._entry_path(url))
        except (FileNotFoundError, CacheError):
            return False
        return not entry.is_expired(self._clock())

    def invalidate(self, url: str) -> bool:
        """
        Remove a specific cache entry.

        Returns:
            True if an entry was found and removed
        """
        if not self.enabled:
            return False
        with self._lock:
            removed = self._remove(self._entry_path(url))
        if removed:
            logger.debug(f"Cache invalidated for: {url}")
        return removed

    def _entry_files(self) -> list[Path]:
        if not self.cache_dir.exists():
            return []
        return list(self.cache_dir.glob("*/*.json"))

    def clear(self) -> int:
        """
        Remove every entry.

        Returns:
            Number of entries removed
        """
        if not self.enabled:
            return 0
        with self._lock:
            removed = sum(1 for path in self._entry_files() if self._remove(path))
        logger.info(f"Cache cleared ({removed} entries removed)")
        return removed

    def sweep(self) -> int:
        """
        Remove expired and unreadable entries.

        Returns:
            Number of entries removed
        """
        if not self.enabled:
            return 0

        removed = 0
        now = self._clock()
        with self._lock:
            for path in self._entry_files():
                try:
                    expired = self._read_entry(path).is_expired(now)
                except FileNotFoundError:
                    continue
                except CacheError:
                    expired = True  # Corrupted entries are swept too
                if expired and self._remove(path):
                    removed += 1

        if removed:
            logger.info(f"Cache sweep completed: {removed} expired entries removed")
        return removed

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        if not self.enabled:
            return {"enabled": False}

        lookups = self._hits + self._misses
        return {
            "enabled": True,
            "hits": self._hits,
            "misses": self._misses,
            "stored": self._stored,
            "evicted": self._evicted,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            "entry_count": len(self._entry_files()),
            "ttl_seconds": self.ttl_seconds,
        }

    def reset_stats(self) -> None:
        """Zero the hit/miss/store/evict counters."""
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._stored = 0
            self._evicted = 0


class CacheSweeper:
    """Runs PageCache.sweep on a fixed interval in the background."""

    def __init__(self, cache: PageCache, interval: float):
        self.cache = cache
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if not self.cache.enabled:
            return
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await asyncio.to_thread(self.cache.sweep)
