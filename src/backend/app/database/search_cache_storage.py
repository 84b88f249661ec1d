"""
Search Cache Storage

Backends for cached search result pages:
- RedisSearchCacheStorage: shared across workers, TTL enforced by Redis
- InMemorySearchCacheStorage: per-process fallback when Redis is disabled

Both expose the same async interface. Entries are JSON-serialized
SearchCacheEntry objects; a namespace version counter lives next to them
so invalidation is a single atomic INCR.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple, Union

from redis.asyncio import Redis

from ..models.search import SearchCacheEntry

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    """Return timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class InMemorySearchCacheStorage:
    """
    In-memory fallback for the search cache when Redis is unavailable or disabled.

    Mimics Redis-backed behaviour to keep the cache layer backend-agnostic.
    Expired entries are dropped on read and by a background cleanup task.
    """

    backend_name = "in-memory"

    def __init__(self, namespace: str = "search:cache", cleanup_interval: int = 60):
        self.namespace = namespace.rstrip(":")
        self._entries: Dict[str, SearchCacheEntry] = {}
        self._version = 0
        self._cleanup_interval = cleanup_interval
        self._cleanup_task: Optional[asyncio.Task] = None
        self._shutdown = False

    def start_cleanup_loop(self):
        if self._cleanup_interval > 0 and self._cleanup_task is None:
            logger.info(f"Starting in-memory cache cleanup task (interval: {self._cleanup_interval}s)")
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def get(self, key: str) -> Optional[SearchCacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired():
            self._entries.pop(key, None)
            return None
        return entry

    async def set(self, entry: SearchCacheEntry, ttl: int):
        self._entries[entry.key] = entry

    async def delete(self, key: str):
        self._entries.pop(key, None)

    async def get_version(self) -> int:
        return self._version

    async def bump_version(self) -> int:
        self._version += 1
        return self._version

    async def purge_version(self, version: int) -> int:
        """Drop every entry written under an older namespace version."""
        marker = f"{self.namespace}:v{version}:"
        stale = [k for k in self._entries if k.startswith(marker)]
        for key in stale:
            self._entries.pop(key, None)
        return len(stale)

    async def count_entries(self) -> Tuple[int, int]:
        """Return (total, active) entry counts."""
        now = _utc_now()
        active = sum(1 for e in self._entries.values() if not e.is_expired(now))
        return len(self._entries), active

    async def _cleanup_loop(self):
        """Background task to periodically drop expired entries."""
        logger.info("In-memory cache cleanup loop started")
        try:
            while not self._shutdown:
                await asyncio.sleep(self._cleanup_interval)
                if self._shutdown:
                    break
                self._cleanup_expired_entries()
        except asyncio.CancelledError:
            logger.info("Cache cleanup loop cancelled")
        except Exception as e:
            logger.error(f"Error in cache cleanup loop: {e}", exc_info=True)

    def _cleanup_expired_entries(self):
        now = _utc_now()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        if expired:
            logger.info(f"Cleaning up {len(expired)} expired cache entries")
            for key in expired:
                self._entries.pop(key, None)

    async def stop_cleanup_loop(self):
        """Stop the background cleanup task gracefully."""
        self._shutdown = True
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            logger.info("In-memory cache cleanup task stopped")


class RedisSearchCacheStorage:
    """
    Redis-backed search cache storage.

    Features:
    - SET with EX so Redis enforces the TTL
    - Namespace version counter bumped with INCR
    - SCAN based purge of superseded namespace versions
    """

    backend_name = "redis"

    def __init__(self, redis_client: Redis, *, namespace: str = "search:cache"):
        """
        Initialize Redis cache storage.

        Args:
            redis_client: Redis async client
            namespace: Base key namespace
        """
        self.redis = redis_client
        self.namespace = namespace.rstrip(":")
        self.version_key = f"{self.namespace}:version"

    async def get(self, key: str) -> Optional[SearchCacheEntry]:
        raw = await self.redis.get(key)
        if not raw:
            return None

        decoded = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        try:
            entry = SearchCacheEntry.model_validate_json(decoded)
        except ValueError as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            await self.redis.delete(key)
            return None

        if entry.is_expired():
            await self.redis.delete(key)
            return None

        return entry

    async def set(self, entry: SearchCacheEntry, ttl: int):
        await self.redis.set(entry.key, entry.model_dump_json(), ex=max(int(ttl), 1))

    async def delete(self, key: str):
        await self.redis.delete(key)

    async def get_version(self) -> int:
        raw = await self.redis.get(self.version_key)
        return int(raw) if raw else 0

    async def bump_version(self) -> int:
        return int(await self.redis.incr(self.version_key))

    async def purge_version(self, version: int) -> int:
        """Delete keys written under an older namespace version (SCAN, never KEYS)."""
        pattern = f"{self.namespace}:v{version}:*"
        removed = 0
        cursor = 0

        while True:
            cursor, keys = await self.redis.scan(cursor, match=pattern, count=200)
            if keys:
                async with self.redis.pipeline(transaction=False) as pipe:
                    for key in keys:
                        pipe.delete(key)
                    results = await pipe.execute()
                removed += sum(int(r) for r in results)
            if cursor == 0:
                break

        return removed

    async def count_entries(self) -> Tuple[int, int]:
        """Return (total, active) entry counts. Redis drops expired keys itself."""
        pattern = f"{self.namespace}:v[0-9]*"
        total = 0
        cursor = 0

        while True:
            cursor, keys = await self.redis.scan(cursor, match=pattern, count=200)
            total += len(keys)
            if cursor == 0:
                break

        return total, total


SearchCacheStorage = Union[RedisSearchCacheStorage, InMemorySearchCacheStorage]

# Global storage instance (initialized in main.py)
_search_cache_storage: Optional[SearchCacheStorage] = None


def _redis_disabled() -> bool:
    """Check if Redis caching has been explicitly disabled."""
    return os.getenv("ENABLE_REDIS_CACHING", "true").lower() == "false"


def get_search_cache_storage() -> SearchCacheStorage:
    """
    Get cache storage instance.

    Falls back to in-memory storage if Redis storage was never initialized.
    """
    global _search_cache_storage

    if _search_cache_storage is None:
        if not _redis_disabled():
            logger.warning("Search cache storage requested before initialization. Falling back to in-memory storage.")
        _search_cache_storage = InMemorySearchCacheStorage()

    return _search_cache_storage


def init_search_cache_storage(
    redis_client: Optional[Redis],
    namespace: str = "search:cache",
    enable_caching: Optional[bool] = None,
) -> SearchCacheStorage:
    """Initialize global search cache storage instance."""
    global _search_cache_storage

    if enable_caching is None:
        enable_caching = not _redis_disabled()

    if redis_client is None or not enable_caching:
        _search_cache_storage = InMemorySearchCacheStorage(namespace=namespace)
        logger.info("Redis client unavailable or caching disabled; using in-memory search cache")
        return _search_cache_storage

    _search_cache_storage = RedisSearchCacheStorage(redis_client, namespace=namespace)
    logger.info("Redis search cache storage initialized (namespace: %s)", namespace)
    return _search_cache_storage


def reset_search_cache_storage():
    global _search_cache_storage
    _search_cache_storage = None
