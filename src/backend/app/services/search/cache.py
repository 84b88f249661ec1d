"""
Search Cache Layer

Memoizes (normalized query, filters, page, page size, sort) -> result page.

- Keys are a SHA-256 over a canonical JSON form of the query
- Keys live under a versioned namespace; invalidation bumps the version
- Concurrent misses for one key share a single computation (SingleFlight)
- Storage failures degrade to direct computation, never to an error
- CacheWarmer re-runs popular queries in the background
"""

import asyncio
import hashlib
import json
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ...database.search_cache_storage import SearchCacheStorage
from ...models.search import SearchCacheEntry, SearchQuery, SearchResultPage, utc_now

logger = logging.getLogger(__name__)

ComputePage = Callable[[], Awaitable[SearchResultPage]]


class SingleFlight:
    """
    Per-key registry of in-flight computations.

    The first caller for a key starts the computation as its own task; later
    callers await the same task. Each caller awaits through ``asyncio.shield``
    so one caller timing out does not cancel the work for the others.
    """

    def __init__(self):
        self._inflight: Dict[str, asyncio.Task] = {}
        self.started = 0

    def in_flight(self) -> int:
        return len(self._inflight)

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Tuple[Any, bool]:
        """
        Run fn once per key among concurrent callers.

        Returns:
            Tuple of (result, shared) where shared is True for callers that
            joined an existing computation
        """
        task = self._inflight.get(key)
        shared = task is not None

        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            self.started += 1
            task.add_done_callback(lambda t, k=key: self._forget(k, t))

        result = await asyncio.shield(task)
        return result, shared

    def _forget(self, key: str, task: asyncio.Task):
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # consume the exception so an unobserved failure is not reported twice
        if not task.cancelled():
            task.exception()


def make_cache_key(query: SearchQuery) -> str:
    """Deterministic digest of everything that shapes a result page."""
    payload = {
        "q": query.normalized_text,
        "filters": query.filters.model_dump(mode="json"),
        "page": query.page,
        "page_size": query.page_size,
        "sort": query.sort_by,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class SearchCache:
    """Cache-aside wrapper around the search pipeline"""

    def __init__(self, storage: SearchCacheStorage, ttl_seconds: int = 300):
        self.storage = storage
        self.ttl_seconds = ttl_seconds
        self._flight = SingleFlight()
        self.hits = 0
        self.misses = 0
        self.errors = 0

    async def _namespaced_key(self, digest: str) -> str:
        version = await self.storage.get_version()
        return f"{self.storage.namespace}:v{version}:{digest}"

    async def get_or_compute(
        self,
        query: SearchQuery,
        compute: ComputePage,
        generation: Optional[int] = None,
    ) -> Tuple[SearchResultPage, bool]:
        """
        Return the cached page for query or compute and store it.

        Args:
            query: Validated search query
            compute: Coroutine factory running the uncached pipeline
            generation: Index generation the caller searches; a page built
                from any other generation counts as a miss

        Returns:
            Tuple of (result page, cache_hit)
        """
        digest = make_cache_key(query)

        try:
            key = await self._namespaced_key(digest)
            entry = await self.storage.get(key)
        except Exception as e:
            self.errors += 1
            logger.warning(f"Search cache unavailable, computing directly: {e}")
            page, _ = await self._flight.do(f"direct:{digest}", compute)
            return page, False

        if entry is not None and generation is not None and entry.page.index_generation != generation:
            logger.debug(
                f"Cached page for {key} is from generation {entry.page.index_generation}, "
                f"index is at {generation}"
            )
            entry = None

        if entry is not None:
            self.hits += 1
            logger.debug(f"Cache hit: {key}")
            return entry.page, True

        self.misses += 1
        page, shared = await self._flight.do(key, lambda: self._compute_and_store(key, compute))
        if shared:
            logger.debug(f"Joined in-flight computation: {key}")
        return page, False

    async def _compute_and_store(self, key: str, compute: ComputePage) -> SearchResultPage:
        page = await compute()

        now = utc_now()
        entry = SearchCacheEntry(
            key=key,
            page=page,
            result_count=page.pagination.total_results,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )

        try:
            await self.storage.set(entry, self.ttl_seconds)
        except Exception as e:
            self.errors += 1
            logger.warning(f"Failed to store search cache entry {key}: {e}")

        return page

    async def invalidate(self) -> Optional[int]:
        """
        Drop every cached page by moving to a new namespace version.

        Returns:
            New namespace version, or None if the storage is unreachable
        """
        try:
            previous = await self.storage.get_version()
            version = await self.storage.bump_version()
        except Exception as e:
            self.errors += 1
            logger.error(f"Search cache invalidation failed: {e}", exc_info=True)
            return None

        logger.info(f"Search cache namespace bumped: v{previous} -> v{version}")

        try:
            removed = await self.storage.purge_version(previous)
            if removed:
                logger.info(f"Purged {removed} superseded cache entries")
        except Exception as e:
            logger.warning(f"Failed to purge superseded cache entries: {e}")

        return version

    async def on_index_refresh(self, _snapshot) -> None:
        """Index refresh listener."""
        await self.invalidate()

    @property
    def computations_started(self) -> int:
        return self._flight.started

    async def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        stats: Dict[str, Any] = {
            "backend": getattr(self.storage, "backend_name", type(self.storage).__name__),
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
            "in_flight": self._flight.in_flight(),
        }
        try:
            stats["namespace_version"] = await self.storage.get_version()
            total, active = await self.storage.count_entries()
            stats["total_entries"] = total
            stats["active_entries"] = active
        except Exception as e:
            logger.warning(f"Failed to read cache storage stats: {e}")
            stats["storage_available"] = False
        return stats


class CacheWarmer:
    """
    Background task that keeps popular queries cached.

    Failures are logged and never propagated.
    """

    def __init__(
        self,
        warm_query: Callable[[str], Awaitable[Any]],
        popular_queries: Callable[[int], Awaitable[List[str]]],
        interval_seconds: int = 600,
        top_queries: int = 20,
    ):
        self.warm_query = warm_query
        self.popular_queries = popular_queries
        self.interval_seconds = interval_seconds
        self.top_queries = top_queries
        self._task: Optional[asyncio.Task] = None
        self._shutdown = False

    async def warm_once(self) -> int:
        """Run one warming pass. Returns number of queries warmed."""
        try:
            queries = await self.popular_queries(self.top_queries)
        except Exception as e:
            logger.warning(f"Cache warming skipped, could not load popular queries: {e}")
            return 0

        warmed = 0
        for query in queries:
            try:
                await self.warm_query(query)
                warmed += 1
            except Exception as e:
                logger.warning(f"Cache warming failed for '{query}': {e}")

        if queries:
            logger.info(f"Cache warming pass complete: {warmed}/{len(queries)} queries")
        return warmed

    def start(self):
        if self.interval_seconds <= 0 or self._task is not None:
            return
        self._shutdown = False
        logger.info(f"Starting cache warming task (interval: {self.interval_seconds}s)")
        self._task = asyncio.create_task(self._loop())

    async def _loop(self):
        try:
            while not self._shutdown:
                await asyncio.sleep(self.interval_seconds)
                if self._shutdown:
                    break
                await self.warm_once()
        except asyncio.CancelledError:
            logger.info("Cache warming loop cancelled")

    async def stop(self):
        self._shutdown = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.info("Cache warming task stopped")
        self._task = None
