"""
Unit tests for the search cache layer
Tests cache-aside behaviour, single-flight, invalidation and storage failure fallback
"""

import asyncio

import pytest

from app.database.search_cache_storage import InMemorySearchCacheStorage
from app.models.search import SearchFilters, SearchQuery, SearchResultPage
from app.services.search.cache import CacheWarmer, SearchCache, SingleFlight, make_cache_key
from app.services.search.pagination import build_pagination


def _query(text="laptop", **kwargs) -> SearchQuery:
    tokens = tuple(text.split())
    return SearchQuery(
        raw_text=text,
        normalized_text=text,
        tokens=tokens,
        scoring_tokens=tokens,
        **kwargs,
    )


class CountingCompute:
    """Compute function that records how often it ran"""

    def __init__(self, total=3, delay=0.0):
        self.calls = 0
        self.total = total
        self.delay = delay

    async def __call__(self) -> SearchResultPage:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return SearchResultPage(pagination=build_pagination(self.total, 1, 20), index_generation=1)


class TestCacheKey:

    def test_same_query_same_key(self):
        assert make_cache_key(_query()) == make_cache_key(_query())

    def test_key_covers_page_sort_and_filters(self):
        base = make_cache_key(_query())

        assert make_cache_key(_query(page=2)) != base
        assert make_cache_key(_query(page_size=10)) != base
        assert make_cache_key(_query(sort_by="newest")) != base
        assert make_cache_key(_query(filters=SearchFilters(price_max=100))) != base
        assert make_cache_key(_query("laptop bag")) != base


@pytest.mark.unit
class TestSearchCache:

    @pytest.fixture
    def cache(self):
        return SearchCache(InMemorySearchCacheStorage(), ttl_seconds=60)

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, cache):
        compute = CountingCompute()

        page, hit = await cache.get_or_compute(_query(), compute)
        again, hit_again = await cache.get_or_compute(_query(), compute)

        assert (hit, hit_again) == (False, True)
        assert compute.calls == 1
        assert again.pagination.total_results == page.pagination.total_results
        assert (cache.hits, cache.misses) == (1, 1)

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_computation(self, cache):
        compute = CountingCompute(delay=0.05)

        results = await asyncio.gather(*(cache.get_or_compute(_query(), compute) for _ in range(10)))

        assert compute.calls == 1
        assert cache.computations_started == 1
        assert all(hit is False for _, hit in results)

    @pytest.mark.asyncio
    async def test_distinct_queries_compute_separately(self, cache):
        compute = CountingCompute()

        await asyncio.gather(
            cache.get_or_compute(_query("laptop"), compute),
            cache.get_or_compute(_query("mouse"), compute),
        )

        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_page_from_other_generation_is_a_miss(self, cache):
        compute = CountingCompute()
        await cache.get_or_compute(_query(), compute, generation=1)

        _, same_generation_hit = await cache.get_or_compute(_query(), compute, generation=1)
        _, newer_generation_hit = await cache.get_or_compute(_query(), compute, generation=2)

        assert same_generation_hit is True
        assert newer_generation_hit is False
        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_recompute(self, cache):
        compute = CountingCompute()
        await cache.get_or_compute(_query(), compute)

        version = await cache.invalidate()
        _, hit = await cache.get_or_compute(_query(), compute)

        assert version == 1
        assert hit is False
        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_purges_superseded_entries(self, cache):
        await cache.get_or_compute(_query(), CountingCompute())
        assert await cache.storage.count_entries() == (1, 1)

        await cache.invalidate()

        assert await cache.storage.count_entries() == (0, 0)

    @pytest.mark.asyncio
    async def test_index_refresh_listener_invalidates(self, cache):
        await cache.on_index_refresh(object())

        assert await cache.storage.get_version() == 1

    @pytest.mark.asyncio
    async def test_failed_computation_is_not_cached(self, cache):
        async def broken():
            raise RuntimeError("ranking failed")

        with pytest.raises(RuntimeError):
            await cache.get_or_compute(_query(), broken)

        compute = CountingCompute()
        _, hit = await cache.get_or_compute(_query(), compute)
        assert hit is False
        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        compute = CountingCompute()
        await cache.get_or_compute(_query(), compute)
        await cache.get_or_compute(_query(), compute)

        stats = await cache.stats()

        assert stats["backend"] == "in-memory"
        assert stats["hit_rate"] == 0.5
        assert stats["active_entries"] == 1
        assert stats["namespace_version"] == 0


@pytest.mark.unit
class TestSearchCacheStorageFailure:

    @pytest.mark.asyncio
    async def test_unreachable_storage_computes_directly(self, failing_cache_storage):
        cache = SearchCache(failing_cache_storage)
        compute = CountingCompute(total=7)

        page, hit = await cache.get_or_compute(_query(), compute)

        assert hit is False
        assert page.pagination.total_results == 7
        assert cache.errors == 1

    @pytest.mark.asyncio
    async def test_unreachable_storage_still_single_flight(self, failing_cache_storage):
        cache = SearchCache(failing_cache_storage)
        compute = CountingCompute(delay=0.05)

        await asyncio.gather(*(cache.get_or_compute(_query(), compute) for _ in range(5)))

        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_returns_none(self, failing_cache_storage):
        cache = SearchCache(failing_cache_storage)

        assert await cache.invalidate() is None

    @pytest.mark.asyncio
    async def test_stats_flag_unavailable_storage(self, failing_cache_storage):
        stats = await SearchCache(failing_cache_storage).stats()

        assert stats["storage_available"] is False


class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_reports_shared_callers(self):
        flight = SingleFlight()
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return 42

        first = asyncio.create_task(flight.do("k", work))
        second = asyncio.create_task(flight.do("k", work))
        await asyncio.sleep(0)
        assert flight.in_flight() == 1

        gate.set()
        assert await first == (42, False)
        assert await second == (42, True)
        assert flight.in_flight() == 0

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_work(self):
        flight = SingleFlight()
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return "done"

        impatient = asyncio.create_task(flight.do("k", work))
        patient = asyncio.create_task(flight.do("k", work))
        await asyncio.sleep(0)

        impatient.cancel()
        gate.set()

        assert await patient == ("done", True)
        assert flight.started == 1


@pytest.mark.unit
class TestCacheWarmer:

    @pytest.mark.asyncio
    async def test_warm_once_counts_successes(self):
        warmed = []

        async def warm(query):
            if query == "broken":
                raise RuntimeError("no index")
            warmed.append(query)

        async def popular(limit):
            return ["laptop", "broken", "mouse"][:limit]

        warmer = CacheWarmer(warm, popular, interval_seconds=60, top_queries=3)

        assert await warmer.warm_once() == 2
        assert warmed == ["laptop", "mouse"]

    @pytest.mark.asyncio
    async def test_popular_query_failure_is_swallowed(self):
        async def popular(limit):
            raise ConnectionError("redis down")

        async def warm(query):
            raise AssertionError("should not be called")

        assert await CacheWarmer(warm, popular).warm_once() == 0

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        async def popular(limit):
            return []

        async def warm(query):
            return None

        warmer = CacheWarmer(warm, popular, interval_seconds=3600)
        warmer.start()
        assert warmer._task is not None

        await warmer.stop()
        assert warmer._task is None
