"""
Unit tests for SearchOrchestrator
Tests the full search flow over an in-memory catalog and in-memory storage
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from app.database.search_cache_storage import InMemorySearchCacheStorage
from app.models.search import CatalogProduct, SearchFilters, SearchRequest
from app.services.search.errors import (
    DependencyUnavailable,
    InvalidFilter,
    InvalidQuery,
    SearchTimeout,
)
from app.services.search.index import ProductIndex


def _ids(response):
    return [hit.id for hit in response.results]


@pytest.mark.unit
@pytest.mark.services
class TestSearch:

    @pytest.mark.asyncio
    async def test_keyword_search(self, orchestrator, search_request):
        response = await orchestrator.search(search_request("laptop"))

        assert set(_ids(response)) == {"p-1001", "p-1002", "p-2001", "p-2002"}
        assert response.pagination.total_results == 4
        assert response.query == "laptop"
        assert response.cache_hit is False
        assert response.no_results is None
        assert all(0.0 <= hit.relevance_score <= 1.0 for hit in response.results)

    @pytest.mark.asyncio
    async def test_typo_is_tolerated(self, orchestrator, search_request):
        response = await orchestrator.search(search_request("lapotp"))

        assert "p-1001" in _ids(response)
        assert response.pagination.total_results == 4

    @pytest.mark.asyncio
    async def test_partial_word_matches_by_prefix(self, orchestrator, search_request):
        response = await orchestrator.search(search_request("headph"))

        assert _ids(response) == ["p-3001"]

    @pytest.mark.asyncio
    async def test_stray_character_adds_no_candidates(self, orchestrator, search_request):
        base = await orchestrator.search(search_request("laptop"))
        with_stray = await orchestrator.search(search_request("laptop w"))

        assert set(_ids(with_stray)) == set(_ids(base))
        assert with_stray.pagination.total_results == base.pagination.total_results

    @pytest.mark.asyncio
    async def test_single_character_query_still_searches(self, orchestrator, search_request):
        response = await orchestrator.search(search_request("w"))

        assert "p-2002" in _ids(response)

    @pytest.mark.asyncio
    async def test_name_match_ranks_above_description_match(self, orchestrator, search_request):
        response = await orchestrator.search(search_request("laptop"))

        # p-2002 mentions laptop only in its description
        assert _ids(response)[-1] == "p-2002"
        assert response.results[-1].matched_fields == ["description"]

    @pytest.mark.asyncio
    async def test_results_are_deterministic(self, make_orchestrator, search_request):
        first = make_orchestrator()
        await first.refresh_index()
        second = make_orchestrator(cache_storage=InMemorySearchCacheStorage())
        await second.refresh_index()

        a = await first.search(search_request("wireless laptop"))
        b = await second.search(search_request("wireless laptop"))

        assert [(h.id, h.relevance_score) for h in a.results] == [(h.id, h.relevance_score) for h in b.results]
        await first.drain_background()
        await second.drain_background()

    @pytest.mark.asyncio
    async def test_page_size_one(self, orchestrator, search_request):
        response = await orchestrator.search(search_request("laptop", page_size=1))

        assert len(response.results) == 1
        assert response.pagination.total_pages == response.pagination.total_results == 4
        assert response.pagination.has_next is True

    @pytest.mark.asyncio
    async def test_pages_do_not_overlap(self, orchestrator, search_request):
        pages = [
            await orchestrator.search(search_request("laptop", page=page, page_size=2))
            for page in (1, 2)
        ]

        ids = _ids(pages[0]) + _ids(pages[1])
        assert len(ids) == len(set(ids)) == 4
        assert pages[1].pagination.has_previous is True

    @pytest.mark.asyncio
    async def test_page_past_end_is_empty(self, orchestrator, search_request):
        response = await orchestrator.search(search_request("laptop", page=9, page_size=2))

        assert response.results == []
        assert response.pagination.total_results == 4
        # an empty page of a non-empty result set is not a zero-results search
        assert response.no_results is None

    @pytest.mark.asyncio
    async def test_filters_and_sort(self, orchestrator, search_request):
        response = await orchestrator.search(
            search_request(
                "laptop",
                filters=SearchFilters(availability="in_stock", price_max=1500),
                sort_by="price_asc",
            )
        )

        assert _ids(response) == ["p-2001", "p-1001"]
        assert response.filters_applied == {"price_max": 1500.0, "availability": "in_stock"}
        assert response.sort_by == "price_asc"

    @pytest.mark.asyncio
    async def test_second_identical_search_is_a_cache_hit(self, orchestrator, search_request):
        first = await orchestrator.search(search_request("laptop"))
        second = await orchestrator.search(search_request("  LAPTOP "))

        assert second.cache_hit is True
        assert _ids(first) == _ids(second)


@pytest.mark.unit
class TestZeroResults:

    @pytest.mark.asyncio
    async def test_unknown_term_returns_empty_response(self, orchestrator, search_request):
        response = await orchestrator.search(search_request("nonexistentproductxyz"))

        assert response.results == []
        assert response.pagination.total_results == 0
        assert response.pagination.total_pages == 0
        assert response.no_results is not None
        assert "nonexistentproductxyz" in response.no_results.message
        assert response.no_results.help_text

    @pytest.mark.asyncio
    async def test_popular_products_skip_out_of_stock(self, orchestrator, search_request):
        response = await orchestrator.search(search_request("nonexistentproductxyz"))

        popular = [p.id for p in response.no_results.popular_products]
        assert popular[0] == "p-1001"
        assert "p-2002" not in popular

    @pytest.mark.asyncio
    async def test_did_you_mean_from_previous_queries(self, orchestrator, search_request):
        await orchestrator.search(search_request("headphones"))
        await orchestrator.drain_background()

        response = await orchestrator.search(
            search_request("headphones pro", filters=SearchFilters(category_id="accessories"))
        )

        assert response.pagination.total_results == 0
        assert "headphones" in response.no_results.suggestions
        assert "with the selected filters" in response.no_results.message

    @pytest.mark.asyncio
    async def test_zero_result_queries_do_not_feed_suggestions(self, orchestrator, search_request):
        await orchestrator.search(search_request("nonexistentproductxyz"))
        await orchestrator.drain_background()

        suggestions = await orchestrator.get_suggestions("non")

        assert suggestions.suggestions == []


@pytest.mark.unit
class TestValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   "])
    async def test_empty_query(self, orchestrator, query):
        with pytest.raises(InvalidQuery):
            await orchestrator.search(SearchRequest(query=query))

    @pytest.mark.asyncio
    async def test_punctuation_only_query(self, orchestrator):
        with pytest.raises(InvalidQuery):
            await orchestrator.search(SearchRequest(query="&&&"))

        assert orchestrator.recorder.queue_stats()["queued"] == 0

    @pytest.mark.asyncio
    async def test_query_too_long(self, orchestrator):
        with pytest.raises(InvalidQuery):
            await orchestrator.search(SearchRequest(query="x" * 501))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,page_size", [(0, 20), (1, 0), (1, 101)])
    async def test_page_bounds(self, orchestrator, page, page_size):
        with pytest.raises(InvalidQuery) as exc_info:
            await orchestrator.search(SearchRequest(query="laptop", page=page, page_size=page_size))

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_filter(self, orchestrator):
        with pytest.raises(InvalidFilter):
            await orchestrator.search(
                SearchRequest(query="laptop", filters=SearchFilters(price_min=100, price_max=10))
            )

    @pytest.mark.asyncio
    async def test_invalid_sort(self, orchestrator):
        with pytest.raises(InvalidFilter):
            await orchestrator.search(SearchRequest(query="laptop", sort_by="cheapest"))

    @pytest.mark.asyncio
    async def test_invalid_input_is_not_recorded(self, orchestrator):
        with pytest.raises(InvalidQuery):
            await orchestrator.search(SearchRequest(query=""))

        assert orchestrator.recorder.queue_stats()["queued"] == 0
        assert orchestrator.recorder.written == 0


@pytest.mark.unit
class TestFailureModes:

    @pytest.mark.asyncio
    async def test_index_not_loaded(self, make_orchestrator, search_request):
        orchestrator = make_orchestrator()

        with pytest.raises(DependencyUnavailable) as exc_info:
            await orchestrator.search(search_request("laptop"))

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_timeout(self, orchestrator, search_request):
        async def slow_compute(query):
            await asyncio.sleep(0.5)

        orchestrator.timeout = 0.05
        orchestrator.compute_page = slow_compute

        with pytest.raises(SearchTimeout) as exc_info:
            await orchestrator.search(search_request("laptop"))

        assert exc_info.value.status_code == 504

    @pytest.mark.asyncio
    async def test_cache_outage_degrades_to_direct_computation(
        self, make_orchestrator, failing_cache_storage, search_request
    ):
        orchestrator = make_orchestrator(cache_storage=failing_cache_storage)
        await orchestrator.refresh_index()

        response = await orchestrator.search(search_request("laptop"))

        assert response.pagination.total_results == 4
        assert response.cache_hit is False
        await orchestrator.drain_background()

    @pytest.mark.asyncio
    async def test_catalog_failure_on_refresh(self, orchestrator, catalog):
        catalog.fetch_products = AsyncMock(side_effect=ConnectionError("catalog down"))

        with pytest.raises(DependencyUnavailable) as exc_info:
            await orchestrator.refresh_index()

        assert exc_info.value.details["dependency"] == "catalog"
        # the previous snapshot keeps serving
        assert orchestrator.index_manager.current().generation == 1

    @pytest.mark.asyncio
    async def test_analytics_failure_does_not_fail_search(self, orchestrator, search_request):
        orchestrator.recorder.record = lambda *args, **kwargs: 1 / 0

        response = await orchestrator.search(search_request("laptop"))

        assert response.pagination.total_results == 4
        assert response.analytics_id is None


@pytest.mark.unit
class TestCacheCoherence:

    @pytest.mark.asyncio
    async def test_concurrent_identical_misses_compute_once(self, orchestrator, search_request):
        responses = await asyncio.gather(
            *(orchestrator.search(search_request("mechanical keyboard")) for _ in range(8))
        )

        assert orchestrator.cache.computations_started == 1
        assert {tuple(_ids(r)) for r in responses} == {("p-2003",)}

    @pytest.mark.asyncio
    async def test_catalog_change_invalidates_cache(self, orchestrator, catalog, search_request):
        before = await orchestrator.search(search_request("laptop"))
        assert (await orchestrator.search(search_request("laptop"))).cache_hit is True

        catalog.upsert_product(
            CatalogProduct(
                id="p-1003",
                name="Budget Laptop 15",
                category_id="laptops",
                category_name="Laptops",
                price=499.0,
                popularity=0.3,
                stock_quantity=50,
            )
        )
        await orchestrator.refresh_index()
        after = await orchestrator.search(search_request("laptop"))

        assert after.cache_hit is False
        assert after.pagination.total_results == before.pagination.total_results + 1
        assert "p-1003" in _ids(after)

    @pytest.mark.asyncio
    async def test_cached_page_from_old_snapshot_is_not_served(self, orchestrator, catalog, search_request):
        await orchestrator.search(search_request("headphones"))

        catalog.remove_product("p-3001")
        await orchestrator.refresh_index()
        response = await orchestrator.search(search_request("headphones"))

        assert response.results == []

    @pytest.mark.asyncio
    async def test_page_from_superseded_generation_is_a_miss(self, orchestrator, catalog, search_request):
        await orchestrator.search(search_request("headphones"))

        # snapshot published, cache namespace not yet bumped
        catalog.remove_product("p-3001")
        orchestrator.index_manager._snapshot = ProductIndex.build(await catalog.fetch_products(), generation=2)
        response = await orchestrator.search(search_request("headphones"))

        assert response.cache_hit is False
        assert response.results == []


@pytest.mark.unit
class TestSuggestionsAndAnalytics:

    @pytest.mark.asyncio
    async def test_suggestions_come_from_executed_searches(self, orchestrator, search_request):
        for query in ["laptop sleeve", "laptop", "laptop", "headphones", "lapotp"]:
            await orchestrator.search(search_request(query))
        await orchestrator.drain_background()

        result = await orchestrator.get_suggestions("lap", 10)

        assert 0 < len(result.suggestions) <= 10
        assert result.suggestions[0] == "laptop"
        assert set(result.suggestions) == {"laptop", "laptop sleeve", "lapotp"}
        assert all(s.startswith("lap") for s in result.suggestions)

    @pytest.mark.asyncio
    async def test_suggestion_storage_failure_returns_empty(self, orchestrator):
        orchestrator.suggestions.storage.lookup = AsyncMock(side_effect=ConnectionError("redis down"))

        result = await orchestrator.get_suggestions("lap")

        assert result.prefix == "lap"
        assert result.suggestions == []

    @pytest.mark.asyncio
    async def test_slow_suggestions_time_out_to_empty(self, orchestrator):
        async def slow_lookup(prefix, limit):
            await asyncio.sleep(1)
            return []

        orchestrator.suggestions.storage.lookup = slow_lookup
        orchestrator.suggestions_timeout = 0.05

        assert (await orchestrator.get_suggestions("lap")).suggestions == []

    @pytest.mark.asyncio
    async def test_analytics_record_and_selection(self, orchestrator, search_request):
        response = await orchestrator.search(
            search_request("laptop", session_id="s-42", user_id="u-7")
        )
        assert response.analytics_id

        assert orchestrator.log_selection(response.analytics_id, ["p-1001"]) is True
        await orchestrator.recorder.flush(timeout=1)

        record = await orchestrator.recorder.store.get_record(response.analytics_id)
        assert record.result_count == 4
        assert record.session_id == "s-42"
        assert record.user_id == "u-7"
        assert record.selected_product_ids == ("p-1001",)

        stats = await orchestrator.recorder.get_stats(days=1)
        assert stats.total_searches == 1
        assert stats.selection_rate == 1.0

    @pytest.mark.asyncio
    async def test_full_analytics_queue_still_answers(self, make_orchestrator, search_request):
        orchestrator = make_orchestrator()
        await orchestrator.refresh_index()
        # consumer never started, queue fills up
        for _ in range(orchestrator.recorder._queue.maxsize):
            orchestrator.recorder._queue.put_nowait(object())

        response = await orchestrator.search(search_request("laptop"))

        assert response.pagination.total_results == 4
        assert response.analytics_id is None
        assert orchestrator.recorder.dropped == 1
        await orchestrator.drain_background()


@pytest.mark.unit
class TestAuxiliaryOperations:

    @pytest.mark.asyncio
    async def test_filter_options(self, orchestrator):
        options = await orchestrator.get_filter_options()

        assert options.total_products == 6
        assert {c.id for c in options.categories} == {"laptops", "accessories", "audio"}

    @pytest.mark.asyncio
    async def test_filter_options_scoped(self, orchestrator):
        options = await orchestrator.get_filter_options("laptops")

        assert options.total_products == 2

    @pytest.mark.asyncio
    async def test_warm_query_populates_cache(self, orchestrator, search_request):
        await orchestrator.warm_query("laptop")

        response = await orchestrator.search(search_request("laptop"))

        assert response.cache_hit is True
        # warming is invisible to analytics
        await orchestrator.recorder.flush(timeout=1)
        assert (await orchestrator.recorder.get_stats(days=1)).total_searches == 1

    @pytest.mark.asyncio
    async def test_run_maintenance(self, orchestrator):
        result = await orchestrator.run_maintenance()

        assert result == {"analytics_purged": 0, "suggestions_pruned": 0}

    @pytest.mark.asyncio
    async def test_maintenance_failures_are_contained(self, orchestrator):
        orchestrator.recorder.purge_expired = AsyncMock(side_effect=ConnectionError("db down"))

        result = await orchestrator.run_maintenance()

        assert result["analytics_purged"] == 0

    @pytest.mark.asyncio
    async def test_stats(self, orchestrator):
        stats = await orchestrator.stats()

        assert stats["index"]["loaded"] is True
        assert stats["index"]["products"] == 6
        assert stats["index"]["generation"] == 1
        assert stats["cache"]["backend"] == "in-memory"
        assert stats["analytics"]["consumer_running"] is True

    @pytest.mark.asyncio
    async def test_stats_before_index_load(self, make_orchestrator):
        stats = await make_orchestrator().stats()

        assert stats["index"] == {"loaded": False}
