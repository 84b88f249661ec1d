"""
Search Orchestrator

Composes the search pipeline into the request/response cycle:
- Normalizes and validates the query and filters
- Serves result pages through the cache (single-flight on miss)
- On miss: fuzzy expansion -> filtering -> ranking -> pagination
- Records analytics and feeds suggestions off the response path
- Enforces a per-search time budget
"""

import asyncio
import logging
import time
from typing import Any, Coroutine, Dict, List, Optional, Set

from langsmith import traceable

from ...models.search import (
    FilterOptions,
    ProductHit,
    RankedResult,
    SearchFilters,
    SearchQuery,
    SearchRequest,
    SearchResponse,
    SearchResultPage,
    SearchSuggestion,
)
from ...utils.logging_context import log_context
from ..ranker.ranking_engine import RankingEngine
from .analytics import AnalyticsRecorder
from .cache import SearchCache
from .errors import DependencyUnavailable, InvalidQuery, SearchTimeout
from .filter_engine import FilterEngine
from .fuzzy_matcher import FuzzyMatcher
from .index import IndexManager, ProductIndex
from .no_results import NoResultsAdvisor
from .normalizer import QueryNormalizer
from .pagination import paginate
from .suggestions import SuggestionEngine

logger = logging.getLogger(__name__)


class SearchOrchestrator:
    """
    Public entry points of the search engine.

    Coordinates:
    1. Query and filter validation
    2. Cache lookup with single-flight computation
    3. Ranking against the current index snapshot
    4. Zero-results guidance
    5. Background analytics and suggestion updates
    """

    def __init__(
        self,
        index_manager: IndexManager,
        normalizer: QueryNormalizer,
        fuzzy_matcher: FuzzyMatcher,
        filter_engine: FilterEngine,
        ranking_engine: RankingEngine,
        cache: SearchCache,
        suggestions: SuggestionEngine,
        recorder: AnalyticsRecorder,
        no_results: Optional[NoResultsAdvisor] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize search orchestrator.

        Args:
            index_manager: Owner of the current index snapshot
            normalizer: Query normalizer
            fuzzy_matcher: Token expansion
            filter_engine: Filter validation and predicates
            ranking_engine: Relevance scoring
            cache: Result page cache
            suggestions: Autocomplete corpus
            recorder: Analytics queue
            no_results: Zero-results guidance builder
            config: Orchestration settings
                Example:
                {
                    "timeout_seconds": 5.0,
                    "suggestions_timeout_seconds": 2.0,
                    "default_page_size": 20,
                    "max_page_size": 100
                }
        """
        config = config or {}
        self.index_manager = index_manager
        self.normalizer = normalizer
        self.fuzzy_matcher = fuzzy_matcher
        self.filter_engine = filter_engine
        self.ranking_engine = ranking_engine
        self.cache = cache
        self.suggestions = suggestions
        self.recorder = recorder
        self.no_results = no_results or NoResultsAdvisor(suggestions, recorder)
        self.timeout = float(config.get("timeout_seconds", 5.0))
        self.suggestions_timeout = float(config.get("suggestions_timeout_seconds", 2.0))
        self.default_page_size = int(config.get("default_page_size", 20))
        self.max_page_size = int(config.get("max_page_size", 100))
        self._background: Set[asyncio.Task] = set()

        # cache first so no page from a superseded snapshot survives the swap
        index_manager.add_listener(cache.on_index_refresh)
        index_manager.add_listener(self._on_index_refresh)

        logger.info(
            f"SearchOrchestrator initialized "
            f"(timeout={self.timeout}s, max_page_size={self.max_page_size})"
        )

    # ------------------------------------------------------------------
    # Query preparation
    # ------------------------------------------------------------------

    async def prepare_query(self, request: SearchRequest) -> SearchQuery:
        """
        Validate a request and build the immutable SearchQuery.

        Raises:
            InvalidQuery: Empty/too long query or page parameters out of bounds
            InvalidFilter: Invalid filter values or sort directive
        """
        normalized = self.normalizer.normalize(request.query)

        if request.page < 1:
            raise InvalidQuery("page must be >= 1", {"field": "page", "value": request.page})

        if not 1 <= request.page_size <= self.max_page_size:
            raise InvalidQuery(
                f"page_size must be between 1 and {self.max_page_size}",
                {"field": "page_size", "value": request.page_size},
            )

        filters = request.filters or SearchFilters()
        await self.filter_engine.validate(filters)
        self.filter_engine.validate_sort(request.sort_by)

        return SearchQuery(
            raw_text=normalized.display_text,
            normalized_text=normalized.normalized_text,
            tokens=normalized.tokens,
            scoring_tokens=normalized.scoring_tokens,
            filters=filters,
            sort_by=request.sort_by,
            page=request.page,
            page_size=request.page_size,
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def rank(self, query: SearchQuery, index: ProductIndex) -> List[RankedResult]:
        """Fuzzy expansion, candidate lookup, filtering and scoring against one snapshot."""
        expansion = self.fuzzy_matcher.expand(query.tokens, index.vocabulary)

        # short tokens only add coverage to products a scoring token already found
        seed_tokens = query.scoring_tokens or query.tokens
        candidate_ids: Set[str] = set()
        for token in seed_tokens:
            for index_token in expansion.get(token, {}):
                candidate_ids.update(index.postings(index_token))

        candidates = self.filter_engine.apply(
            (entry for entry in (index.get(pid) for pid in sorted(candidate_ids)) if entry is not None),
            query.filters,
        )

        return self.ranking_engine.rank(
            candidates,
            expansion,
            query.tokens,
            query.scoring_tokens,
            index,
            sort_by=query.sort_by,
        )

    async def compute_page(self, query: SearchQuery) -> SearchResultPage:
        """Uncached pipeline run. CPU work happens off the event loop."""
        index = self.index_manager.current()
        ranked = await asyncio.to_thread(self.rank, query, index)
        page_items, pagination = paginate(ranked, query.page, query.page_size)

        return SearchResultPage(
            results=[ProductHit.from_ranked(r) for r in page_items],
            pagination=pagination,
            index_generation=index.generation,
        )

    async def _cached_page(self, query: SearchQuery):
        generation = self.index_manager.current().generation
        try:
            return await asyncio.wait_for(
                self.cache.get_or_compute(query, lambda: self.compute_page(query), generation=generation),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Search timed out after {self.timeout}s: '{query.raw_text}'")
            raise SearchTimeout(
                f"Search exceeded its time budget of {self.timeout} seconds",
                {"timeout_seconds": self.timeout},
            )

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    @traceable(name="search_orchestrator", run_type="retriever")
    async def search(self, request: SearchRequest) -> SearchResponse:
        """
        Execute a keyword search.

        Args:
            request: Search request (query, filters, sort, page)

        Returns:
            SearchResponse; an empty result is a valid response with no_results guidance

        Raises:
            InvalidQuery / InvalidFilter: Malformed input
            SearchTimeout: Time budget exceeded
            DependencyUnavailable: No index snapshot loaded
        """
        start_time = time.time()

        query = await self.prepare_query(request)
        index = self.index_manager.current()

        with log_context(search_query=query.normalized_text, search_page=query.page):
            page, cache_hit = await self._cached_page(query)
            response_time_ms = int((time.time() - start_time) * 1000)
            total = page.pagination.total_results

            analytics_id = self._record_analytics(query, total, response_time_ms, cache_hit, request)

            if total > 0:
                self._spawn(self.suggestions.record_query(query.normalized_text), "suggestion update")

            no_results = None
            if total == 0:
                no_results = await self.no_results.build(query, index)

            logger.info(
                f"Search '{query.normalized_text}' -> {total} results "
                f"(page {query.page}, cache_hit={cache_hit}, {response_time_ms}ms)"
            )

        return SearchResponse(
            results=page.results,
            pagination=page.pagination,
            query=query.raw_text,
            sort_by=query.sort_by,
            filters_applied=query.filters.model_dump(mode="json", exclude_none=True, exclude_defaults=True),
            response_time_ms=response_time_ms,
            cache_hit=cache_hit,
            analytics_id=analytics_id,
            no_results=no_results,
        )

    @traceable(name="search_suggestions", run_type="retriever")
    async def get_suggestions(self, prefix: str, limit: Optional[int] = None) -> SearchSuggestion:
        """Autocomplete. Slow or failing storage degrades to an empty list."""
        try:
            return await asyncio.wait_for(
                self.suggestions.get_suggestions(prefix, limit),
                timeout=self.suggestions_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Suggestion lookup timed out for '{prefix}'")
            return SearchSuggestion(prefix=self.suggestions.normalize_prefix(prefix))
        except Exception as e:
            logger.error(f"Suggestion lookup failed for '{prefix}': {e}", exc_info=True)
            return SearchSuggestion(prefix=self.suggestions.normalize_prefix(prefix))

    async def get_filter_options(self, category_scope: Optional[str] = None) -> FilterOptions:
        """Read-only aggregation of filter values over the current snapshot."""
        index = self.index_manager.current()
        return await self.filter_engine.get_filter_options(index, category_scope)

    def log_selection(self, analytics_id: str, product_ids: List[str]) -> bool:
        """Best-effort enrichment of a prior analytics record."""
        return self.recorder.log_selection(analytics_id, product_ids)

    async def warm_query(self, query_text: str):
        """Populate the cache for the first page of a query (no analytics, no suggestion update)."""
        query = await self.prepare_query(SearchRequest(query=query_text, page_size=self.default_page_size))
        self.index_manager.current()
        await self._cached_page(query)

    async def refresh_index(self) -> ProductIndex:
        """
        Reload the catalog snapshot; the cache is invalidated by the refresh listener.

        Raises:
            DependencyUnavailable: Catalog could not be read (previous snapshot stays published)
        """
        try:
            return await self.index_manager.invalidate()
        except Exception as e:
            logger.error(f"Index refresh failed: {e}", exc_info=True)
            raise DependencyUnavailable(
                "Catalog refresh failed",
                {"dependency": "catalog", "reason": str(e)},
            ) from e

    async def run_maintenance(self) -> Dict[str, int]:
        """Apply analytics retention and prune stale suggestions."""
        result = {"analytics_purged": 0, "suggestions_pruned": 0}
        try:
            result["analytics_purged"] = await self.recorder.purge_expired()
        except Exception as e:
            logger.error(f"Analytics retention purge failed: {e}", exc_info=True)
        try:
            result["suggestions_pruned"] = await self.suggestions.prune()
        except Exception as e:
            logger.error(f"Suggestion pruning failed: {e}", exc_info=True)
        return result

    async def stats(self) -> Dict[str, Any]:
        index_stats: Dict[str, Any] = {"loaded": self.index_manager.is_loaded}
        if self.index_manager.is_loaded:
            index = self.index_manager.current()
            index_stats.update(
                generation=index.generation,
                products=len(index),
                vocabulary=len(index.vocabulary),
                built_at=index.built_at.isoformat(),
            )
        return {
            "index": index_stats,
            "cache": await self.cache.stats(),
            "analytics": self.recorder.queue_stats(),
        }

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _record_analytics(
        self,
        query: SearchQuery,
        total: int,
        response_time_ms: int,
        cache_hit: bool,
        request: SearchRequest,
    ) -> Optional[str]:
        try:
            return self.recorder.record(
                query,
                result_count=total,
                response_time_ms=response_time_ms,
                cache_hit=cache_hit,
                user_id=request.user_id,
                session_id=request.session_id,
            )
        except Exception as e:
            logger.error(f"Failed to queue search analytics: {e}", exc_info=True)
            return None

    def _spawn(self, coro: Coroutine, description: str):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(lambda t: self._background_done(t, description))

    def _background_done(self, task: asyncio.Task, description: str):
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background {description} failed: {exc}")

    async def drain_background(self):
        """Wait for pending background updates (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _on_index_refresh(self, _snapshot: ProductIndex):
        await self.run_maintenance()
