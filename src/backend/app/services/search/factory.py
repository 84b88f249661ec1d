"""
Search Component Factory

Builds a fully wired SearchOrchestrator from search_config.json and the
storage backends chosen at startup, so main.py and the tests assemble the
engine the same way.

Usage:
    from app.services.search.factory import build_search_orchestrator

    orchestrator = build_search_orchestrator(
        catalog=JsonFileCatalogProvider(),
        cache_storage=get_search_cache_storage(),
        suggestion_storage=get_suggestion_storage(),
        analytics_store=get_analytics_store(),
    )
"""

import logging
from typing import Optional

from ...database.analytics_store import AnalyticsStore
from ...database.search_cache_storage import SearchCacheStorage
from ...database.suggestion_storage import SuggestionStorage
from ..config.configuration_service import ConfigurationService, get_config_service
from ..ranker.ranking_engine import RankingEngine, RankingWeights
from .analytics import AnalyticsRecorder
from .cache import CacheWarmer, SearchCache
from .catalog import CatalogProvider
from .filter_engine import FilterEngine
from .fuzzy_matcher import FuzzyMatchConfig, FuzzyMatcher
from .index import IndexManager
from .no_results import NoResultsAdvisor
from .normalizer import QueryNormalizer
from .orchestrator import SearchOrchestrator
from .suggestions import SuggestionEngine

logger = logging.getLogger(__name__)


def build_search_orchestrator(
    catalog: CatalogProvider,
    cache_storage: SearchCacheStorage,
    suggestion_storage: SuggestionStorage,
    analytics_store: AnalyticsStore,
    config_service: Optional[ConfigurationService] = None,
) -> SearchOrchestrator:
    """
    Assemble the search engine.

    Args:
        catalog: Product catalog collaborator
        cache_storage: Result page cache backend (Redis or in-memory)
        suggestion_storage: Suggestion corpus backend (Redis or in-memory)
        analytics_store: Analytics persistence (PostgreSQL or in-memory)
        config_service: Configuration source (defaults to the global service)

    Returns:
        SearchOrchestrator; the index is not loaded yet (call refresh_index)
    """
    config_service = config_service or get_config_service()
    query_config = config_service.get_query_config()
    analytics_config = config_service.get_analytics_config()
    no_results_config = config_service.get_no_results_config()

    suggestions = SuggestionEngine.from_config(suggestion_storage, config_service.get_suggestion_config())
    recorder = AnalyticsRecorder(
        analytics_store,
        queue_size=int(analytics_config.get("queue_size", 1000)),
        retention_days=int(analytics_config.get("retention_days", 90)),
    )

    orchestrator = SearchOrchestrator(
        index_manager=IndexManager(catalog),
        normalizer=QueryNormalizer.from_config(query_config),
        fuzzy_matcher=FuzzyMatcher(FuzzyMatchConfig.from_config(config_service.get_fuzzy_match_config())),
        filter_engine=FilterEngine(catalog, config_service.get_price_ranges()),
        ranking_engine=RankingEngine(RankingWeights.from_config(config_service.get_ranking_config())),
        cache=SearchCache(cache_storage, ttl_seconds=config_service.get_cache_ttl()),
        suggestions=suggestions,
        recorder=recorder,
        no_results=NoResultsAdvisor(
            suggestions,
            recorder,
            similar_limit=int(no_results_config.get("similar_queries", 5)),
            popular_limit=int(no_results_config.get("popular_products", 6)),
            trending_limit=int(no_results_config.get("trending_searches", 5)),
            trending_days=int(analytics_config.get("trending_days", 7)),
        ),
        config={
            "timeout_seconds": config_service.get_search_timeout(),
            "suggestions_timeout_seconds": config_service.get_suggestions_timeout(),
            "default_page_size": int(query_config.get("default_page_size", 20)),
            "max_page_size": int(query_config.get("max_page_size", 100)),
        },
    )

    logger.info(
        f"Search engine assembled (cache: {getattr(cache_storage, 'backend_name', '?')}, "
        f"analytics: {getattr(analytics_store, 'backend_name', '?')})"
    )
    return orchestrator


def build_cache_warmer(
    orchestrator: SearchOrchestrator,
    config_service: Optional[ConfigurationService] = None,
) -> Optional[CacheWarmer]:
    """Cache warmer over the most frequent suggestion-corpus queries, or None when disabled."""
    config_service = config_service or get_config_service()
    warming = config_service.get_warming_config()
    if not warming.get("enabled", True):
        return None

    return CacheWarmer(
        warm_query=orchestrator.warm_query,
        popular_queries=orchestrator.suggestions.popular_queries,
        interval_seconds=int(warming.get("interval_seconds", 600)),
        top_queries=int(warming.get("top_queries", 20)),
    )
