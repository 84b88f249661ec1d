"""
Search Package

Keyword product search over an in-memory catalog snapshot:
- QueryNormalizer: sanitization and tokenization
- FuzzyMatcher: exact, prefix and bounded-edit-distance token expansion
- FilterEngine: price/category/availability/tag predicates and filter options
- SearchCache: versioned result cache with single-flight computation
- SuggestionEngine: prefix autocomplete fed by executed searches
- AnalyticsRecorder: fire-and-forget search analytics

SearchOrchestrator composes these into the public entry points.
"""

from .analytics import AnalyticsRecorder
from .cache import CacheWarmer, SearchCache, SingleFlight, make_cache_key
from .catalog import CatalogProvider, InMemoryCatalogProvider, JsonFileCatalogProvider
from .errors import DependencyUnavailable, InvalidFilter, InvalidQuery, SearchError, SearchTimeout
from .filter_engine import FilterEngine
from .fuzzy_matcher import FuzzyMatchConfig, FuzzyMatcher, TokenVocabulary
from .index import IndexManager, ProductIndex
from .no_results import NoResultsAdvisor
from .normalizer import QueryNormalizer
from .orchestrator import SearchOrchestrator
from .suggestions import SuggestionEngine

__all__ = [
    "AnalyticsRecorder",
    "CacheWarmer",
    "SearchCache",
    "SingleFlight",
    "make_cache_key",
    "CatalogProvider",
    "InMemoryCatalogProvider",
    "JsonFileCatalogProvider",
    "SearchError",
    "InvalidQuery",
    "InvalidFilter",
    "SearchTimeout",
    "DependencyUnavailable",
    "FilterEngine",
    "FuzzyMatchConfig",
    "FuzzyMatcher",
    "TokenVocabulary",
    "IndexManager",
    "ProductIndex",
    "NoResultsAdvisor",
    "QueryNormalizer",
    "SearchOrchestrator",
    "SuggestionEngine",
]
