"""Models package - Search engine data structures"""

from .search import (
    Availability,
    SortOption,
    CatalogProduct,
    CategoryInfo,
    ProductIndexEntry,
    SearchFilters,
    NormalizedQuery,
    SearchQuery,
    SearchRequest,
    RankedResult,
    ProductHit,
    PaginationInfo,
    SearchResultPage,
    SearchCacheEntry,
    NoResultsInfo,
    SearchResponse,
    SuggestionEntry,
    SearchSuggestion,
    FilterOptions,
    SearchAnalyticsRecord,
    AnalyticsStats,
    SelectionRequest,
)

__all__ = [
    "Availability",
    "SortOption",
    "CatalogProduct",
    "CategoryInfo",
    "ProductIndexEntry",
    "SearchFilters",
    "NormalizedQuery",
    "SearchQuery",
    "SearchRequest",
    "RankedResult",
    "ProductHit",
    "PaginationInfo",
    "SearchResultPage",
    "SearchCacheEntry",
    "NoResultsInfo",
    "SearchResponse",
    "SuggestionEntry",
    "SearchSuggestion",
    "FilterOptions",
    "SearchAnalyticsRecord",
    "AnalyticsStats",
    "SelectionRequest",
]
