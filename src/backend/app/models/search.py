"""
Search Data Models

Shared pydantic models for the search engine: catalog input, index entries,
queries, ranked results, cache entries, suggestions and analytics records.
Kept in one module so services, storage backends and the API layer import
them without circular dependencies.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    """Return timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class Availability(str, Enum):
    """Availability values accepted by filters"""
    ALL = "all"
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class SortOption(str, Enum):
    """Sort directives accepted by search"""
    RELEVANCE = "relevance"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    POPULARITY = "popularity"
    NEWEST = "newest"


# Stock quantity at or below this counts as low stock
LOW_STOCK_THRESHOLD = 10


# ============================================================================
# Catalog and index
# ============================================================================

class CatalogProduct(BaseModel):
    """Product as supplied by the catalog collaborator"""
    id: str
    name: str
    description: str = ""
    category_id: str
    category_name: str = ""
    tags: List[str] = Field(default_factory=list)
    price: float = 0.0
    popularity: float = 0.0  # 0..1 after catalog normalization, clamped by the ranker
    availability: Optional[str] = None
    stock_quantity: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)

    def resolve_availability(self) -> str:
        """Explicit availability wins, otherwise derive it from stock quantity."""
        if self.availability:
            return self.availability
        if self.stock_quantity is None:
            return Availability.IN_STOCK.value
        if self.stock_quantity <= 0:
            return Availability.OUT_OF_STOCK.value
        if self.stock_quantity <= LOW_STOCK_THRESHOLD:
            return Availability.LOW_STOCK.value
        return Availability.IN_STOCK.value


class CategoryInfo(BaseModel):
    """Category reference exposed by the catalog collaborator"""
    id: str
    name: str


class ProductIndexEntry(BaseModel):
    """Read-only, precomputed product entry inside an index snapshot"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    category_id: str
    category_name: str
    tags: Tuple[str, ...]
    price: float
    popularity: float
    availability: str
    created_at: datetime
    # field name -> tokens appearing in that field
    field_tokens: Dict[str, FrozenSet[str]]

    @property
    def all_tokens(self) -> FrozenSet[str]:
        tokens: FrozenSet[str] = frozenset()
        for field_set in self.field_tokens.values():
            tokens = tokens | field_set
        return tokens


# ============================================================================
# Query
# ============================================================================

class SearchFilters(BaseModel):
    """Structured filters attached to a search request"""
    model_config = ConfigDict(frozen=True)

    price_min: Optional[float] = None
    price_max: Optional[float] = None
    category_id: Optional[str] = None
    availability: Optional[str] = None
    tags: Tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return (
            self.price_min is None
            and self.price_max is None
            and not self.category_id
            and self.availability in (None, Availability.ALL.value)
            and not self.tags
        )


class NormalizedQuery(BaseModel):
    """Output of the query normalizer"""
    model_config = ConfigDict(frozen=True)

    display_text: str
    normalized_text: str
    tokens: Tuple[str, ...]
    scoring_tokens: Tuple[str, ...]


class SearchQuery(BaseModel):
    """Validated, immutable search request"""
    model_config = ConfigDict(frozen=True)

    raw_text: str
    normalized_text: str
    tokens: Tuple[str, ...]
    scoring_tokens: Tuple[str, ...]
    filters: SearchFilters = Field(default_factory=SearchFilters)
    sort_by: str = SortOption.RELEVANCE.value
    page: int = 1
    page_size: int = 20


class SearchRequest(BaseModel):
    """Search request body (POST /api/v1/search)"""
    query: str
    filters: Optional[SearchFilters] = None
    sort_by: str = SortOption.RELEVANCE.value
    page: int = 1
    page_size: int = 20
    session_id: Optional[str] = None
    user_id: Optional[str] = None


# ============================================================================
# Results
# ============================================================================

class RankedResult(BaseModel):
    """Scored candidate produced by the ranking engine"""
    model_config = ConfigDict(frozen=True)

    product: ProductIndexEntry
    score: float
    matched_fields: Tuple[str, ...] = ()
    matched_tokens: int = 0


class ProductHit(BaseModel):
    """Product as returned to callers"""
    id: str
    name: str
    description: str = ""
    price: float
    category: str
    category_id: str
    tags: List[str] = Field(default_factory=list)
    availability: str
    popularity: float = 0.0
    relevance_score: float
    matched_fields: List[str] = Field(default_factory=list)
    reason: Optional[str] = None

    @classmethod
    def from_entry(
        cls,
        entry: ProductIndexEntry,
        score: float = 0.0,
        matched_fields: Tuple[str, ...] = (),
    ) -> "ProductHit":
        return cls(
            id=entry.id,
            name=entry.name,
            description=entry.description,
            price=entry.price,
            category=entry.category_name,
            category_id=entry.category_id,
            tags=list(entry.tags),
            availability=entry.availability,
            popularity=entry.popularity,
            relevance_score=round(score, 6),
            matched_fields=list(matched_fields),
            reason=f"Matched in {', '.join(matched_fields)}" if matched_fields else None,
        )

    @classmethod
    def from_ranked(cls, ranked: RankedResult) -> "ProductHit":
        return cls.from_entry(ranked.product, ranked.score, ranked.matched_fields)


class PaginationInfo(BaseModel):
    """Pagination metadata"""
    current_page: int
    total_pages: int
    total_results: int
    page_size: int
    has_next: bool
    has_previous: bool


class SearchResultPage(BaseModel):
    """One page of ranked results; the unit stored in the cache"""
    results: List[ProductHit] = Field(default_factory=list)
    pagination: PaginationInfo
    index_generation: int = 0


class SearchCacheEntry(BaseModel):
    """Cached result page. Overwritten, never mutated."""
    model_config = ConfigDict(frozen=True)

    key: str
    page: SearchResultPage
    result_count: int
    created_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def _check_expiry(self):
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at


class NoResultsInfo(BaseModel):
    """Extra guidance returned when a search matches nothing"""
    message: str
    suggestions: List[str] = Field(default_factory=list)
    popular_products: List[ProductHit] = Field(default_factory=list)
    trending_searches: List[str] = Field(default_factory=list)
    help_text: List[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Search response body"""
    results: List[ProductHit]
    pagination: PaginationInfo
    query: str
    sort_by: str = SortOption.RELEVANCE.value
    filters_applied: Dict[str, Any] = Field(default_factory=dict)
    response_time_ms: int
    cache_hit: bool = False
    analytics_id: Optional[str] = None
    no_results: Optional[NoResultsInfo] = None


# ============================================================================
# Suggestions
# ============================================================================

class SuggestionEntry(BaseModel):
    """Full query observed in executed searches"""
    query: str
    occurrences: int = 0
    last_used: datetime = Field(default_factory=utc_now)


class SearchSuggestion(BaseModel):
    """Ordered suggestions for one normalized prefix"""
    prefix: str
    suggestions: List[str] = Field(default_factory=list)
    occurrences: int = 0
    last_used: Optional[datetime] = None


# ============================================================================
# Filter options
# ============================================================================

class CategoryOption(BaseModel):
    id: str
    name: str
    count: int


class PriceRangeOption(BaseModel):
    label: str
    min: float
    max: Optional[float] = None
    count: int


class AvailabilityOption(BaseModel):
    value: str
    count: int


class FilterOptions(BaseModel):
    """Available filter values aggregated over the index"""
    categories: List[CategoryOption] = Field(default_factory=list)
    price_ranges: List[PriceRangeOption] = Field(default_factory=list)
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    availability: List[AvailabilityOption] = Field(default_factory=list)
    sort_options: List[str] = Field(default_factory=lambda: [s.value for s in SortOption])
    total_products: int = 0


# ============================================================================
# Analytics
# ============================================================================

class SearchAnalyticsRecord(BaseModel):
    """Append-only record of a completed search"""
    model_config = ConfigDict(frozen=True)

    id: str
    query: str
    normalized_query: str
    filters: Dict[str, Any] = Field(default_factory=dict)
    sort_by: str = SortOption.RELEVANCE.value
    page: int = 1
    result_count: int
    response_time_ms: int
    cache_hit: bool = False
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    selected_product_ids: Tuple[str, ...] = ()


class QueryCount(BaseModel):
    query: str
    count: int


class AnalyticsStats(BaseModel):
    """Summary over a window of analytics records"""
    period_days: int
    total_searches: int = 0
    avg_response_time_ms: float = 0.0
    cache_hit_rate: float = 0.0
    zero_result_rate: float = 0.0
    selection_rate: float = 0.0
    top_queries: List[QueryCount] = Field(default_factory=list)
    zero_result_queries: List[QueryCount] = Field(default_factory=list)


class SelectionRequest(BaseModel):
    """Selection logging body (POST /api/v1/search/analytics/selection)"""
    analytics_id: str
    product_ids: List[str] = Field(min_length=1)
