"""
Filter Engine

Validates structured filters and turns them into a predicate over index
entries. Also aggregates the filter options (categories, price buckets,
availability) offered to callers.
"""

import logging
import math
from typing import Callable, Dict, Iterable, List, Optional

from ...models.search import (
    Availability,
    AvailabilityOption,
    CategoryOption,
    FilterOptions,
    PriceRangeOption,
    ProductIndexEntry,
    SearchFilters,
    SortOption,
)
from .catalog import CatalogProvider
from .errors import InvalidFilter
from .index import ProductIndex

logger = logging.getLogger(__name__)

ProductPredicate = Callable[[ProductIndexEntry], bool]

VALID_AVAILABILITY = [a.value for a in Availability]
VALID_SORT_OPTIONS = [s.value for s in SortOption]

DEFAULT_PRICE_RANGES = [
    {"label": "Under $50", "min": 0, "max": 50},
    {"label": "$50 - $100", "min": 50, "max": 100},
    {"label": "$100 - $200", "min": 100, "max": 200},
    {"label": "$200 - $500", "min": 200, "max": 500},
    {"label": "$500+", "min": 500, "max": None},
]

# availability filter value -> product availability states it admits
_AVAILABILITY_MATCHES = {
    Availability.IN_STOCK.value: {Availability.IN_STOCK.value, Availability.LOW_STOCK.value},
    Availability.LOW_STOCK.value: {Availability.LOW_STOCK.value},
    Availability.OUT_OF_STOCK.value: {Availability.OUT_OF_STOCK.value},
}


def _check_price(name: str, value: Optional[float]):
    if value is None:
        return
    if not math.isfinite(value):
        raise InvalidFilter(f"{name} must be a finite number", {"field": name})
    if value < 0:
        raise InvalidFilter(f"{name} must be non-negative", {"field": name, "value": value})


class FilterEngine:
    """Filter validation and application"""

    def __init__(self, catalog: CatalogProvider, price_ranges: Optional[List[Dict]] = None):
        self.catalog = catalog
        self.price_ranges = price_ranges or DEFAULT_PRICE_RANGES

    async def validate(self, filters: SearchFilters):
        """
        Validate filter values.

        Args:
            filters: Filters from the request

        Raises:
            InvalidFilter: On out-of-range, inconsistent or unknown values
        """
        _check_price("price_min", filters.price_min)
        _check_price("price_max", filters.price_max)

        if (
            filters.price_min is not None
            and filters.price_max is not None
            and filters.price_min > filters.price_max
        ):
            raise InvalidFilter(
                "price_min cannot be greater than price_max",
                {"price_min": filters.price_min, "price_max": filters.price_max},
            )

        if filters.availability is not None and filters.availability not in VALID_AVAILABILITY:
            raise InvalidFilter(
                f"Invalid availability '{filters.availability}'",
                {"field": "availability", "allowed": VALID_AVAILABILITY},
            )

        if filters.category_id:
            if not await self.catalog.category_exists(filters.category_id):
                raise InvalidFilter(
                    f"Unknown category '{filters.category_id}'",
                    {"field": "category_id"},
                )

    @staticmethod
    def validate_sort(sort_by: str):
        if sort_by not in VALID_SORT_OPTIONS:
            raise InvalidFilter(
                f"Invalid sort option '{sort_by}'",
                {"field": "sort_by", "allowed": VALID_SORT_OPTIONS},
            )

    @staticmethod
    def build_predicate(filters: SearchFilters) -> ProductPredicate:
        """Compile validated filters into a single predicate."""
        checks: List[ProductPredicate] = []

        if filters.price_min is not None:
            price_min = filters.price_min
            checks.append(lambda p: p.price >= price_min)

        if filters.price_max is not None:
            price_max = filters.price_max
            checks.append(lambda p: p.price <= price_max)

        if filters.category_id:
            category_id = filters.category_id
            checks.append(lambda p: p.category_id == category_id)

        admitted = _AVAILABILITY_MATCHES.get(filters.availability or Availability.ALL.value)
        if admitted is not None:
            checks.append(lambda p: p.availability in admitted)

        if filters.tags:
            wanted = {t.lower() for t in filters.tags}
            checks.append(lambda p: wanted.issubset({t.lower() for t in p.tags}))

        def predicate(product: ProductIndexEntry) -> bool:
            return all(check(product) for check in checks)

        return predicate

    def apply(self, entries: Iterable[ProductIndexEntry], filters: SearchFilters) -> List[ProductIndexEntry]:
        predicate = self.build_predicate(filters)
        return [e for e in entries if predicate(e)]

    async def get_filter_options(self, index: ProductIndex, category_scope: Optional[str] = None) -> FilterOptions:
        """
        Aggregate available filter values over the index.

        Args:
            index: Current index snapshot
            category_scope: Optional category id to restrict the aggregation

        Returns:
            FilterOptions with counts

        Raises:
            InvalidFilter: If category_scope is unknown
        """
        if category_scope:
            if not await self.catalog.category_exists(category_scope):
                raise InvalidFilter(f"Unknown category '{category_scope}'", {"field": "category_id"})
            entries = [e for e in index.entries if e.category_id == category_scope]
        else:
            entries = list(index.entries)

        category_counts: Dict[str, int] = {}
        for entry in entries:
            category_counts[entry.category_id] = category_counts.get(entry.category_id, 0) + 1

        categories = sorted(
            (
                CategoryOption(id=cid, name=index.categories.get(cid, cid), count=count)
                for cid, count in category_counts.items()
            ),
            key=lambda c: (-c.count, c.name),
        )

        price_ranges = []
        for bucket in self.price_ranges:
            low = float(bucket.get("min", 0) or 0)
            high = bucket.get("max")
            count = sum(
                1 for e in entries
                if e.price >= low and (high is None or e.price < float(high))
            )
            price_ranges.append(
                PriceRangeOption(label=bucket.get("label", ""), min=low, max=high, count=count)
            )

        availability = [
            AvailabilityOption(
                value=value,
                count=len(entries) if value == Availability.ALL.value
                else sum(1 for e in entries if e.availability in _AVAILABILITY_MATCHES[value]),
            )
            for value in VALID_AVAILABILITY
        ]

        prices = [e.price for e in entries]

        return FilterOptions(
            categories=categories,
            price_ranges=price_ranges,
            price_min=min(prices) if prices else None,
            price_max=max(prices) if prices else None,
            availability=availability,
            total_products=len(entries),
        )
