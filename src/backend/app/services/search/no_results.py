"""
No-Results Guidance

Builds the extra payload returned when a search matches nothing: a message,
did-you-mean queries, popular products, trending searches and help text.
Every part is best effort; a failing source yields an empty list.
"""

import logging
from typing import List, Optional

from ...models.search import Availability, NoResultsInfo, ProductHit, SearchQuery
from .analytics import AnalyticsRecorder
from .index import ProductIndex
from .suggestions import SuggestionEngine

logger = logging.getLogger(__name__)

HELP_TEXT = [
    "Check the spelling of your search terms",
    "Try more general keywords",
    "Use fewer keywords",
    "Remove some filters to broaden the search",
]


class NoResultsAdvisor:
    def __init__(
        self,
        suggestions: SuggestionEngine,
        recorder: Optional[AnalyticsRecorder] = None,
        similar_limit: int = 5,
        popular_limit: int = 6,
        trending_limit: int = 5,
        trending_days: int = 7,
    ):
        self.suggestions = suggestions
        self.recorder = recorder
        self.similar_limit = similar_limit
        self.popular_limit = popular_limit
        self.trending_limit = trending_limit
        self.trending_days = trending_days

    def popular_products(self, index: ProductIndex) -> List[ProductHit]:
        available = [e for e in index.entries if e.availability != Availability.OUT_OF_STOCK.value]
        available.sort(key=lambda e: (-e.popularity, -e.created_at.timestamp(), e.id))
        return [ProductHit.from_entry(e) for e in available[: self.popular_limit]]

    async def _similar(self, query: SearchQuery) -> List[str]:
        try:
            return await self.suggestions.similar_queries(query.normalized_text, limit=self.similar_limit)
        except Exception as e:
            logger.warning(f"Similar query lookup failed: {e}")
            return []

    async def _trending(self) -> List[str]:
        if self.recorder is None:
            return []
        try:
            return await self.recorder.trending_queries(days=self.trending_days, limit=self.trending_limit)
        except Exception as e:
            logger.warning(f"Trending search lookup failed: {e}")
            return []

    async def build(self, query: SearchQuery, index: ProductIndex) -> NoResultsInfo:
        message = f"No products found for '{query.raw_text}'"
        if not query.filters.is_empty():
            message += " with the selected filters"

        return NoResultsInfo(
            message=message,
            suggestions=await self._similar(query),
            popular_products=self.popular_products(index),
            trending_searches=await self._trending(),
            help_text=list(HELP_TEXT),
        )
