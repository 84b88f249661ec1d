"""
Suggestion Engine

Autocomplete from executed searches. Only queries that actually ran (and
returned results) feed the corpus, never raw keystrokes.
"""

import logging
from datetime import timedelta
from typing import List, Mapping, Optional

from rapidfuzz import fuzz, process

from ...database.suggestion_storage import SuggestionStorage
from ...models.search import SearchSuggestion, utc_now
from .normalizer import tokenize

logger = logging.getLogger(__name__)


class SuggestionEngine:
    """Prefix -> ranked full queries (occurrences, then recency)"""

    def __init__(
        self,
        storage: SuggestionStorage,
        min_prefix_length: int = 2,
        default_limit: int = 10,
        max_limit: int = 50,
        prune_min_occurrences: int = 2,
        retention_days: int = 30,
    ):
        self.storage = storage
        self.min_prefix_length = min_prefix_length
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.prune_min_occurrences = prune_min_occurrences
        self.retention_days = retention_days

    @classmethod
    def from_config(cls, storage: SuggestionStorage, config: Mapping) -> "SuggestionEngine":
        config = config or {}
        return cls(
            storage,
            min_prefix_length=int(config.get("min_prefix_length", 2)),
            default_limit=int(config.get("default_limit", 10)),
            max_limit=int(config.get("max_limit", 50)),
            prune_min_occurrences=int(config.get("prune_min_occurrences", 2)),
            retention_days=int(config.get("retention_days", 30)),
        )

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None or limit < 1:
            return self.default_limit
        return min(limit, self.max_limit)

    @staticmethod
    def normalize_prefix(prefix: str) -> str:
        return " ".join(tokenize(prefix or ""))

    async def record_query(self, normalized_query: str):
        """Count one executed search."""
        if len(normalized_query) < self.min_prefix_length:
            return
        await self.storage.record(normalized_query)

    async def get_suggestions(self, prefix: str, limit: Optional[int] = None) -> SearchSuggestion:
        """
        Suggestions for a typed prefix.

        Args:
            prefix: Raw prefix from the caller
            limit: Max suggestions (default 10, capped at 50)

        Returns:
            SearchSuggestion; empty for prefixes shorter than the minimum
        """
        normalized = self.normalize_prefix(prefix)
        if len(normalized) < self.min_prefix_length:
            return SearchSuggestion(prefix=normalized)

        entries = await self.storage.lookup(normalized, self._clamp_limit(limit))

        return SearchSuggestion(
            prefix=normalized,
            suggestions=[e.query for e in entries],
            occurrences=sum(e.occurrences for e in entries),
            last_used=max((e.last_used for e in entries), default=None),
        )

    async def popular_queries(self, limit: int = 10) -> List[str]:
        return [e.query for e in await self.storage.top_queries(limit)]

    async def similar_queries(self, normalized_query: str, limit: int = 5, pool: int = 200) -> List[str]:
        """Known queries close to one that found nothing (did-you-mean)."""
        if not normalized_query:
            return []

        known = [q for q in await self.popular_queries(pool) if q != normalized_query]
        if not known:
            return []

        matches = process.extract(
            normalized_query,
            known,
            scorer=fuzz.WRatio,
            score_cutoff=70,
            limit=limit,
        )
        return [choice for choice, _, _ in matches]

    async def prune(self) -> int:
        """Drop rarely used suggestions not seen within the retention window."""
        cutoff = utc_now() - timedelta(days=self.retention_days)
        removed = await self.storage.prune(self.prune_min_occurrences, cutoff)
        if removed:
            logger.info(f"Pruned {removed} stale suggestions")
        return removed
