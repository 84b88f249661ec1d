"""
Ranking Engine
--------------
Deterministic, explainable relevance scoring for keyword search.

score = textual_share  * textual
      + coverage_bonus * (matched query tokens / query tokens)
      + popularity_cap * popularity

textual is the mean over scoring tokens of the best
(field weight / max field weight) * match quality * rarity
found for that token. Rarity blends in a normalized IDF so common words do
not dominate. The final score is clamped to [0, 1].

Ties break on created_at (newest first), then id.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...models.search import ProductIndexEntry, RankedResult, SortOption

if TYPE_CHECKING:
    from ..search.index import ProductIndex

Expansion = Mapping[str, Mapping[str, float]]


class RankingWeights(BaseModel):
    """Tunable scoring constants, passed to the engine as one value"""
    model_config = ConfigDict(frozen=True)

    field_weights: Dict[str, float] = Field(
        default_factory=lambda: {"name": 3.0, "description": 2.0, "tags": 1.0, "category": 1.0}
    )
    rarity_weight: float = 0.5
    coverage_bonus: float = 0.2
    popularity_cap: float = 0.1
    textual_share: float = 0.7

    @field_validator("field_weights")
    @classmethod
    def _non_negative_weights(cls, v: Dict[str, float]) -> Dict[str, float]:
        if not v or any(w < 0 for w in v.values()):
            raise ValueError("field weights must be non-empty and non-negative")
        return v

    @field_validator("rarity_weight", "coverage_bonus", "popularity_cap", "textual_share")
    @classmethod
    def _unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("ranking factors must be within [0, 1]")
        return v

    @classmethod
    def from_config(cls, config: Mapping) -> "RankingWeights":
        known = {k: v for k, v in (config or {}).items() if k in cls.model_fields}
        return cls(**known)

    @property
    def max_field_weight(self) -> float:
        return max(self.field_weights.values()) or 1.0


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _created_key(p: ProductIndexEntry) -> float:
    return -p.created_at.timestamp()


class RankingEngine:
    def __init__(self, weights: RankingWeights | None = None) -> None:
        self.weights = weights or RankingWeights()

    def _rarity(self, index: ProductIndex, token: str) -> float:
        rw = self.weights.rarity_weight
        return (1.0 - rw) + rw * index.inverse_document_frequency(token)

    def _token_score(
        self,
        product: ProductIndexEntry,
        matches: Mapping[str, float],
        index: ProductIndex,
    ) -> Tuple[float, List[str]]:
        """Best weighted contribution of one query token, plus the fields it hit."""
        best = 0.0
        hit_fields: List[str] = []
        max_weight = self.weights.max_field_weight

        for field, field_tokens in product.field_tokens.items():
            weight = self.weights.field_weights.get(field, 0.0)
            if weight <= 0:
                continue
            field_best = 0.0
            for index_token in field_tokens.intersection(matches.keys()):
                contribution = (weight / max_weight) * matches[index_token] * self._rarity(index, index_token)
                field_best = max(field_best, contribution)
            if field_best > 0:
                hit_fields.append(field)
                best = max(best, field_best)

        return best, hit_fields

    def score(
        self,
        product: ProductIndexEntry,
        expansion: Expansion,
        tokens: Sequence[str],
        scoring_tokens: Sequence[str],
        index: ProductIndex,
    ) -> RankedResult:
        matched_tokens = 0
        textual_total = 0.0
        fields: List[str] = []
        scoring = set(scoring_tokens)

        for token in dict.fromkeys(tokens):
            contribution, hit_fields = self._token_score(product, expansion.get(token, {}), index)
            if not hit_fields:
                continue
            matched_tokens += 1
            if token in scoring:
                textual_total += contribution
            for field in hit_fields:
                if field not in fields:
                    fields.append(field)

        unique_tokens = len(dict.fromkeys(tokens)) or 1
        textual = textual_total / len(scoring) if scoring else 0.0
        coverage = matched_tokens / unique_tokens

        w = self.weights
        raw = (
            w.textual_share * textual
            + w.coverage_bonus * coverage
            + w.popularity_cap * _clamp(product.popularity)
        )

        return RankedResult(
            product=product,
            score=_clamp(raw),
            matched_fields=tuple(fields),
            matched_tokens=matched_tokens,
        )

    def _sort_key(self, sort_by: str):
        if sort_by == SortOption.PRICE_ASC.value:
            return lambda r: (r.product.price, -r.score, _created_key(r.product), r.product.id)
        if sort_by == SortOption.PRICE_DESC.value:
            return lambda r: (-r.product.price, -r.score, _created_key(r.product), r.product.id)
        if sort_by == SortOption.POPULARITY.value:
            return lambda r: (-r.product.popularity, -r.score, _created_key(r.product), r.product.id)
        if sort_by == SortOption.NEWEST.value:
            return lambda r: (_created_key(r.product), -r.score, r.product.id)
        return lambda r: (-r.score, _created_key(r.product), r.product.id)

    def rank(
        self,
        candidates: Iterable[ProductIndexEntry],
        expansion: Expansion,
        tokens: Sequence[str],
        scoring_tokens: Sequence[str],
        index: ProductIndex,
        sort_by: str = SortOption.RELEVANCE.value,
    ) -> List[RankedResult]:
        scored = [
            result
            for result in (self.score(p, expansion, tokens, scoring_tokens, index) for p in candidates)
            if result.matched_tokens > 0
        ]
        return sorted(scored, key=self._sort_key(sort_by))
