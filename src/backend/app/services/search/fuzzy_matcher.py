"""
Fuzzy Matcher

Expands a normalized query token into the set of index tokens that count as
a match, each tagged with a match-quality factor:

- exact match       -> exact_quality (1.0)
- prefix match      -> prefix_quality ("lap" -> "laptop")
- edit-distance     -> edit_distance_quality[distance - 1]

Edit distance is Levenshtein extended with adjacent transpositions (OSA) by
default, so "lapotp" is one edit away from "laptop".

The distance bound scales with token length so short words do not pick up
false positives. The matcher holds no mutable state and can be shared by
concurrent searches.
"""

import bisect
import logging
from typing import Dict, Iterable, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict
from rapidfuzz import process
from rapidfuzz.distance import OSA, Levenshtein

logger = logging.getLogger(__name__)


class FuzzyMatchConfig(BaseModel):
    """Tolerance settings for fuzzy matching"""
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    short_token_max_length: int = 3
    medium_token_max_length: int = 6
    short_max_distance: int = 0
    medium_max_distance: int = 1
    long_max_distance: int = 2
    min_prefix_length: int = 1
    exact_quality: float = 1.0
    prefix_quality: float = 0.8
    edit_distance_quality: Tuple[float, ...] = (0.7, 0.5)
    max_expansions_per_token: int = 50
    # "osa" counts an adjacent transposition as one edit, "levenshtein" as two
    distance_metric: str = "osa"

    @classmethod
    def from_config(cls, config: Mapping) -> "FuzzyMatchConfig":
        known = {k: v for k, v in (config or {}).items() if k in cls.model_fields}
        return cls(**known)


class TokenVocabulary:
    """
    Sorted, immutable set of index tokens.

    Supports exact lookup, prefix range scans and length-bucketed candidate
    lists for edit-distance matching.
    """

    def __init__(self, tokens: Iterable[str]):
        self._tokens: Tuple[str, ...] = tuple(sorted(set(tokens)))
        self._token_set = frozenset(self._tokens)
        by_length: Dict[int, List[str]] = {}
        for token in self._tokens:
            by_length.setdefault(len(token), []).append(token)
        self._by_length = {length: tuple(items) for length, items in by_length.items()}

    def __contains__(self, token: str) -> bool:
        return token in self._token_set

    def __len__(self) -> int:
        return len(self._tokens)

    def __iter__(self):
        return iter(self._tokens)

    def with_prefix(self, prefix: str) -> List[str]:
        """All tokens starting with prefix, in lexical order."""
        start = bisect.bisect_left(self._tokens, prefix)
        matches = []
        for token in self._tokens[start:]:
            if not token.startswith(prefix):
                break
            matches.append(token)
        return matches

    def with_length_between(self, low: int, high: int) -> List[str]:
        candidates: List[str] = []
        for length in range(max(low, 1), high + 1):
            candidates.extend(self._by_length.get(length, ()))
        return candidates


class FuzzyMatcher:
    """Typo and partial-word tolerant token expansion."""

    def __init__(self, config: FuzzyMatchConfig = None):
        self.config = config or FuzzyMatchConfig()

    def max_distance(self, token: str) -> int:
        """Edit-distance bound for a token of this length."""
        length = len(token)
        if length <= self.config.short_token_max_length:
            return self.config.short_max_distance
        if length <= self.config.medium_token_max_length:
            return self.config.medium_max_distance
        return self.config.long_max_distance

    def _distance_scorer(self):
        if self.config.distance_metric == "levenshtein":
            return Levenshtein.distance
        return OSA.distance

    def _edit_quality(self, distance: int) -> float:
        qualities = self.config.edit_distance_quality
        if not qualities:
            return 0.0
        return qualities[min(distance, len(qualities)) - 1]

    def match_token(self, token: str, vocabulary: TokenVocabulary) -> Dict[str, float]:
        """
        Match one query token against the index vocabulary.

        Args:
            token: Normalized query token
            vocabulary: Index vocabulary of the current snapshot

        Returns:
            Mapping of matched index token -> match quality in (0, 1]
        """
        matches: Dict[str, float] = {}

        if not token:
            return matches

        if token in vocabulary:
            matches[token] = self.config.exact_quality

        if not self.config.enabled:
            return matches

        if len(token) >= self.config.min_prefix_length:
            prefixed = [t for t in vocabulary.with_prefix(token) if t != token]
            # shortest completions are the closest ones
            prefixed.sort(key=lambda t: (len(t), t))
            for candidate in prefixed[: self.config.max_expansions_per_token]:
                matches[candidate] = max(matches.get(candidate, 0.0), self.config.prefix_quality)

        bound = self.max_distance(token)
        if bound > 0:
            candidates = vocabulary.with_length_between(len(token) - bound, len(token) + bound)
            hits = process.extract(
                token,
                candidates,
                scorer=self._distance_scorer(),
                score_cutoff=bound,
                limit=self.config.max_expansions_per_token,
            )
            for candidate, distance, _ in hits:
                if distance == 0:
                    continue
                quality = self._edit_quality(int(distance))
                if quality > matches.get(candidate, 0.0):
                    matches[candidate] = quality

        # Exact always carries the highest weight for that token
        if token in matches:
            matches[token] = self.config.exact_quality

        return matches

    def expand(self, tokens: Iterable[str], vocabulary: TokenVocabulary) -> Dict[str, Dict[str, float]]:
        """
        Expand every query token.

        Returns:
            Mapping of query token -> {index token: quality}
        """
        expansion: Dict[str, Dict[str, float]] = {}
        for token in tokens:
            if token not in expansion:
                expansion[token] = self.match_token(token, vocabulary)

        logger.debug(
            "Fuzzy expansion: %s",
            ", ".join(f"{t}->{len(m)}" for t, m in expansion.items()),
        )
        return expansion
