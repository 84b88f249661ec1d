"""
Query Normalizer

Turns raw query text into a lower-cased, punctuation-free token sequence.
The same tokenizer is used when building the product index so query tokens
and index tokens are always comparable.
"""

import logging
import re
from typing import List

from ...models.search import NormalizedQuery
from .errors import InvalidQuery

logger = logging.getLogger(__name__)

# Characters removed from the display string (markup / quoting)
_UNSAFE_CHARS = re.compile(r"[<>'\"&]")
_WHITESPACE = re.compile(r"\s+")
# Anything that is not a letter or digit separates tokens
_TOKEN_SEPARATORS = re.compile(r"[\W_]+", re.UNICODE)

DEFAULT_MAX_QUERY_LENGTH = 500
DEFAULT_MIN_SCORING_TOKEN_LENGTH = 2


def tokenize(text: str) -> List[str]:
    """Lower-case text and split it on anything that is not a letter or digit."""
    if not text:
        return []
    return [t for t in _TOKEN_SEPARATORS.split(text.lower()) if t]


def sanitize(text: str) -> str:
    """Collapse whitespace and drop markup characters, keeping case."""
    text = _UNSAFE_CHARS.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


class QueryNormalizer:
    """
    Validates and tokenizes query text.

    Tokens shorter than ``min_scoring_token_length`` stay in ``tokens`` (they
    still drive prefix matching) but are left out of ``scoring_tokens``.
    """

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_QUERY_LENGTH,
        min_scoring_token_length: int = DEFAULT_MIN_SCORING_TOKEN_LENGTH,
    ):
        self.max_length = max_length
        self.min_scoring_token_length = min_scoring_token_length

    @classmethod
    def from_config(cls, query_config: dict) -> "QueryNormalizer":
        return cls(
            max_length=int(query_config.get("max_length", DEFAULT_MAX_QUERY_LENGTH)),
            min_scoring_token_length=int(
                query_config.get("min_scoring_token_length", DEFAULT_MIN_SCORING_TOKEN_LENGTH)
            ),
        )

    def normalize(self, raw_query: str) -> NormalizedQuery:
        """
        Normalize raw query text.

        Args:
            raw_query: Query exactly as the caller sent it

        Returns:
            NormalizedQuery with display text, normalized text and tokens

        Raises:
            InvalidQuery: If the trimmed query is empty, too long or has no searchable text
        """
        trimmed = (raw_query or "").strip()

        if not trimmed:
            raise InvalidQuery("Search query must not be empty", {"field": "query"})

        if len(trimmed) > self.max_length:
            raise InvalidQuery(
                f"Search query exceeds maximum length of {self.max_length} characters",
                {"field": "query", "max_length": self.max_length, "length": len(trimmed)},
            )

        display_text = sanitize(trimmed)
        tokens = tokenize(display_text)
        if not tokens:
            raise InvalidQuery(
                "Search query must contain at least one letter or digit",
                {"field": "query"},
            )
        scoring_tokens = [t for t in tokens if len(t) >= self.min_scoring_token_length]

        logger.debug(f"Normalized query '{display_text}' -> {tokens}")

        return NormalizedQuery(
            display_text=display_text,
            normalized_text=" ".join(tokens),
            tokens=tuple(tokens),
            scoring_tokens=tuple(scoring_tokens),
        )
