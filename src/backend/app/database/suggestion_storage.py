"""
Suggestion Storage

Occurrence counters and prefix indexes for autocomplete:
- RedisSuggestionStorage: HINCRBY counters, per-prefix sorted sets (ZADD GT)
- InMemorySuggestionStorage: per-process fallback with the same interface

A query is stored once with its counters and linked from every prefix of
its normalized text (bounded by max_prefix_length).
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Union

from redis.asyncio import Redis

from ..models.search import SuggestionEntry

logger = logging.getLogger(__name__)

# Recency folded into the sorted-set score below the integer occurrence count
_RECENCY_SCALE = 1e11


def _utc_now() -> datetime:
    """Return timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _prefixes(query: str, min_length: int, max_length: int) -> List[str]:
    upper = min(len(query), max_length)
    return [query[:n] for n in range(min_length, upper + 1)]


def _rank_key(entry: SuggestionEntry):
    return (-entry.occurrences, -entry.last_used.timestamp(), entry.query)


class InMemorySuggestionStorage:
    """In-memory suggestion counters. Increments happen without awaiting so they are atomic on the event loop."""

    backend_name = "in-memory"

    def __init__(self, min_prefix_length: int = 2, max_prefix_length: int = 20):
        self.min_prefix_length = min_prefix_length
        self.max_prefix_length = max_prefix_length
        self._entries: Dict[str, SuggestionEntry] = {}
        self._prefix_index: Dict[str, Set[str]] = {}

    async def record(self, query: str, when: Optional[datetime] = None) -> SuggestionEntry:
        when = when or _utc_now()
        entry = self._entries.get(query)
        occurrences = (entry.occurrences if entry else 0) + 1
        entry = SuggestionEntry(query=query, occurrences=occurrences, last_used=when)
        self._entries[query] = entry

        for prefix in _prefixes(query, self.min_prefix_length, self.max_prefix_length):
            self._prefix_index.setdefault(prefix, set()).add(query)

        return entry

    async def lookup(self, prefix: str, limit: int) -> List[SuggestionEntry]:
        key = prefix[: self.max_prefix_length]
        queries = self._prefix_index.get(key, set())
        entries = [self._entries[q] for q in queries if q in self._entries and q.startswith(prefix)]
        entries.sort(key=_rank_key)
        return entries[:limit]

    async def get_entry(self, query: str) -> Optional[SuggestionEntry]:
        return self._entries.get(query)

    async def top_queries(self, limit: int) -> List[SuggestionEntry]:
        return sorted(self._entries.values(), key=_rank_key)[:limit]

    async def prune(self, min_occurrences: int, older_than: datetime) -> int:
        stale = [
            q for q, e in self._entries.items()
            if e.occurrences < min_occurrences and e.last_used < older_than
        ]
        for query in stale:
            self._entries.pop(query, None)
            for prefix in _prefixes(query, self.min_prefix_length, self.max_prefix_length):
                members = self._prefix_index.get(prefix)
                if members is not None:
                    members.discard(query)
                    if not members:
                        del self._prefix_index[prefix]
        return len(stale)

    async def count(self) -> int:
        return len(self._entries)


class RedisSuggestionStorage:
    """
    Redis-backed suggestion storage.

    Keys:
    - {namespace}:q:{query}   hash {query, occurrences, last_used}
    - {namespace}:p:{prefix}  zset query -> occurrences + recency fraction
    - {namespace}:all         zset of every query, same score
    """

    backend_name = "redis"

    def __init__(
        self,
        redis_client: Redis,
        *,
        namespace: str = "search:suggestions",
        min_prefix_length: int = 2,
        max_prefix_length: int = 20,
    ):
        self.redis = redis_client
        self.namespace = namespace.rstrip(":")
        self.all_key = f"{self.namespace}:all"
        self.min_prefix_length = min_prefix_length
        self.max_prefix_length = max_prefix_length

    def _query_key(self, query: str) -> str:
        return f"{self.namespace}:q:{query}"

    def _prefix_key(self, prefix: str) -> str:
        return f"{self.namespace}:p:{prefix}"

    @staticmethod
    def _score(occurrences: int, when: datetime) -> float:
        return occurrences + when.timestamp() / _RECENCY_SCALE

    async def record(self, query: str, when: Optional[datetime] = None) -> SuggestionEntry:
        when = when or _utc_now()
        query_key = self._query_key(query)

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hincrby(query_key, "occurrences", 1)
            pipe.hset(query_key, mapping={"query": query, "last_used": when.isoformat()})
            occurrences, _ = await pipe.execute()

        score = self._score(int(occurrences), when)

        # GT keeps the highest score when concurrent writers race on the same member
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.zadd(self.all_key, {query: score}, gt=True)
            for prefix in _prefixes(query, self.min_prefix_length, self.max_prefix_length):
                pipe.zadd(self._prefix_key(prefix), {query: score}, gt=True)
            await pipe.execute()

        return SuggestionEntry(query=query, occurrences=int(occurrences), last_used=when)

    async def _load_entries(self, queries: List[str]) -> List[SuggestionEntry]:
        if not queries:
            return []

        async with self.redis.pipeline(transaction=False) as pipe:
            for query in queries:
                pipe.hgetall(self._query_key(query))
            hashes = await pipe.execute()

        entries = []
        for query, data in zip(queries, hashes):
            if not data:
                continue
            try:
                entries.append(
                    SuggestionEntry(
                        query=data.get("query", query),
                        occurrences=int(data.get("occurrences", 0)),
                        last_used=datetime.fromisoformat(data["last_used"]),
                    )
                )
            except (KeyError, ValueError) as exc:
                logger.warning("Skipping malformed suggestion %s: %s", query, exc)
        return entries

    async def lookup(self, prefix: str, limit: int) -> List[SuggestionEntry]:
        key = self._prefix_key(prefix[: self.max_prefix_length])
        # over-fetch when the prefix was truncated, results are filtered below
        fetch = limit if len(prefix) <= self.max_prefix_length else limit * 5
        queries = await self.redis.zrevrange(key, 0, fetch - 1)
        entries = [e for e in await self._load_entries(list(queries)) if e.query.startswith(prefix)]
        entries.sort(key=_rank_key)
        return entries[:limit]

    async def get_entry(self, query: str) -> Optional[SuggestionEntry]:
        entries = await self._load_entries([query])
        return entries[0] if entries else None

    async def top_queries(self, limit: int) -> List[SuggestionEntry]:
        queries = await self.redis.zrevrange(self.all_key, 0, limit - 1)
        entries = await self._load_entries(list(queries))
        entries.sort(key=_rank_key)
        return entries

    async def prune(self, min_occurrences: int, older_than: datetime) -> int:
        # Scores are occurrences + fraction, so every candidate scores below min_occurrences
        candidates = await self.redis.zrangebyscore(self.all_key, "-inf", f"({min_occurrences}")
        removed = 0

        for entry in await self._load_entries(list(candidates)):
            if entry.occurrences >= min_occurrences or entry.last_used >= older_than:
                continue
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._query_key(entry.query))
                pipe.zrem(self.all_key, entry.query)
                for prefix in _prefixes(entry.query, self.min_prefix_length, self.max_prefix_length):
                    pipe.zrem(self._prefix_key(prefix), entry.query)
                await pipe.execute()
            removed += 1

        return removed

    async def count(self) -> int:
        return int(await self.redis.zcard(self.all_key))


SuggestionStorage = Union[RedisSuggestionStorage, InMemorySuggestionStorage]

# Global storage instance (initialized in main.py)
_suggestion_storage: Optional[SuggestionStorage] = None


def get_suggestion_storage() -> SuggestionStorage:
    """Get suggestion storage, falling back to in-memory storage if not initialized."""
    global _suggestion_storage

    if _suggestion_storage is None:
        if os.getenv("ENABLE_REDIS_CACHING", "true").lower() == "true":
            logger.warning("Suggestion storage requested before initialization. Falling back to in-memory storage.")
        _suggestion_storage = InMemorySuggestionStorage()

    return _suggestion_storage


def init_suggestion_storage(
    redis_client: Optional[Redis],
    min_prefix_length: int = 2,
    max_prefix_length: int = 20,
) -> SuggestionStorage:
    """Initialize global suggestion storage instance."""
    global _suggestion_storage

    if redis_client is None:
        _suggestion_storage = InMemorySuggestionStorage(min_prefix_length, max_prefix_length)
        logger.info("Redis client unavailable; using in-memory suggestion storage")
        return _suggestion_storage

    _suggestion_storage = RedisSuggestionStorage(
        redis_client,
        min_prefix_length=min_prefix_length,
        max_prefix_length=max_prefix_length,
    )
    logger.info("Redis suggestion storage initialized")
    return _suggestion_storage


def reset_suggestion_storage():
    global _suggestion_storage
    _suggestion_storage = None
