"""
Search Analytics Storage.

Stores completed searches for:
- Monitoring (latency, cache hit rate)
- Zero-result query review
- Trending searches and suggestion-quality feedback

Records are append-only. Selections reported later by the caller go to a
separate table keyed by record id, so a record row is never updated.
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, delete, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models.search import AnalyticsStats, QueryCount, SearchAnalyticsRecord
from .database import Base

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SearchAnalyticsRow(Base):
    """
    Search analytics record for PostgreSQL.

    One row per completed search.
    """

    __tablename__ = "search_analytics"

    id = Column(String(64), primary_key=True, index=True)

    query = Column(Text, nullable=False)
    normalized_query = Column(Text, nullable=False, index=True)
    filters = Column(JSON, nullable=False)
    sort_by = Column(String(32), nullable=False)
    page = Column(Integer, nullable=False)

    result_count = Column(Integer, nullable=False)
    response_time_ms = Column(Integer, nullable=False)
    cache_hit = Column(Boolean, nullable=False, default=False)

    user_id = Column(String(255), nullable=True, index=True)
    session_id = Column(String(255), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class SearchSelectionRow(Base):
    """Products the caller selected from a search's results."""

    __tablename__ = "search_selections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String(64), nullable=False, index=True)
    product_ids = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class AnalyticsStore(ABC):
    """Persistence interface used by the analytics recorder"""

    @abstractmethod
    async def append(self, record: SearchAnalyticsRecord):
        ...

    @abstractmethod
    async def add_selection(self, record_id: str, product_ids: List[str]) -> bool:
        """Attach selected products to a record. Returns False for unknown ids."""

    @abstractmethod
    async def get_record(self, record_id: str) -> Optional[SearchAnalyticsRecord]:
        ...

    @abstractmethod
    async def purge_older_than(self, cutoff: datetime) -> int:
        ...

    @abstractmethod
    async def get_stats(self, days: int = 7, top: int = 10) -> AnalyticsStats:
        ...

    @abstractmethod
    async def trending_queries(self, days: int = 7, limit: int = 5) -> List[str]:
        """Most frequent recent queries that returned results."""


class InMemoryAnalyticsStore(AnalyticsStore):
    """In-memory fallback when PostgreSQL archival is unavailable or disabled."""

    backend_name = "in-memory"

    def __init__(self):
        self._records: Dict[str, SearchAnalyticsRecord] = {}
        self._selections: Dict[str, List[str]] = {}

    async def append(self, record: SearchAnalyticsRecord):
        self._records[record.id] = record

    async def add_selection(self, record_id: str, product_ids: List[str]) -> bool:
        if record_id not in self._records:
            return False
        selected = self._selections.setdefault(record_id, [])
        selected.extend(p for p in product_ids if p not in selected)
        return True

    async def get_record(self, record_id: str) -> Optional[SearchAnalyticsRecord]:
        record = self._records.get(record_id)
        if record is None:
            return None
        return record.model_copy(update={"selected_product_ids": tuple(self._selections.get(record_id, []))})

    async def purge_older_than(self, cutoff: datetime) -> int:
        stale = [rid for rid, r in self._records.items() if r.created_at < cutoff]
        for rid in stale:
            self._records.pop(rid, None)
            self._selections.pop(rid, None)
        return len(stale)

    def _window(self, days: int) -> List[SearchAnalyticsRecord]:
        since = _utc_now() - timedelta(days=days)
        return [r for r in self._records.values() if r.created_at >= since]

    async def get_stats(self, days: int = 7, top: int = 10) -> AnalyticsStats:
        records = self._window(days)
        total = len(records)
        if total == 0:
            return AnalyticsStats(period_days=days)

        queries = Counter(r.normalized_query for r in records)
        zero = Counter(r.normalized_query for r in records if r.result_count == 0)
        selected = sum(1 for r in records if self._selections.get(r.id))

        return AnalyticsStats(
            period_days=days,
            total_searches=total,
            avg_response_time_ms=round(sum(r.response_time_ms for r in records) / total, 2),
            cache_hit_rate=round(sum(1 for r in records if r.cache_hit) / total, 4),
            zero_result_rate=round(sum(zero.values()) / total, 4),
            selection_rate=round(selected / total, 4),
            top_queries=[QueryCount(query=q, count=c) for q, c in _most_common(queries, top)],
            zero_result_queries=[QueryCount(query=q, count=c) for q, c in _most_common(zero, top)],
        )

    async def trending_queries(self, days: int = 7, limit: int = 5) -> List[str]:
        counts = Counter(r.normalized_query for r in self._window(days) if r.result_count > 0)
        return [q for q, _ in _most_common(counts, limit)]


def _most_common(counter: Counter, limit: int):
    """Counter.most_common with a deterministic order for equal counts."""
    return sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]


class PostgresAnalyticsStore(AnalyticsStore):
    """
    PostgreSQL-backed analytics store.

    Provides:
    - Record archival
    - Selection enrichment
    - Retention purge and summary queries
    """

    backend_name = "postgresql"

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def append(self, record: SearchAnalyticsRecord):
        """
        Archive one search record.

        Args:
            record: Completed search analytics record
        """
        async with self.session_factory() as session:
            try:
                session.add(
                    SearchAnalyticsRow(
                        id=record.id,
                        query=record.query,
                        normalized_query=record.normalized_query,
                        filters=record.filters,
                        sort_by=record.sort_by,
                        page=record.page,
                        result_count=record.result_count,
                        response_time_ms=record.response_time_ms,
                        cache_hit=record.cache_hit,
                        user_id=record.user_id,
                        session_id=record.session_id,
                        created_at=record.created_at,
                    )
                )
                await session.commit()
                logger.debug(f"Archived search record {record.id}")

            except Exception as e:
                logger.error(f"Failed to archive search record: {e}")
                await session.rollback()
                raise

    async def add_selection(self, record_id: str, product_ids: List[str]) -> bool:
        async with self.session_factory() as session:
            try:
                exists = await session.execute(
                    select(SearchAnalyticsRow.id).where(SearchAnalyticsRow.id == record_id)
                )
                if exists.scalar_one_or_none() is None:
                    return False

                session.add(
                    SearchSelectionRow(record_id=record_id, product_ids=list(product_ids), created_at=_utc_now())
                )
                await session.commit()
                return True

            except Exception as e:
                logger.error(f"Failed to store selection for {record_id}: {e}")
                await session.rollback()
                raise

    async def get_record(self, record_id: str) -> Optional[SearchAnalyticsRecord]:
        async with self.session_factory() as session:
            row = (
                await session.execute(select(SearchAnalyticsRow).where(SearchAnalyticsRow.id == record_id))
            ).scalar_one_or_none()
            if row is None:
                return None

            selections = (
                await session.execute(
                    select(SearchSelectionRow.product_ids).where(SearchSelectionRow.record_id == record_id)
                )
            ).scalars().all()

        selected: List[str] = []
        for batch in selections:
            selected.extend(p for p in batch if p not in selected)

        return _row_to_record(row, selected)

    async def purge_older_than(self, cutoff: datetime) -> int:
        async with self.session_factory() as session:
            try:
                stale_ids = select(SearchAnalyticsRow.id).where(SearchAnalyticsRow.created_at < cutoff)
                await session.execute(delete(SearchSelectionRow).where(SearchSelectionRow.record_id.in_(stale_ids)))
                result = await session.execute(delete(SearchAnalyticsRow).where(SearchAnalyticsRow.created_at < cutoff))
                await session.commit()
                return int(result.rowcount or 0)

            except Exception as e:
                logger.error(f"Failed to purge search analytics: {e}")
                await session.rollback()
                raise

    async def get_stats(self, days: int = 7, top: int = 10) -> AnalyticsStats:
        """
        Summary over the last ``days`` days.

        Args:
            days: Window size
            top: Number of top / zero-result queries to include

        Returns:
            AnalyticsStats (zeroed on query failure)
        """
        since = _utc_now() - timedelta(days=days)
        in_window = SearchAnalyticsRow.created_at >= since

        try:
            async with self.session_factory() as session:
                total, avg_ms, hits, zero = (
                    await session.execute(
                        select(
                            func.count(SearchAnalyticsRow.id),
                            func.avg(SearchAnalyticsRow.response_time_ms),
                            func.count().filter(SearchAnalyticsRow.cache_hit.is_(True)),
                            func.count().filter(SearchAnalyticsRow.result_count == 0),
                        ).where(in_window)
                    )
                ).one()

                if not total:
                    return AnalyticsStats(period_days=days)

                selected = (
                    await session.execute(
                        select(func.count(func.distinct(SearchSelectionRow.record_id)))
                        .join(SearchAnalyticsRow, SearchAnalyticsRow.id == SearchSelectionRow.record_id)
                        .where(in_window)
                    )
                ).scalar_one()

                top_rows = (
                    await session.execute(
                        select(SearchAnalyticsRow.normalized_query, func.count().label("n"))
                        .where(in_window)
                        .group_by(SearchAnalyticsRow.normalized_query)
                        .order_by(func.count().desc(), SearchAnalyticsRow.normalized_query)
                        .limit(top)
                    )
                ).all()

                zero_rows = (
                    await session.execute(
                        select(SearchAnalyticsRow.normalized_query, func.count().label("n"))
                        .where(in_window, SearchAnalyticsRow.result_count == 0)
                        .group_by(SearchAnalyticsRow.normalized_query)
                        .order_by(func.count().desc(), SearchAnalyticsRow.normalized_query)
                        .limit(top)
                    )
                ).all()

            return AnalyticsStats(
                period_days=days,
                total_searches=total,
                avg_response_time_ms=round(float(avg_ms or 0), 2),
                cache_hit_rate=round(hits / total, 4),
                zero_result_rate=round(zero / total, 4),
                selection_rate=round(selected / total, 4),
                top_queries=[QueryCount(query=q, count=n) for q, n in top_rows],
                zero_result_queries=[QueryCount(query=q, count=n) for q, n in zero_rows],
            )

        except Exception as e:
            logger.error(f"Failed to get search analytics: {e}")
            return AnalyticsStats(period_days=days)

    async def trending_queries(self, days: int = 7, limit: int = 5) -> List[str]:
        since = _utc_now() - timedelta(days=days)
        try:
            async with self.session_factory() as session:
                rows = await session.execute(
                    select(SearchAnalyticsRow.normalized_query)
                    .where(SearchAnalyticsRow.created_at >= since, SearchAnalyticsRow.result_count > 0)
                    .group_by(SearchAnalyticsRow.normalized_query)
                    .order_by(func.count().desc(), SearchAnalyticsRow.normalized_query)
                    .limit(limit)
                )
                return list(rows.scalars().all())

        except Exception as e:
            logger.error(f"Failed to get trending searches: {e}")
            return []


def _row_to_record(row: SearchAnalyticsRow, selected: List[str]) -> SearchAnalyticsRecord:
    return SearchAnalyticsRecord(
        id=row.id,
        query=row.query,
        normalized_query=row.normalized_query,
        filters=row.filters or {},
        sort_by=row.sort_by,
        page=row.page,
        result_count=row.result_count,
        response_time_ms=row.response_time_ms,
        cache_hit=bool(row.cache_hit),
        user_id=row.user_id,
        session_id=row.session_id,
        created_at=row.created_at,
        selected_product_ids=tuple(selected),
    )


# Global store instance (initialized in main.py)
_analytics_store: Optional[AnalyticsStore] = None


def get_analytics_store() -> AnalyticsStore:
    """Get analytics store, falling back to in-memory storage if not initialized."""
    global _analytics_store
    if _analytics_store is None:
        _analytics_store = InMemoryAnalyticsStore()
    return _analytics_store


def init_analytics_store(session_factory: Optional[async_sessionmaker]) -> AnalyticsStore:
    """Initialize global analytics store; in-memory when no PostgreSQL session factory is available."""
    global _analytics_store

    if session_factory is None:
        _analytics_store = InMemoryAnalyticsStore()
        logger.info("PostgreSQL unavailable; using in-memory search analytics store")
    else:
        _analytics_store = PostgresAnalyticsStore(session_factory)
        logger.info("PostgreSQL search analytics store initialized")

    return _analytics_store


def reset_analytics_store():
    global _analytics_store
    _analytics_store = None
