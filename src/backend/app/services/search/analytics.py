"""
Analytics Recorder

Fire-and-forget recording of completed searches through a bounded queue
with one dedicated consumer task. The search path only does a non-blocking
put; a full queue drops the record and logs it. Store failures are logged
and dropped, never propagated to a search.
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, NamedTuple, Optional, Union

from ...database.analytics_store import AnalyticsStore
from ...models.search import AnalyticsStats, SearchAnalyticsRecord, SearchQuery, utc_now

logger = logging.getLogger(__name__)


class SelectionEvent(NamedTuple):
    record_id: str
    product_ids: List[str]


QueueItem = Union[SearchAnalyticsRecord, SelectionEvent]


class AnalyticsRecorder:
    """Bounded work queue in front of an AnalyticsStore"""

    def __init__(self, store: AnalyticsStore, queue_size: int = 1000, retention_days: int = 90):
        self.store = store
        self.retention_days = retention_days
        self._queue: "asyncio.Queue[QueueItem]" = asyncio.Queue(maxsize=queue_size)
        self._consumer: Optional[asyncio.Task] = None
        self.written = 0
        self.dropped = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def start(self):
        if not self.running:
            self._consumer = asyncio.create_task(self._consume())
            logger.info(f"Analytics consumer started (queue size: {self._queue.maxsize})")

    def _enqueue(self, item: QueueItem) -> bool:
        try:
            self._queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Analytics queue full, dropping {type(item).__name__}")
            return False

    def record(
        self,
        query: SearchQuery,
        result_count: int,
        response_time_ms: int,
        cache_hit: bool,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Queue an analytics record for a completed search.

        Returns:
            Record id usable with log_selection, or None if the record was dropped
        """
        record = SearchAnalyticsRecord(
            id=uuid.uuid4().hex,
            query=query.raw_text,
            normalized_query=query.normalized_text,
            filters=query.filters.model_dump(mode="json", exclude_none=True),
            sort_by=query.sort_by,
            page=query.page,
            result_count=result_count,
            response_time_ms=response_time_ms,
            cache_hit=cache_hit,
            user_id=user_id,
            session_id=session_id,
            created_at=utc_now(),
        )
        return record.id if self._enqueue(record) else None

    def log_selection(self, record_id: str, product_ids: List[str]) -> bool:
        """Queue selected products for a prior record (best effort)."""
        if not record_id or not product_ids:
            return False
        return self._enqueue(SelectionEvent(record_id, list(product_ids)))

    async def _handle(self, item: QueueItem):
        if isinstance(item, SelectionEvent):
            if not await self.store.add_selection(item.record_id, item.product_ids):
                logger.warning(f"Selection for unknown analytics record {item.record_id} ignored")
                return
        else:
            await self.store.append(item)
        self.written += 1

    async def _consume(self):
        """Dedicated consumer: one item at a time, failures logged and dropped."""
        while True:
            item = await self._queue.get()
            try:
                await self._handle(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error(f"Failed to write search analytics: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def flush(self, timeout: Optional[float] = None):
        """Wait until everything queued so far has been handled."""
        await asyncio.wait_for(self._queue.join(), timeout=timeout)

    async def stop(self, drain_timeout: float = 5.0):
        """Drain the queue (bounded) and stop the consumer."""
        if self.running:
            try:
                await self.flush(timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Analytics drain timed out, {self._queue.qsize()} items discarded")

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
            logger.info("Analytics consumer stopped")

    async def purge_expired(self) -> int:
        """Apply the retention policy."""
        cutoff = utc_now() - timedelta(days=self.retention_days)
        removed = await self.store.purge_older_than(cutoff)
        if removed:
            logger.info(f"Purged {removed} analytics records older than {self.retention_days} days")
        return removed

    async def get_stats(self, days: int = 7) -> AnalyticsStats:
        return await self.store.get_stats(days=days)

    async def trending_queries(self, days: int = 7, limit: int = 5) -> List[str]:
        return await self.store.trending_queries(days=days, limit=limit)

    def queue_stats(self) -> Dict[str, Any]:
        return {
            "backend": getattr(self.store, "backend_name", type(self.store).__name__),
            "queued": self._queue.qsize(),
            "capacity": self._queue.maxsize,
            "written": self.written,
            "dropped": self.dropped,
            "failed": self.failed,
            "consumer_running": self.running,
        }
