"""
Product Index Snapshot

Materialized, read-only view of the catalog used by every search. A snapshot
is built off to the side and published with a single reference swap, so an
in-flight search always sees exactly one generation.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from ...models.search import CatalogProduct, ProductIndexEntry
from .catalog import CatalogProvider
from .errors import DependencyUnavailable
from .fuzzy_matcher import TokenVocabulary
from .normalizer import tokenize

logger = logging.getLogger(__name__)

SEARCHABLE_FIELDS = ("name", "description", "tags", "category")

RefreshListener = Callable[["ProductIndex"], Awaitable[None]]


def build_entry(product: CatalogProduct) -> ProductIndexEntry:
    """Precompute per-field token sets for one catalog product."""
    tag_tokens: List[str] = []
    for tag in product.tags:
        tag_tokens.extend(tokenize(tag))

    field_tokens = {
        "name": frozenset(tokenize(product.name)),
        "description": frozenset(tokenize(product.description)),
        "tags": frozenset(tag_tokens),
        "category": frozenset(tokenize(product.category_name)),
    }

    return ProductIndexEntry(
        id=product.id,
        name=product.name,
        description=product.description,
        category_id=product.category_id,
        category_name=product.category_name or product.category_id,
        tags=tuple(product.tags),
        price=product.price,
        popularity=product.popularity,
        availability=product.resolve_availability(),
        created_at=product.created_at,
        field_tokens=field_tokens,
    )


class ProductIndex:
    """
    Immutable snapshot of searchable products.

    Holds the entries, an inverted index (token -> product ids), document
    frequencies and the token vocabulary used by the fuzzy matcher.
    """

    def __init__(self, entries: Iterable[ProductIndexEntry], generation: int = 1):
        self.generation = generation
        self.built_at = datetime.now(timezone.utc)
        self.entries: Tuple[ProductIndexEntry, ...] = tuple(entries)
        self._by_id: Dict[str, ProductIndexEntry] = {e.id: e for e in self.entries}

        postings: Dict[str, set] = {}
        for entry in self.entries:
            for token in entry.all_tokens:
                postings.setdefault(token, set()).add(entry.id)

        self._postings: Dict[str, FrozenSet[str]] = {t: frozenset(ids) for t, ids in postings.items()}
        self.vocabulary = TokenVocabulary(self._postings.keys())

        categories: Dict[str, str] = {}
        for entry in self.entries:
            categories.setdefault(entry.category_id, entry.category_name)
        self.categories = categories

    @classmethod
    def build(cls, products: Iterable[CatalogProduct], generation: int = 1) -> "ProductIndex":
        return cls((build_entry(p) for p in products), generation=generation)

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, product_id: str) -> Optional[ProductIndexEntry]:
        return self._by_id.get(product_id)

    def postings(self, token: str) -> FrozenSet[str]:
        """Ids of products containing token in any searchable field."""
        return self._postings.get(token, frozenset())

    def document_frequency(self, token: str) -> int:
        return len(self._postings.get(token, ()))

    def inverse_document_frequency(self, token: str) -> float:
        """Smoothed IDF normalized into (0, 1]: 1.0 for a token found in a single product."""
        total = len(self.entries)
        df = self.document_frequency(token)
        if total == 0 or df == 0:
            return 0.0
        max_idf = math.log(1 + total)
        return math.log(1 + total / df) / max_idf


class IndexManager:
    """
    Owns the current index snapshot.

    - ``current()`` is lock free; it reads one reference
    - ``refresh()`` rebuilds from the catalog and swaps the reference
    - listeners (e.g. the search cache) are awaited after each swap
    """

    def __init__(self, catalog: CatalogProvider):
        self.catalog = catalog
        self._snapshot: Optional[ProductIndex] = None
        self._generation = 0
        self._refresh_lock = asyncio.Lock()
        self._listeners: List[RefreshListener] = []
        self._refresh_task: Optional[asyncio.Task] = None
        self._shutdown = False

    def add_listener(self, listener: RefreshListener):
        self._listeners.append(listener)

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def current(self) -> ProductIndex:
        """
        Get the published snapshot.

        Raises:
            DependencyUnavailable: If no snapshot has been loaded yet
        """
        snapshot = self._snapshot
        if snapshot is None:
            raise DependencyUnavailable(
                "Product index is not loaded",
                {"dependency": "product_index"},
            )
        return snapshot

    async def refresh(self) -> ProductIndex:
        """
        Rebuild the snapshot from the catalog and publish it.

        Returns:
            The newly published snapshot

        Raises:
            Exception: Whatever the catalog raised; the previous snapshot stays published
        """
        async with self._refresh_lock:
            products = await self.catalog.fetch_products()
            generation = self._generation + 1
            snapshot = ProductIndex.build(products, generation=generation)

            self._generation = generation
            self._snapshot = snapshot

            logger.info(f"Index snapshot published: generation={generation}, products={len(snapshot)}")

        for listener in self._listeners:
            try:
                await listener(snapshot)
            except Exception as e:
                logger.error(f"Index refresh listener failed: {e}", exc_info=True)

        return snapshot

    async def invalidate(self) -> ProductIndex:
        """Catalog change hook: reload now instead of waiting for the next scheduled refresh."""
        logger.info("Catalog change signalled, refreshing index")
        return await self.refresh()

    def start_refresh_loop(self, interval_seconds: int):
        if interval_seconds <= 0 or self._refresh_task is not None:
            return
        self._shutdown = False
        logger.info(f"Starting index refresh task (interval: {interval_seconds}s)")
        self._refresh_task = asyncio.create_task(self._refresh_loop(interval_seconds))

    async def _refresh_loop(self, interval_seconds: int):
        """Background task to periodically re-read the catalog."""
        try:
            while not self._shutdown:
                await asyncio.sleep(interval_seconds)
                if self._shutdown:
                    break
                try:
                    await self.refresh()
                except Exception as e:
                    logger.error(f"Scheduled index refresh failed: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("Index refresh loop cancelled")

    async def stop_refresh_loop(self):
        """Stop the background refresh task gracefully."""
        self._shutdown = True
        if self._refresh_task and not self._refresh_task.done():
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            logger.info("Index refresh task stopped")
        self._refresh_task = None
