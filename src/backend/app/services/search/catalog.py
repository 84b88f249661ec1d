"""
Catalog Providers

Read-only interface onto the product catalog. The catalog owns product data;
the search engine only pulls full snapshots and asks whether a category
exists.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from ...models.search import CatalogProduct, CategoryInfo

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent.parent.parent / "data" / "sample_catalog.json"


class CatalogProvider(ABC):
    """Source of product snapshots and category lookups"""

    @abstractmethod
    async def fetch_products(self) -> List[CatalogProduct]:
        """Return every searchable product."""

    @abstractmethod
    async def list_categories(self) -> List[CategoryInfo]:
        """Return every known category."""

    async def category_exists(self, category_id: str) -> bool:
        categories = await self.list_categories()
        return any(c.id == category_id for c in categories)


class InMemoryCatalogProvider(CatalogProvider):
    """
    Catalog held in process memory.

    Used by tests and by the file-backed provider. ``replace_products`` lets a
    caller simulate catalog writes between index refreshes.
    """

    def __init__(
        self,
        products: Optional[List[CatalogProduct]] = None,
        categories: Optional[List[CategoryInfo]] = None,
    ):
        self._products: List[CatalogProduct] = list(products or [])
        self._categories: Dict[str, CategoryInfo] = {c.id: c for c in (categories or [])}
        for product in self._products:
            self._remember_category(product)

    def _remember_category(self, product: CatalogProduct):
        if product.category_id not in self._categories:
            self._categories[product.category_id] = CategoryInfo(
                id=product.category_id,
                name=product.category_name or product.category_id,
            )

    async def fetch_products(self) -> List[CatalogProduct]:
        return list(self._products)

    async def list_categories(self) -> List[CategoryInfo]:
        return list(self._categories.values())

    async def category_exists(self, category_id: str) -> bool:
        return category_id in self._categories

    def replace_products(self, products: List[CatalogProduct]):
        self._products = list(products)
        for product in self._products:
            self._remember_category(product)

    def upsert_product(self, product: CatalogProduct):
        self._products = [p for p in self._products if p.id != product.id] + [product]
        self._remember_category(product)

    def remove_product(self, product_id: str):
        self._products = [p for p in self._products if p.id != product_id]


class JsonFileCatalogProvider(InMemoryCatalogProvider):
    """
    Catalog loaded from a JSON export.

    Expected shape::

        {"categories": [{"id": ..., "name": ...}], "products": [{...}]}

    The file is re-read on every ``fetch_products`` so a refreshed export is
    picked up by the next index refresh.
    """

    def __init__(self, path: Optional[str] = None):
        super().__init__()
        self.path = Path(path) if path else DEFAULT_CATALOG_PATH

    def _load(self):
        if not self.path.exists():
            raise FileNotFoundError(f"Catalog file not found: {self.path}")

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        categories = [CategoryInfo(**c) for c in data.get("categories", [])]
        products = [CatalogProduct(**p) for p in data.get("products", [])]

        self._categories = {c.id: c for c in categories}
        self.replace_products(products)
        logger.info(f"Loaded catalog file {self.path}: {len(products)} products, {len(self._categories)} categories")

    async def fetch_products(self) -> List[CatalogProduct]:
        self._load()
        return await super().fetch_products()

    async def list_categories(self) -> List[CategoryInfo]:
        if not self._categories:
            self._load()
        return await super().list_categories()

    async def category_exists(self, category_id: str) -> bool:
        if not self._categories:
            self._load()
        return await super().category_exists(category_id)
