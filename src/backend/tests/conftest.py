"""
Pytest configuration and shared fixtures
Provides common test fixtures for all test modules
"""

import pytest
import pytest_asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add app directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fakeredis import aioredis as fakeredis_aioredis

from app.database.analytics_store import InMemoryAnalyticsStore
from app.database.search_cache_storage import InMemorySearchCacheStorage
from app.database.suggestion_storage import InMemorySuggestionStorage
from app.models.search import CatalogProduct, SearchRequest
from app.services.config.configuration_service import ConfigurationService
from app.services.search.catalog import InMemoryCatalogProvider
from app.services.search.factory import build_search_orchestrator


def _created(month: int, day: int = 1) -> datetime:
    return datetime(2024, month, day, tzinfo=timezone.utc)


@pytest.fixture
def sample_products():
    """
    Small catalog covering three categories and every availability state.

    "laptop" appears in three product names and one description (p-2002).
    """
    return [
        CatalogProduct(
            id="p-1001",
            name="UltraBook Pro 14 Laptop",
            description="Lightweight 14 inch ultrabook with all-day battery",
            category_id="laptops",
            category_name="Laptops",
            tags=["ultrabook", "portable"],
            price=1299.0,
            popularity=0.9,
            stock_quantity=25,
            created_at=_created(3),
        ),
        CatalogProduct(
            id="p-1002",
            name="Gaming Laptop X17",
            description="High refresh display and dedicated graphics",
            category_id="laptops",
            category_name="Laptops",
            tags=["gaming"],
            price=1899.0,
            popularity=0.7,
            stock_quantity=5,
            created_at=_created(5),
        ),
        CatalogProduct(
            id="p-2001",
            name="Laptop Sleeve 14",
            description="Padded neoprene sleeve",
            category_id="accessories",
            category_name="Accessories",
            tags=["sleeve"],
            price=29.99,
            popularity=0.5,
            stock_quantity=100,
            created_at=_created(1, 10),
        ),
        CatalogProduct(
            id="p-2002",
            name="Wireless Mouse",
            description="Compact mouse that pairs with any laptop",
            category_id="accessories",
            category_name="Accessories",
            tags=["mouse", "wireless"],
            price=24.5,
            popularity=0.6,
            stock_quantity=0,
            created_at=_created(2),
        ),
        CatalogProduct(
            id="p-2003",
            name="Mechanical Keyboard",
            description="Tactile switches and aluminium frame",
            category_id="accessories",
            category_name="Accessories",
            tags=["keyboard"],
            price=89.0,
            popularity=0.4,
            stock_quantity=40,
            created_at=_created(2, 15),
        ),
        CatalogProduct(
            id="p-3001",
            name="Noise Cancelling Headphones",
            description="Over-ear wireless headphones with 30 hour battery",
            category_id="audio",
            category_name="Audio",
            tags=["audio", "wireless"],
            price=249.0,
            popularity=0.8,
            stock_quantity=12,
            created_at=_created(4),
        ),
    ]


@pytest.fixture
def catalog(sample_products):
    """In-memory catalog seeded with sample products"""
    return InMemoryCatalogProvider(sample_products)


@pytest.fixture
def config_service():
    """ConfigurationService over the shipped app/config directory"""
    return ConfigurationService()


@pytest.fixture
def search_components():
    """Fresh in-memory storage backends for one orchestrator"""
    return {
        "cache_storage": InMemorySearchCacheStorage(),
        "suggestion_storage": InMemorySuggestionStorage(),
        "analytics_store": InMemoryAnalyticsStore(),
    }


@pytest.fixture
def make_orchestrator(catalog, config_service, search_components):
    """Factory for an orchestrator over the sample catalog (index not loaded)."""

    def _make(**overrides):
        kwargs = dict(search_components)
        kwargs.update(overrides)
        return build_search_orchestrator(
            catalog=kwargs.pop("catalog", catalog),
            config_service=config_service,
            **kwargs,
        )

    return _make


@pytest_asyncio.fixture
async def orchestrator(make_orchestrator):
    """Orchestrator with a loaded index and a running analytics consumer."""
    orchestrator = make_orchestrator()
    orchestrator.recorder.start()
    await orchestrator.refresh_index()
    try:
        yield orchestrator
    finally:
        await orchestrator.drain_background()
        await orchestrator.recorder.stop(drain_timeout=1.0)


@pytest.fixture
def search_request():
    """Build a SearchRequest with sensible defaults"""

    def _request(query: str = "laptop", **kwargs) -> SearchRequest:
        return SearchRequest(query=query, **kwargs)

    return _request


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide a fakeredis asyncio client for Redis-backed tests."""
    client = fakeredis_aioredis.FakeRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()


# Pytest markers
def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API endpoint tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
    config.addinivalue_line("markers", "services: Service layer tests")


# Auto-use fixtures
@pytest.fixture(autouse=True)
def reset_singletons():
    """
    Reset singleton instances before each test
    Ensures test isolation
    """
    import app.database.analytics_store as analytics_module
    import app.database.search_cache_storage as cache_module
    import app.database.suggestion_storage as suggestion_module
    import app.services.config.configuration_service as config_module

    config_module._config_service = None
    cache_module.reset_search_cache_storage()
    suggestion_module.reset_suggestion_storage()
    analytics_module.reset_analytics_store()

    yield

    # Cleanup after test
    config_module._config_service = None
    cache_module.reset_search_cache_storage()
    suggestion_module.reset_suggestion_storage()
    analytics_module.reset_analytics_store()
