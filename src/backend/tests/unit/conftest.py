"""
Unit test fixtures

Fixtures for unit tests that mock external dependencies.
Unit tests should be fast (< 100ms) and isolated.
"""

import pytest
from unittest.mock import AsyncMock

from app.services.search.index import ProductIndex


@pytest.fixture
def product_index(sample_products):
    """Index snapshot built straight from the sample products"""
    return ProductIndex.build(sample_products, generation=1)


@pytest.fixture
def failing_cache_storage():
    """Cache storage whose every call raises, as an unreachable Redis would"""
    storage = AsyncMock()
    storage.namespace = "search:cache"
    storage.backend_name = "redis"
    error = ConnectionError("redis unreachable")
    storage.get_version = AsyncMock(side_effect=error)
    storage.get = AsyncMock(side_effect=error)
    storage.set = AsyncMock(side_effect=error)
    storage.bump_version = AsyncMock(side_effect=error)
    storage.purge_version = AsyncMock(side_effect=error)
    storage.count_entries = AsyncMock(side_effect=error)
    return storage


@pytest.fixture
def mock_redis_client():
    """Mock Redis async client for unit tests"""
    client = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.incr = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    return client
