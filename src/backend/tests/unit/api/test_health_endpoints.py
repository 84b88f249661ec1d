"""
Unit tests for search health status derivation
Calls the health endpoint coroutine directly with a stubbed orchestrator
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.api.v1.health import get_config_health, get_search_health


def _orchestrator(loaded=True, consumer_running=True, storage_available=True):
    orchestrator = MagicMock()
    orchestrator.stats = AsyncMock(return_value={
        "index": {"loaded": loaded, "generation": 1 if loaded else None},
        "cache": {"backend": "redis", "storage_available": storage_available},
        "analytics": {"consumer_running": consumer_running, "queued": 0},
    })
    return orchestrator


@pytest.mark.unit
class TestSearchHealth:

    @pytest.mark.asyncio
    async def test_healthy(self):
        response = await get_search_health(_orchestrator())

        assert response.status == "healthy"
        assert set(response.infrastructure) == {"redis", "postgresql", "langsmith"}

    @pytest.mark.asyncio
    async def test_unhealthy_without_index(self):
        response = await get_search_health(_orchestrator(loaded=False))

        assert response.status == "unhealthy"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [{"consumer_running": False}, {"storage_available": False}],
    )
    async def test_degraded(self, kwargs):
        response = await get_search_health(_orchestrator(**kwargs))

        assert response.status == "degraded"

    @pytest.mark.asyncio
    async def test_stats_failure_is_500(self):
        from fastapi import HTTPException

        orchestrator = MagicMock()
        orchestrator.stats = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(HTTPException) as exc_info:
            await get_search_health(orchestrator)

        assert exc_info.value.status_code == 500


@pytest.mark.unit
class TestConfigHealth:

    @pytest.mark.asyncio
    async def test_lists_loaded_sections(self):
        response = await get_config_health()

        assert response.status == "healthy"
        assert "cache" in response.sections
        assert response.sections == sorted(response.sections)
