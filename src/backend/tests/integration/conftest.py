"""
Integration test fixtures

Fixtures for integration tests that drive the FastAPI app over ASGI.
The lifespan does not run under ASGITransport, so the search orchestrator
is built over in-memory backends and injected through the dependency override.
"""

import pytest_asyncio
from httpx import ASGITransport, AsyncClient


@pytest_asyncio.fixture
async def api_orchestrator(make_orchestrator):
    """Loaded orchestrator with a running analytics consumer"""
    orchestrator = make_orchestrator()
    orchestrator.recorder.start()
    await orchestrator.refresh_index()
    try:
        yield orchestrator
    finally:
        await orchestrator.drain_background()
        await orchestrator.recorder.stop(drain_timeout=1.0)


@pytest_asyncio.fixture
async def api_client(api_orchestrator, monkeypatch):
    """
    HTTP client for API integration testing

    Usage:
        async def test_search(api_client):
            response = await api_client.post("/api/v1/search", json={"query": "laptop"})
            assert response.status_code == 200
    """
    import app.main as main_module
    from app.api.v1.search import get_orchestrator_dep

    monkeypatch.setattr(main_module, "search_orchestrator", api_orchestrator)
    main_module.app.dependency_overrides[get_orchestrator_dep] = lambda: api_orchestrator

    transport = ASGITransport(app=main_module.app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        main_module.app.dependency_overrides[get_orchestrator_dep] = main_module.get_orchestrator
