"""
Health Check API Endpoints for Search Components
GET /api/v1/health/search - Index, cache, analytics and infrastructure status
GET /api/v1/health/config - Loaded search configuration sections
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ...database.database import postgresql_manager, redis_manager
from ...services.config.configuration_service import get_config_service
from ...services.observability.langsmith_service import get_langsmith_service
from ...services.search.orchestrator import SearchOrchestrator
from .search import get_orchestrator_dep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/health", tags=["Health"])


class SearchHealthResponse(BaseModel):
    """Response model for search component health"""
    status: str
    index: Dict[str, Any]
    cache: Dict[str, Any]
    analytics: Dict[str, Any]
    infrastructure: Dict[str, bool]


class ConfigHealthResponse(BaseModel):
    """Response model for config health check"""
    config_name: str
    sections: list
    status: str


@router.get("/search", response_model=SearchHealthResponse)
async def get_search_health(orchestrator: SearchOrchestrator = Depends(get_orchestrator_dep)):
    """
    Search component health.

    "unhealthy" when no index snapshot is loaded, "degraded" when the cache
    or the analytics consumer is not running on its preferred backend.

    Example:
        GET /api/v1/health/search

        Response:
        {
            "status": "healthy",
            "index": {"loaded": true, "generation": 3, "products": 17, ...},
            "cache": {"backend": "redis", "hit_rate": 0.42, ...},
            "analytics": {"backend": "postgresql", "queued": 0, ...},
            "infrastructure": {"redis": true, "postgresql": true, "langsmith": false}
        }
    """
    try:
        stats = await orchestrator.stats()
    except Exception as e:
        logger.error(f"Search health check failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Health check failed: {str(e)}")

    infrastructure = {
        "redis": await redis_manager.ping(),
        "postgresql": postgresql_manager._initialized,
        "langsmith": get_langsmith_service().is_enabled(),
    }

    if not stats["index"]["loaded"]:
        status = "unhealthy"
    elif not stats["analytics"]["consumer_running"] or stats["cache"].get("storage_available") is False:
        status = "degraded"
    else:
        status = "healthy"

    return SearchHealthResponse(
        status=status,
        index=stats["index"],
        cache=stats["cache"],
        analytics=stats["analytics"],
        infrastructure=infrastructure,
    )


@router.get("/config", response_model=ConfigHealthResponse)
async def get_config_health():
    """Report which sections of search_config.json are loaded."""
    try:
        config = get_config_service().get_search_config()
    except Exception as e:
        logger.error(f"Config health check failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Health check failed: {str(e)}")

    return ConfigHealthResponse(
        config_name="search_config",
        sections=sorted(config.keys()),
        status="healthy" if config else "empty",
    )
