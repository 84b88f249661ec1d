"""
Product Search API Endpoints
POST /api/v1/search - Keyword search with filters, sort and pagination
GET  /api/v1/search/suggestions - Prefix autocomplete
GET  /api/v1/search/filters - Available filter values
POST /api/v1/search/analytics/selection - Report selected results
GET  /api/v1/search/analytics/stats - Analytics summary
POST /api/v1/search/index/refresh - Reload the catalog snapshot
GET  /api/v1/search/cache/stats - Cache statistics
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ...models.search import (
    AnalyticsStats,
    FilterOptions,
    SearchRequest,
    SearchResponse,
    SearchSuggestion,
    SelectionRequest,
)
from ...services.search.errors import SearchError
from ...services.search.orchestrator import SearchOrchestrator
from ...utils.logging_context import bind_search_context, log_performance

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/search", tags=["search"])


# Dependency injection placeholder (overridden in main.py)
def get_orchestrator_dep() -> SearchOrchestrator:
    """Dependency injection placeholder for search orchestrator - overridden in main.py"""
    raise RuntimeError("Search orchestrator dependency not initialized")


def _internal_error(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=500,
        detail={"code": code, "message": message, "details": {}},
    )


@router.post("", response_model=SearchResponse)
async def search_products(
    request: SearchRequest,
    orchestrator: SearchOrchestrator = Depends(get_orchestrator_dep),
):
    """
    Keyword product search.

    Example:
        POST /api/v1/search
        {
            "query": "lapotp",
            "filters": {"price_max": 1500, "availability": "in_stock"},
            "sort_by": "relevance",
            "page": 1,
            "page_size": 20
        }
    """
    bind_search_context(
        session_id=request.session_id,
        user_id=request.user_id,
        search_query=request.query[:100],
    )

    try:
        return await orchestrator.search(request)
    except SearchError:
        raise
    except Exception as e:
        logger.error(f"Search failed: {e}", exc_info=True)
        raise _internal_error("SEARCH_ERROR", "Search failed")


@router.get("/suggestions", response_model=SearchSuggestion)
async def get_search_suggestions(
    q: str = Query("", max_length=100, description="Prefix typed so far"),
    limit: Optional[int] = Query(None, description="Maximum suggestions (default 10, max 50)"),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator_dep),
):
    """Autocomplete suggestions for a prefix; prefixes shorter than 2 characters return none."""
    try:
        return await orchestrator.get_suggestions(q, limit)
    except SearchError:
        raise
    except Exception as e:
        logger.error(f"Suggestions failed for '{q}': {e}", exc_info=True)
        raise _internal_error("SUGGESTIONS_ERROR", "Failed to get suggestions")


@router.get("/filters", response_model=FilterOptions)
async def get_filter_options(
    category_id: Optional[str] = Query(None, description="Restrict aggregation to one category"),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator_dep),
):
    """Categories, price buckets and availability values with product counts."""
    try:
        return await orchestrator.get_filter_options(category_id)
    except SearchError:
        raise
    except Exception as e:
        logger.error(f"Filter options failed: {e}", exc_info=True)
        raise _internal_error("FILTERS_ERROR", "Failed to get filter options")


@router.post("/analytics/selection", status_code=202)
async def log_search_selection(
    request: SelectionRequest,
    orchestrator: SearchOrchestrator = Depends(get_orchestrator_dep),
) -> Dict[str, Any]:
    """
    Report which results the caller selected.

    Best effort: an unknown analytics_id is accepted and ignored downstream.
    """
    accepted = orchestrator.log_selection(request.analytics_id, request.product_ids)
    return {"analytics_id": request.analytics_id, "accepted": accepted}


@router.get("/analytics/stats", response_model=AnalyticsStats)
async def get_search_analytics(
    days: int = Query(7, ge=1, le=90, description="Window in days"),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator_dep),
):
    """Summary of recorded searches over the last N days."""
    try:
        return await orchestrator.recorder.get_stats(days=days)
    except Exception as e:
        logger.error(f"Analytics stats failed: {e}", exc_info=True)
        raise _internal_error("ANALYTICS_ERROR", "Failed to get analytics")


@router.post("/index/refresh")
async def refresh_search_index(
    orchestrator: SearchOrchestrator = Depends(get_orchestrator_dep),
) -> Dict[str, Any]:
    """Reload the catalog now; cached pages from the previous snapshot are dropped."""
    with log_performance("index_refresh"):
        snapshot = await orchestrator.refresh_index()

    return {
        "status": "refreshed",
        "generation": snapshot.generation,
        "products": len(snapshot),
        "built_at": snapshot.built_at.isoformat(),
    }


@router.get("/cache/stats")
async def get_cache_stats(
    orchestrator: SearchOrchestrator = Depends(get_orchestrator_dep),
) -> Dict[str, Any]:
    """Cache backend, hit rate, namespace version and entry counts."""
    return await orchestrator.cache.stats()
