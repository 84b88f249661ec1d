"""
Product Search Engine
FastAPI Application Entry Point
"""

import logging
import logging.handlers
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.v1.health import router as health_router
from .api.v1.search import get_orchestrator_dep, router as search_router
from .database.analytics_store import init_analytics_store
from .database.database import (
    close_postgresql,
    close_redis,
    get_redis_client,
    init_postgresql,
    init_redis,
    postgresql_manager,
    redis_manager,
)
from .database.search_cache_storage import init_search_cache_storage
from .database.suggestion_storage import init_suggestion_storage
from .middleware import LoggingMiddleware, SessionContextMiddleware
from .services.config.configuration_service import get_config_service
from .services.observability.langsmith_service import get_langsmith_service
from .services.search.cache import CacheWarmer
from .services.search.catalog import JsonFileCatalogProvider
from .services.search.errors import SearchError
from .services.search.factory import build_cache_warmer, build_search_orchestrator
from .services.search.orchestrator import SearchOrchestrator

# Load environment variables
load_dotenv()


# Configure structured logging with structlog
def configure_logging():
    """
    Configure structured logging using structlog.

    - Production (ENV=production): JSON output for log aggregation
    - Development (ENV=development): Human-readable console output
    - Includes automatic context: timestamp, level, logger name, correlation_id, session_id
    """
    env = os.getenv("ENV", "development").lower()
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.contextvars.merge_contextvars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if env == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback
        )

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    # stdlib loggers (every service module) render through the same chain
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # Default log path at project root (4 levels up from src/backend/app/main.py)
    project_root = Path(__file__).resolve().parent.parent.parent.parent
    default_log_path = project_root / "logs" / "product-search.log"
    log_file_path = str(Path(os.getenv("LOG_FILE_PATH", str(default_log_path))).resolve())

    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_file_path,
        maxBytes=10 * 1024 * 1024,  # 10MB per file
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(stdout_handler)
    root_logger.addHandler(file_handler)
    root_logger.setLevel(log_level)

    # Reduce noise from verbose libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return structlog.get_logger(__name__)


# Initialize structured logging
logger = configure_logging()

# Global instances
search_orchestrator: Optional[SearchOrchestrator] = None
cache_warmer: Optional[CacheWarmer] = None


async def _init_redis_client():
    """Connect to Redis unless disabled; None means in-memory backends."""
    if not redis_manager.enable_caching:
        logger.info("Redis disabled via ENABLE_REDIS_CACHING=false")
        return None
    try:
        await init_redis()
        logger.info("✓ Redis initialized")
        return await get_redis_client()
    except Exception as e:
        logger.warning(f"Redis initialization failed: {e}. Continuing with in-memory cache and suggestions.")
        return None


async def _init_analytics_session_factory():
    """Connect to PostgreSQL unless disabled; None means in-memory analytics."""
    if not postgresql_manager.enabled:
        logger.info("PostgreSQL analytics disabled via ENABLE_ANALYTICS_ARCHIVE=false")
        return None
    try:
        session_factory = await init_postgresql()
        logger.info("✓ PostgreSQL initialized, analytics tables created/verified")
        return session_factory
    except Exception as e:
        logger.warning(f"PostgreSQL initialization failed: {e}. Continuing with in-memory analytics.")
        await close_postgresql()
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - startup and shutdown"""
    global search_orchestrator, cache_warmer

    logger.info("Starting product search engine...")

    config_service = get_config_service()
    cache_config = config_service.get_cache_config()
    suggestion_config = config_service.get_suggestion_config()

    # Shared state
    redis_client = await _init_redis_client()
    cache_storage = init_search_cache_storage(
        redis_client,
        namespace=f"{cache_config.get('key_prefix', 'search')}:cache",
    )
    suggestion_storage = init_suggestion_storage(
        redis_client,
        min_prefix_length=int(suggestion_config.get("min_prefix_length", 2)),
        max_prefix_length=int(suggestion_config.get("max_prefix_length", 20)),
    )
    if hasattr(cache_storage, "start_cleanup_loop"):
        cache_storage.start_cleanup_loop()

    # Durable analytics
    analytics_store = init_analytics_store(await _init_analytics_session_factory())

    langsmith_service = get_langsmith_service()
    if langsmith_service.is_enabled():
        logger.info("✓ LangSmith observability enabled")

    # Search engine
    catalog = JsonFileCatalogProvider(os.getenv("CATALOG_PATH"))
    search_orchestrator = build_search_orchestrator(
        catalog=catalog,
        cache_storage=cache_storage,
        suggestion_storage=suggestion_storage,
        analytics_store=analytics_store,
        config_service=config_service,
    )
    search_orchestrator.recorder.start()

    try:
        snapshot = await search_orchestrator.refresh_index()
        logger.info(f"✓ Product index loaded: {len(snapshot)} products")
    except SearchError as e:
        # Searches answer 503 until a scheduled refresh succeeds
        logger.error(f"Initial index load failed: {e.message}")

    search_orchestrator.index_manager.start_refresh_loop(config_service.get_index_refresh_interval())

    cache_warmer = build_cache_warmer(search_orchestrator, config_service)
    if cache_warmer is not None:
        cache_warmer.start()

    logger.info("All services initialized successfully")

    yield

    # Shutdown
    logger.info("Shutting down product search engine...")

    if cache_warmer is not None:
        await cache_warmer.stop()

    await search_orchestrator.index_manager.stop_refresh_loop()
    await search_orchestrator.drain_background()
    await search_orchestrator.recorder.stop()

    if hasattr(cache_storage, "stop_cleanup_loop"):
        await cache_storage.stop_cleanup_loop()

    try:
        await close_redis()
        logger.info("✓ Redis closed")
    except Exception as e:
        logger.error(f"Error closing Redis: {e}")

    try:
        await close_postgresql()
        logger.info("✓ PostgreSQL closed")
    except Exception as e:
        logger.error(f"Error closing PostgreSQL: {e}")

    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Product Search Engine",
    description="Keyword product search with fuzzy matching, filters, suggestions and analytics",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware is executed in reverse order of addition,
# so LoggingMiddleware clears context before SessionContextMiddleware binds it
app.add_middleware(SessionContextMiddleware)
app.add_middleware(LoggingMiddleware)


def _error_body(code: str, message: str, details: Optional[dict] = None) -> dict:
    return {"error": {"code": code, "message": message, "details": details or {}}}


@app.exception_handler(SearchError)
async def search_error_handler(request: Request, exc: SearchError):
    logger.warning("search_error", code=exc.code, error_message=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=_error_body("VALIDATION_ERROR", "Request validation failed", {"errors": errors}),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        content = {"error": exc.detail}
    else:
        content = _error_body("HTTP_ERROR", str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


# Dependency injection for orchestrator
def get_orchestrator() -> SearchOrchestrator:
    """Get search orchestrator instance for dependency injection"""
    return search_orchestrator


# Include routers
app.include_router(search_router)
app.include_router(health_router)

# Override dependency in app (not router)
app.dependency_overrides[get_orchestrator_dep] = get_orchestrator


@app.get("/")
async def root():
    """Root endpoint - service info"""
    return {
        "service": "product-search-engine",
        "version": "1.0.0",
        "description": "Keyword product search with fuzzy matching",
        "endpoints": {
            "search": "/api/v1/search",
            "suggestions": "/api/v1/search/suggestions",
            "filters": "/api/v1/search/filters",
            "docs": "/docs"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    orchestrator = search_orchestrator
    index_loaded = orchestrator is not None and orchestrator.index_manager.is_loaded

    health_status = {
        "status": "healthy" if index_loaded else "unhealthy",
        "services": {
            "search_orchestrator": orchestrator is not None,
            "product_index": index_loaded,
            "analytics_consumer": orchestrator is not None and orchestrator.recorder.running,
            "redis": redis_manager.is_connected,
            "postgresql": postgresql_manager._initialized,
            "langsmith": get_langsmith_service().is_enabled()
        },
    }

    if orchestrator is not None:
        health_status["storage"] = {
            "cache": getattr(orchestrator.cache.storage, "backend_name", "unknown"),
            "suggestions": getattr(orchestrator.suggestions.storage, "backend_name", "unknown"),
            "analytics": getattr(orchestrator.recorder.store, "backend_name", "unknown"),
        }

    return health_status


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
