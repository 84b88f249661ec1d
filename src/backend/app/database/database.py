"""
Database configuration for Redis and PostgreSQL.

Redis: Shared search cache and suggestion corpus
PostgreSQL: Durable search analytics
"""

import logging
import os
from typing import Optional
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for PostgreSQL models."""
    pass


class RedisManager:
    """
    Redis manager for state shared between search workers.

    Features:
    - Versioned result page cache
    - Prefix suggestion sorted sets
    - Async connection pooling
    """

    def __init__(self):
        """Initialize Redis manager with .env configuration."""
        self.redis_url = os.getenv("REDIS_URL")
        self.redis_host = os.getenv("REDIS_HOST", "localhost")
        self.redis_port = int(os.getenv("REDIS_PORT", "6379"))
        self.redis_password = os.getenv("REDIS_PASSWORD")
        self.redis_db = int(os.getenv("REDIS_DB", "0"))
        self.enable_caching = os.getenv("ENABLE_REDIS_CACHING", "true").lower() == "true"

        self.client: Optional[Redis] = None
        self._initialized = False

    @property
    def is_connected(self) -> bool:
        return self._initialized and self.client is not None

    async def init_redis(self):
        """
        Initialize Redis connection.

        Raises:
            Exception: If Redis is unreachable (callers fall back to in-memory storage)
        """
        if self._initialized:
            return

        try:
            # REDIS_URL wins over the individual components
            if self.redis_url:
                self.client = Redis.from_url(
                    self.redis_url,
                    decode_responses=True,
                    encoding="utf-8"
                )
            else:
                self.client = Redis(
                    host=self.redis_host,
                    port=self.redis_port,
                    password=self.redis_password,
                    db=self.redis_db,
                    decode_responses=True,
                    encoding="utf-8"
                )

            await self.client.ping()
            self._initialized = True
            logger.info(f"Redis connected: {self.redis_host}:{self.redis_port}")

        except Exception as e:
            logger.error(f"Redis connection failed: {e}")
            self.client = None
            raise

    async def ping(self) -> bool:
        if not self.is_connected:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self):
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()
            logger.info("Redis connection closed")
        self.client = None
        self._initialized = False


class PostgreSQLManager:
    """
    PostgreSQL manager for search analytics.

    Features:
    - Append-only analytics records and selections
    - Retention purges and summary queries
    - Async SQLAlchemy session management
    """

    def __init__(self):
        """Initialize PostgreSQL manager with .env configuration."""
        self.postgres_host = os.getenv("POSTGRES_HOST", "localhost")
        self.postgres_port = int(os.getenv("POSTGRES_PORT", "5432"))
        self.postgres_db = os.getenv("POSTGRES_DB", "product_search")
        self.postgres_user = os.getenv("POSTGRES_USER", "postgres")
        self.postgres_password = os.getenv("POSTGRES_PASSWORD", "postgres")
        self.enabled = os.getenv("ENABLE_ANALYTICS_ARCHIVE", "true").lower() == "true"

        self.engine = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._initialized = False

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    def init_db(self):
        """Initialize PostgreSQL engine and session factory."""
        if self._initialized:
            return

        self.engine = create_async_engine(
            self.database_url,
            echo=False,
            poolclass=NullPool,
            future=True
        )

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=True,
            autocommit=False
        )

        self._initialized = True
        logger.info(f"PostgreSQL configured: {self.postgres_host}:{self.postgres_port}/{self.postgres_db}")

    async def create_tables(self):
        """Create analytics tables if missing (first real connection happens here)."""
        if not self._initialized:
            self.init_db()

        # Import registers the analytics tables on Base.metadata
        from . import analytics_store  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("PostgreSQL analytics tables ready")

    async def close(self):
        """Close PostgreSQL engine."""
        if self.engine:
            await self.engine.dispose()
            logger.info("PostgreSQL engine disposed")
        self.engine = None
        self.session_factory = None
        self._initialized = False


# Global manager instances
redis_manager = RedisManager()
postgresql_manager = PostgreSQLManager()


# Initialization functions
async def init_redis():
    """Initialize Redis connection."""
    await redis_manager.init_redis()


async def init_postgresql() -> async_sessionmaker:
    """
    Initialize PostgreSQL engine and analytics tables.

    Returns:
        Session factory for the analytics store
    """
    postgresql_manager.init_db()
    await postgresql_manager.create_tables()
    return postgresql_manager.session_factory


# Dependency injection functions
async def get_redis_client() -> Redis:
    """
    Dependency for getting Redis client.

    Returns:
        Redis client instance
    """
    if not redis_manager._initialized:
        await redis_manager.init_redis()

    return redis_manager.client


# Cleanup functions
async def close_redis():
    """Close Redis connections."""
    await redis_manager.close()


async def close_postgresql():
    """Close PostgreSQL connections."""
    await postgresql_manager.close()
