"""
Database package for the product search engine.

Provides Redis and PostgreSQL management plus the storage backends:
- Redis: Search result cache and suggestion corpus
- PostgreSQL: Search analytics
"""

from .database import (
    RedisManager,
    PostgreSQLManager,
    redis_manager,
    postgresql_manager,
    init_redis,
    init_postgresql,
    get_redis_client,
    close_redis,
    close_postgresql
)

__all__ = [
    "RedisManager",
    "PostgreSQLManager",
    "redis_manager",
    "postgresql_manager",
    "init_redis",
    "init_postgresql",
    "get_redis_client",
    "close_redis",
    "close_postgresql"
]
