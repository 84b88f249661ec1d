"""
Logging Context Helpers

Bind search-related fields (session, user, query, analytics id) to the
structlog contextvars so every log line in the current request carries them.
"""

import time
from contextlib import contextmanager
from typing import Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars


def bind_search_context(
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    search_query: Optional[str] = None,
    **kwargs
):
    """
    Bind caller and query context to all logs of the current request.

    Args:
        session_id: Caller session identifier
        user_id: Caller user identifier
        search_query: Raw query text as received
        **kwargs: Additional context key-value pairs (None values are skipped)

    Example:
        ```python
        bind_search_context(session_id="s-1", search_query="laptop")
        logger.info("search_received")  # includes session_id, search_query
        ```
    """
    context = {
        "session_id": session_id,
        "user_id": user_id,
        "search_query": search_query,
        **kwargs,
    }
    bind_contextvars(**{k: v for k, v in context.items() if v is not None})


def unbind_context(*keys: str):
    """Remove specific keys from logging context."""
    unbind_contextvars(*keys)


@contextmanager
def log_context(**context_vars):
    """
    Temporary logging context, removed again on exit.

    Example:
        ```python
        with log_context(search_query="laptop", search_page=2):
            logger.info("cache_lookup")
        ```
    """
    bind_contextvars(**context_vars)
    try:
        yield
    finally:
        unbind_contextvars(*context_vars.keys())


@contextmanager
def log_performance(operation_name: str, logger=None):
    """
    Log start, completion and duration of an operation.

    Args:
        operation_name: Name of the operation being timed
        logger: Logger instance (defaults to structlog.get_logger())
    """
    if logger is None:
        logger = structlog.get_logger()

    start_time = time.time()
    logger.info(f"{operation_name}_started", operation=operation_name)

    try:
        yield
    finally:
        logger.info(
            f"{operation_name}_completed",
            operation=operation_name,
            duration_ms=int((time.time() - start_time) * 1000),
        )
