"""Middleware package for request processing and logging context injection."""

from .logging_middleware import LoggingMiddleware, SessionContextMiddleware

__all__ = ["LoggingMiddleware", "SessionContextMiddleware"]
