"""
Logging Middleware for Correlation ID and Request Tracking

Every request gets a correlation id (taken from X-Correlation-ID or
generated) that is bound to the structlog contextvars for the duration of
the request and echoed back in the response headers.
"""

import json
import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bind_contextvars, clear_contextvars

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
SESSION_HEADER = "X-Session-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Inject correlation id and request metadata into all logs.

    - Accepts the correlation id from the X-Correlation-ID header
    - Logs request start, completion and failure with duration
    - Adds the correlation id to the response headers
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        clear_contextvars()

        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())

        bind_contextvars(
            correlation_id=correlation_id,
            request_method=request.method,
            request_path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )

        start_time = time.time()
        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            query_params=dict(request.query_params),
        )

        try:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=int((time.time() - start_time) * 1000),
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=int((time.time() - start_time) * 1000),
                exc_info=True,
            )
            raise

        finally:
            clear_contextvars()


class SessionContextMiddleware(BaseHTTPMiddleware):
    """
    Bind the caller's session_id (and user_id when present) to logging context.

    The X-Session-ID header wins; otherwise JSON request bodies are inspected
    for ``session_id`` / ``user_id`` fields. Best effort only.
    """

    @staticmethod
    async def _ids_from_body(request: Request) -> dict:
        if request.method not in ("POST", "PUT", "PATCH"):
            return {}
        if "application/json" not in request.headers.get("content-type", ""):
            return {}

        body = await request.body()
        if not body:
            return {}

        # Downstream handlers need the consumed body again
        async def receive():
            return {"type": "http.request", "body": body}

        request._receive = receive

        try:
            payload = json.loads(body.decode())
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {}
        if not isinstance(payload, dict):
            return {}
        return {k: payload[k] for k in ("session_id", "user_id") if isinstance(payload.get(k), str)}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        ids = await self._ids_from_body(request)

        session_id: Optional[str] = request.headers.get(SESSION_HEADER) or ids.get("session_id")
        if session_id:
            bind_contextvars(session_id=session_id)
        if ids.get("user_id"):
            bind_contextvars(user_id=ids["user_id"])

        return await call_next(request)
