"""FastAPI middleware for request logging and pipeline log context."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from subscription_pipeline.logging_config import bind_context, clear_context, get_logger
from subscription_pipeline.models.subscription import Platform
from subscription_pipeline.services.time_controller import get_time_controller

logger = get_logger(__name__)

_PLATFORMS = {p.value for p in Platform}

# Polled by orchestrators; logged at debug only
QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request once on completion and correlates it by request id.

    - request_id is taken from X-Request-ID when present, generated otherwise
    - the level follows the status: error for 5xx, warning for 4xx
    - X-Request-ID and X-Pipeline-Time (virtual clock) are set on every response
    """

    def __init__(self, app: ASGIApp, include_request_details: bool = True):
        super().__init__(app)
        self.include_request_details = include_request_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        bind_context(request_id=request_id)

        fields = {"method": request.method, "path": request.url.path}
        if self.include_request_details:
            fields["client_host"] = request.client.host if request.client else "unknown"
            fields["user_agent"] = request.headers.get("user-agent")
            if request.query_params:
                fields["query_params"] = str(request.query_params)

        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                logger.error(
                    "request_failed",
                    duration_ms=_elapsed_ms(started),
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                    **fields,
                )
                raise

            log = logger.info
            if response.status_code >= 500:
                log = logger.error
            elif response.status_code >= 400:
                log = logger.warning
            elif request.url.path in QUIET_PATHS:
                log = logger.debug
            log("request_completed", status_code=response.status_code, duration_ms=_elapsed_ms(started), **fields)
        finally:
            clear_context()

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Pipeline-Time"] = get_time_controller().now().isoformat()
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class ContextMiddleware(BaseHTTPMiddleware):
    """Middleware for binding business context from request headers and path.

    Binds to the logging context:
    - platform (X-Platform header)
    - notification_id (X-Notification-ID header, truncated)
    - dlq_entry_id (from /dlq/{id}/... paths)
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        platform = request.headers.get("x-platform")
        if platform and platform.lower() in _PLATFORMS:
            bind_context(platform=platform.lower())

        notification_id = request.headers.get("x-notification-id")
        if notification_id:
            bind_context(notification_id=notification_id[:64])

        if "dlq" in request.url.path:
            parts = request.url.path.split("/")
            try:
                dlq_index = parts.index("dlq")
                if len(parts) > dlq_index + 2:
                    bind_context(dlq_entry_id=parts[dlq_index + 1])
            except ValueError:
                pass

        return await call_next(request)
