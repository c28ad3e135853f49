"""Request logging middleware with correlation ids."""

import logging
import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from tvcurator.infrastructure.observability.logging import (
    get_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger(__name__)


# Hey future me - the SSE progress stream is a request that lives for minutes. It's logged once
# when it opens and once when the response object is handed back (not when the stream ends).
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request/response and propagate X-Correlation-ID."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Set the correlation id, log, call the route, echo the id back."""
        set_correlation_id(request.headers.get("X-Correlation-ID"))
        method = request.method
        path = request.url.path

        logger.debug(f"→ {method} {path}")
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Request failed: {method} {path}")
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        marker = "✓" if response.status_code < 400 else "✗"
        logger.info(
            f"{marker} {method} {path} → {response.status_code} ({duration_ms:.0f}ms)",
            extra={"status_code": response.status_code, "duration_ms": int(duration_ms)},
        )
        response.headers["X-Correlation-ID"] = get_correlation_id()
        return response
