"""
Request Logging Middleware for FastAPI

Logs every HTTP request with timing and status code, and injects a
correlation ID for request tracing.
"""

import logging
import time
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .context import clear_request_context, generate_correlation_id, set_request_context

logger = logging.getLogger(__name__)

# Hook traffic arrives several times a second; log it below INFO
QUIET_PATHS = frozenset({"/hook", "/statusline", "/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for request logging.

    Captures:
    - Method and path
    - Status code
    - Request duration
    - Exceptions

    Adds an X-Request-ID header to every response.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process the request and log its outcome."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or generate_correlation_id()

        set_request_context(request_id=request_id, path=request.url.path)
        request.state.request_id = request_id

        try:
            response = await call_next(request)

            duration_ms = (time.time() - start_time) * 1000
            level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
            logger.log(
                level,
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"({duration_ms:.1f}ms) [{request_id}]",
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"{request.method} {request.url.path} failed after {duration_ms:.1f}ms "
                f"[{request_id}]: {type(e).__name__}: {e}"
            )
            raise

        finally:
            clear_request_context()
