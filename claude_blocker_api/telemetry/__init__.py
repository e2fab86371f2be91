"""
Telemetry Module

Request correlation context and request logging.
"""

from .context import (
    clear_request_context,
    generate_correlation_id,
    get_request_context,
    set_request_context,
)
from .middleware import RequestLoggingMiddleware

__all__ = [
    # Context
    "get_request_context",
    "set_request_context",
    "clear_request_context",
    "generate_correlation_id",
    # Middleware
    "RequestLoggingMiddleware",
]
