"""
Request Context and Correlation IDs

Manages request-scoped context using contextvars so log lines emitted while
handling a request can be tied back to it.
"""

import uuid
from contextvars import ContextVar
from typing import Any

_request_context: ContextVar[dict[str, Any] | None] = ContextVar("request_context", default=None)


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return str(uuid.uuid4())


def set_request_context(request_id: str, **kwargs: Any) -> None:
    """
    Set the request context for the current async context.

    Args:
        request_id: Correlation ID for request tracing
        **kwargs: Additional context properties
    """
    _request_context.set({"request_id": request_id, **kwargs})


def get_request_context() -> dict[str, Any]:
    """
    Get the current request context.

    Returns:
        Dictionary containing request_id and any additional properties
    """
    return dict(_request_context.get() or {})


def clear_request_context() -> None:
    """Clear the request context for the current async context."""
    _request_context.set(None)
