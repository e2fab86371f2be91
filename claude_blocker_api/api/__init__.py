"""API endpoints for the session tracking service."""

from .health import router as health_router
from .hooks import router as hooks_router
from .pricing import router as pricing_router
from .state import router as state_router
from .stats import router as stats_router

__all__ = [
    "health_router",
    "hooks_router",
    "state_router",
    "stats_router",
    "pricing_router",
]
