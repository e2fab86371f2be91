"""Main FastAPI application for the Claude Blocker service."""

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import health_router, hooks_router, pricing_router, state_router, stats_router
from .config import settings
from .core import get_backfill_manager, get_price_resolver, init_session_store
from .telemetry import RequestLoggingMiddleware

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup and shutdown."""
    # Startup
    logger.info("Starting Claude Blocker service...")
    logger.info(f"Service version: {app.version}")
    logger.info(f"Host: {settings.service_host}:{settings.service_port}")
    logger.info(f"Data directory: {settings.data_dir}")

    resolver = get_price_resolver()
    resolver.initialize(refresh=settings.pricing_refresh_enabled)
    logger.info("Pricing initialized")

    store = init_session_store()
    store.start()
    logger.info("Session store started")

    backfill = get_backfill_manager()
    if settings.backfill_on_startup:
        backfill.start_daily_schedule()
        logger.info("Daily backfill schedule started")

    logger.info("Claude Blocker service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Claude Blocker service...")

    await backfill.shutdown()
    logger.info("Backfill stopped")

    # Flushes pending history before exit
    await store.shutdown()
    logger.info("Session history flushed")

    await resolver.shutdown()
    logger.info("Claude Blocker service stopped")


# Create FastAPI application
app = FastAPI(
    title="Claude Blocker API",
    description="""
Local service that tracks coding assistant sessions from their lifecycle hooks.

## Concepts

### Sessions
Live sessions are driven by hook events (`POST /hook`). Each session is
`idle`, `working` or `waiting_for_input`; the service is **blocked** while no
session is working. Ended sessions move into a 7-day history.

### Usage and cost
Token counts are accumulated from events and replaced by authoritative
figures parsed from the session transcript when the session ends. Costs use
a per-model price table fetched from the LiteLLM catalog with static
fallbacks.

### Daily stats
Per-day totals come from two sources: the live tracker, and a backfill that
reconstructs days from every transcript on disk.

## API Endpoints

### Tracking
- `POST /hook` - Receive a hook event
- `POST /statusline` - Receive status line usage totals

### State
- `GET /status` - Blocked flag and live sessions
- `GET /state` - Full state message
- `GET /history` - Ended sessions
- `GET /events` - State stream (SSE)
- `WS /ws` - State stream (WebSocket)

### Stats
- `GET /stats/daily/{date}` - One day
- `GET /stats/daily?start=&end=` - Inclusive range
- `GET /backfill` - Backfill progress
- `POST /backfill` - Start a backfill run

### Diagnostics
- `GET /pricing` - Price table
- `GET /health` - Health check
- `GET /version` - Service version
""",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Request logging middleware (first, to capture all requests)
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router)
app.include_router(hooks_router)
app.include_router(state_router)
app.include_router(stats_router)
app.include_router(pricing_router)


def main() -> None:
    """Main entry point for running the service."""
    import uvicorn

    uvicorn.run(
        "claude_blocker_api.main:app",
        host=settings.service_host,
        port=settings.service_port,
        log_level=settings.log_level,
        reload=False,  # Set to True for development
    )


if __name__ == "__main__":
    main()
