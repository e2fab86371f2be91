"""Health check and version endpoints."""

import time
from typing import Any

from fastapi import APIRouter, Depends

from .. import __version__
from ..core import (
    BackfillManager,
    PriceResolver,
    SessionStore,
    get_backfill_manager,
    get_price_resolver,
    get_session_store,
)
from ..models import HealthResponse, VersionResponse

router = APIRouter(tags=["health"])

# Track service start time
_start_time = time.time()


def format_uptime(seconds_total: float) -> str:
    days = seconds_total // 86400
    seconds_remaining = seconds_total % 86400
    hours = seconds_remaining // 3600
    seconds_remaining = seconds_remaining % 3600
    minutes = seconds_remaining // 60
    seconds = seconds_remaining % 60
    return (
        f"Days: {int(days)}, Hours: {int(hours)}, "
        f"Minutes: {int(minutes)}, Seconds: {int(seconds)}"
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: SessionStore = Depends(get_session_store),
    resolver: PriceResolver = Depends(get_price_resolver),
    backfill: BackfillManager = Depends(get_backfill_manager),
) -> HealthResponse:
    """Health check endpoint."""
    uptime = time.time() - _start_time
    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime=format_uptime(uptime),
        uptime_seconds=uptime,
        live_sessions=store.session_count,
        pricing_loaded=resolver.is_loaded,
        backfill_status=backfill.progress.status.value,
    )


@router.get("/version", response_model=VersionResponse)
async def get_version() -> VersionResponse:
    """Get version information."""
    return VersionResponse(service_version=__version__)


@router.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint with service information."""
    return {
        "service": "Claude Blocker API",
        "version": __version__,
        "description": "Activity, token and cost tracker for coding assistant sessions",
        "docs": "/docs",
        "health": "/health",
    }
