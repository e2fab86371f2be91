"""Response models for API endpoints."""

from typing import Literal

from pydantic import BaseModel, Field

from .pricing import ModelPricing
from .session import CamelModel, HistoricalSession, Session
from .stats import BackfillProgress, DailyStats, StatsSource


class StateMessage(CamelModel):
    """Derived global state broadcast to subscribers after every change."""

    type: Literal["state"] = "state"
    blocked: bool
    sessions: list[Session] = Field(default_factory=list)
    working: int = 0
    waiting_for_input: int = 0


class StatusResponse(CamelModel):
    """Response for the status endpoint."""

    blocked: bool
    sessions: list[Session] = Field(default_factory=list)


class HistoryResponse(CamelModel):
    """Response for the history endpoint."""

    history: list[HistoricalSession] = Field(default_factory=list)


class HookResponse(BaseModel):
    """Acknowledgement for hook and statusline posts."""

    ok: bool = True


class DailyStatsResponse(CamelModel):
    """Daily stats for a single date."""

    source: StatsSource
    stats: DailyStats


class DailyStatsRangeResponse(CamelModel):
    """Daily stats for an inclusive date range."""

    source: StatsSource
    days: list[DailyStats] = Field(default_factory=list)


class BackfillTriggerResponse(CamelModel):
    """Response for a backfill trigger request."""

    started: bool
    message: str
    progress: BackfillProgress


class PricingResponse(CamelModel):
    """Currently loaded pricing table."""

    loaded: bool
    models: dict[str, ModelPricing] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    uptime: str
    uptime_seconds: float
    live_sessions: int
    pricing_loaded: bool
    backfill_status: str


class VersionResponse(BaseModel):
    """Version information response."""

    service_version: str
