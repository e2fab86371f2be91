"""Data models for the blocker service."""

from .pricing import ModelPricing
from .requests import (
    HookEventName,
    HookPayload,
    StatuslineContextWindow,
    StatuslineCost,
    StatuslinePayload,
)
from .responses import (
    BackfillTriggerResponse,
    DailyStatsRangeResponse,
    DailyStatsResponse,
    HealthResponse,
    HistoryResponse,
    HookResponse,
    PricingResponse,
    StateMessage,
    StatusResponse,
    VersionResponse,
)
from .session import (
    CamelModel,
    HistoricalSession,
    Session,
    SessionStatus,
    SessionUsage,
    TokenBreakdown,
    ToolCall,
    ToolInput,
    TrackedSubagent,
    merge_model_breakdown,
)
from .stats import (
    BackfillProgress,
    BackfillStatus,
    DailyStats,
    HistoricalStatsData,
    HistoryData,
    StatsSource,
)

__all__ = [
    # Session models
    "CamelModel",
    "Session",
    "SessionStatus",
    "SessionUsage",
    "HistoricalSession",
    "TokenBreakdown",
    "ToolCall",
    "ToolInput",
    "TrackedSubagent",
    "merge_model_breakdown",
    # Request models
    "HookEventName",
    "HookPayload",
    "StatuslineCost",
    "StatuslineContextWindow",
    "StatuslinePayload",
    # Stats models
    "DailyStats",
    "HistoricalStatsData",
    "HistoryData",
    "BackfillProgress",
    "BackfillStatus",
    "StatsSource",
    # Pricing
    "ModelPricing",
    # Response models
    "StateMessage",
    "StatusResponse",
    "HistoryResponse",
    "HookResponse",
    "DailyStatsResponse",
    "DailyStatsRangeResponse",
    "BackfillTriggerResponse",
    "PricingResponse",
    "HealthResponse",
    "VersionResponse",
]
