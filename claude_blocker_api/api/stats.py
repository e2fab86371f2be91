"""Daily statistics and backfill endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core import (
    BackfillAlreadyRunning,
    BackfillManager,
    InvalidDateError,
    SessionStore,
    get_backfill_manager,
    get_session_store,
)
from ..core.stats import combine_days, date_keys_between, parse_date_key
from ..models import (
    BackfillProgress,
    BackfillTriggerResponse,
    DailyStats,
    DailyStatsRangeResponse,
    DailyStatsResponse,
    StatsSource,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stats"])


def collect_daily_stats(
    keys: list[str],
    source: StatsSource,
    backfill: BackfillManager,
    store: SessionStore,
) -> list[DailyStats]:
    """Daily stats for each key from the chosen source; combined adds both."""
    if source is StatsSource.BACKFILL:
        return backfill.engine.get_daily_stats(keys)
    if source is StatsSource.LIVE:
        return store.history.get_daily_stats(keys)
    return combine_days(backfill.engine.get_daily_stats(keys), store.history.get_daily_stats(keys))


@router.get("/stats/daily/{date}", response_model=DailyStatsResponse)
async def get_daily_stats(
    date: str,
    source: StatsSource = Query(default=StatsSource.BACKFILL),
    backfill: BackfillManager = Depends(get_backfill_manager),
    store: SessionStore = Depends(get_session_store),
) -> DailyStatsResponse:
    """Stats for one day (YYYY-MM-DD). Days without data come back zeroed."""
    try:
        key = parse_date_key(date).isoformat()
    except InvalidDateError as e:
        raise HTTPException(status_code=400, detail=str(e))

    [stats] = collect_daily_stats([key], source, backfill, store)
    return DailyStatsResponse(source=source, stats=stats)


@router.get("/stats/daily", response_model=DailyStatsRangeResponse)
async def get_daily_stats_range(
    start: str = Query(..., description="First day, YYYY-MM-DD"),
    end: str = Query(..., description="Last day, YYYY-MM-DD (inclusive)"),
    source: StatsSource = Query(default=StatsSource.BACKFILL),
    backfill: BackfillManager = Depends(get_backfill_manager),
    store: SessionStore = Depends(get_session_store),
) -> DailyStatsRangeResponse:
    """Stats for every day in an inclusive range."""
    try:
        keys = date_keys_between(start, end)
    except InvalidDateError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return DailyStatsRangeResponse(
        source=source, days=collect_daily_stats(keys, source, backfill, store)
    )


@router.get("/backfill", response_model=BackfillProgress)
async def get_backfill_progress(
    backfill: BackfillManager = Depends(get_backfill_manager),
) -> BackfillProgress:
    """Progress of the current or most recent backfill run."""
    return backfill.progress


@router.post("/backfill", response_model=BackfillTriggerResponse, status_code=202)
async def trigger_backfill(
    backfill: BackfillManager = Depends(get_backfill_manager),
) -> BackfillTriggerResponse:
    """Start a backfill run unless one is already in progress."""
    try:
        progress = backfill.trigger()
    except BackfillAlreadyRunning as e:
        return BackfillTriggerResponse(
            started=False, message="Backfill already running", progress=e.progress
        )

    logger.info("[Backfill] Manual backfill triggered")
    return BackfillTriggerResponse(started=True, message="Backfill started", progress=progress)
