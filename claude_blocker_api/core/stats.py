"""Day-bucketed statistics helpers shared by live tracking and backfill."""

from datetime import date, datetime, timedelta

from ..models import DailyStats, TokenBreakdown, merge_model_breakdown
from .errors import InvalidDateError

MAX_RANGE_DAYS = 366


def date_key(moment: datetime) -> str:
    """Local calendar date (YYYY-MM-DD) of a timestamp."""
    return moment.astimezone().date().isoformat()


def parse_date_key(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise InvalidDateError(f"Invalid date '{value}', expected YYYY-MM-DD") from e


def date_keys_between(start: str, end: str) -> list[str]:
    """Every date key from start to end, inclusive."""
    first = parse_date_key(start)
    last = parse_date_key(end)
    if last < first:
        raise InvalidDateError(f"Range end {end} is before start {start}")

    days = (last - first).days + 1
    if days > MAX_RANGE_DAYS:
        raise InvalidDateError(f"Range of {days} days exceeds {MAX_RANGE_DAYS}")

    return [(first + timedelta(days=i)).isoformat() for i in range(days)]


def add_usage(
    stats: DailyStats,
    tokens: TokenBreakdown,
    cost_usd: float,
    model_breakdown: dict[str, TokenBreakdown] | None = None,
) -> None:
    """Add token usage and cost into a day."""
    stats.total_input_tokens += tokens.input_tokens
    stats.total_output_tokens += tokens.output_tokens
    stats.total_cache_creation_tokens += tokens.cache_creation_tokens
    stats.total_cache_read_tokens += tokens.cache_read_tokens
    stats.total_cost_usd += cost_usd
    if model_breakdown:
        merge_model_breakdown(stats.model_breakdown, model_breakdown)


def add_durations(stats: DailyStats, working_ms: int, waiting_ms: int, idle_ms: int) -> None:
    stats.total_working_ms += working_ms
    stats.total_waiting_ms += waiting_ms
    stats.total_idle_ms += idle_ms


def merge_daily_stats(target: DailyStats, source: DailyStats) -> DailyStats:
    """Additively merge source into target and return target."""
    target.sessions_started += source.sessions_started
    target.sessions_ended += source.sessions_ended
    add_durations(
        target, source.total_working_ms, source.total_waiting_ms, source.total_idle_ms
    )
    add_usage(
        target,
        TokenBreakdown(
            input_tokens=source.total_input_tokens,
            output_tokens=source.total_output_tokens,
            cache_creation_tokens=source.total_cache_creation_tokens,
            cache_read_tokens=source.total_cache_read_tokens,
        ),
        source.total_cost_usd,
        source.model_breakdown,
    )
    return target


def lookup_days(stats_by_date: dict[str, DailyStats], keys: list[str]) -> list[DailyStats]:
    """Copies of the requested days; dates with no data come back zeroed."""
    return [
        stats_by_date[key].model_copy(deep=True) if key in stats_by_date else DailyStats(date=key)
        for key in keys
    ]


def combine_days(*sources: list[DailyStats]) -> list[DailyStats]:
    """Merge parallel lists of days (same date order) into one list."""
    combined: list[DailyStats] = []
    for days in zip(*sources, strict=True):
        total = DailyStats(date=days[0].date)
        for day in days:
            merge_daily_stats(total, day)
        combined.append(total)
    return combined
