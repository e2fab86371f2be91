"""Transcript parsing: token usage aggregation and time-in-state reconstruction.

A transcript is the append-only JSONL log the assistant writes for a session.
Streaming writes several records per API request, each carrying cumulative
usage, so usage is reduced per request id with max() before summing.
"""

import json
import logging
from collections.abc import Collection, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import Field

from ..config import settings
from ..models import SessionStatus, SessionUsage, TokenBreakdown
from .pricing import PriceResolver, get_price_resolver

logger = logging.getLogger(__name__)

# Max size for a single JSONL line (10MB)
MAX_LINE_SIZE = 10 * 1024 * 1024

TOOL_USE_STOP_REASON = "tool_use"


class TranscriptSummary(SessionUsage):
    """Authoritative usage and inferred durations for one transcript."""

    request_count: int = 0
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None
    total_working_ms: int = 0
    total_waiting_ms: int = 0
    total_idle_ms: int = 0
    model_breakdown: dict[str, TokenBreakdown] = Field(default_factory=dict)


def iter_transcript_entries(path: Path) -> Iterator[dict[str, Any]]:
    """Yield each JSON object in a transcript.

    Malformed and oversized lines are skipped. Raises OSError if the file
    cannot be opened.
    """
    with open(path, encoding="utf-8", errors="replace") as f:
        for line_num, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue

            if len(line) > MAX_LINE_SIZE:
                logger.warning(f"Line {line_num} in {path.name} exceeds size limit, skipping")
                continue

            try:
                entry = json.loads(line)
            except json.JSONDecodeError as e:
                logger.debug(f"Malformed JSON at line {line_num} in {path.name}: {e}")
                continue

            if isinstance(entry, dict):
                yield entry


def _parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp. Offset-less values are taken as UTC."""
    if not isinstance(value, str):
        return None
    try:
        timestamp = datetime.fromisoformat(value)
    except ValueError:
        return None
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return timestamp


def _content_blocks(message: dict[str, Any]) -> list[dict[str, Any]]:
    content = message.get("content")
    if isinstance(content, list):
        return [block for block in content if isinstance(block, dict)]
    return []


def _has_free_text(message: dict[str, Any]) -> bool:
    """True for a typed prompt, False for tool results."""
    content = message.get("content")
    if isinstance(content, str):
        return bool(content.strip())
    return any(block.get("type") == "text" for block in _content_blocks(message))


class UsageAggregator:
    """Reduces streamed usage records to per-request maxima."""

    def __init__(self):
        self._requests: dict[str, TokenBreakdown] = {}
        self._request_models: dict[str, str] = {}

    @property
    def request_count(self) -> int:
        return len(self._requests)

    def observe(self, entry: dict[str, Any]) -> None:
        message = entry.get("message")
        request_id = entry.get("requestId")
        if entry.get("type") != "assistant" or not isinstance(message, dict) or not request_id:
            return
        usage = message.get("usage")
        if not isinstance(usage, dict):
            return

        current = self._requests.setdefault(request_id, TokenBreakdown())
        model = message.get("model")
        if isinstance(model, str) and model and request_id not in self._request_models:
            self._request_models[request_id] = model

        current.input_tokens = max(current.input_tokens, _count(usage, "input_tokens"))
        current.output_tokens = max(current.output_tokens, _count(usage, "output_tokens"))
        current.cache_creation_tokens = max(
            current.cache_creation_tokens, _count(usage, "cache_creation_input_tokens")
        )
        current.cache_read_tokens = max(
            current.cache_read_tokens, _count(usage, "cache_read_input_tokens")
        )

    def totals(self) -> tuple[TokenBreakdown, str | None, dict[str, TokenBreakdown]]:
        """Session totals, primary (first-seen) model and per-model breakdown."""
        totals = TokenBreakdown()
        primary_model: str | None = None
        breakdown: dict[str, TokenBreakdown] = {}

        for request_id, usage in self._requests.items():
            totals.add(usage)
            model = self._request_models.get(request_id)
            if model:
                if primary_model is None:
                    primary_model = model
                breakdown.setdefault(model, TokenBreakdown()).add(usage)

        return totals, primary_model, breakdown


def _count(usage: dict[str, Any], key: str) -> int:
    value = usage.get(key)
    return int(value) if isinstance(value, int | float) and value > 0 else 0


class TimeReconstructor:
    """Replays transcript records to infer time spent in each status.

    Transitions:
      user prompt text while not working     -> working (previous idle/waiting accrues)
      assistant calls an ask-user tool       -> waiting_for_input (working accrues)
      assistant stops without a pending tool -> idle (working accrues)
      assistant stops for a tool use         -> stays working
    The first timestamped record seeds the baseline without accruing.
    """

    def __init__(self, user_input_tools: Collection[str]):
        self.user_input_tools = user_input_tools
        self.state = SessionStatus.IDLE
        self.last_transition_ms: int | None = None
        self.working_ms = 0
        self.waiting_ms = 0
        self.idle_ms = 0

    def observe(self, entry: dict[str, Any], timestamp: datetime | None) -> None:
        message = entry.get("message")
        if timestamp is None or not isinstance(message, dict):
            return
        at_ms = int(timestamp.timestamp() * 1000)
        entry_type = entry.get("type")

        if entry_type == "user" and message.get("role") == "user":
            if _has_free_text(message) and self.state is not SessionStatus.WORKING:
                if self.last_transition_ms is not None:
                    self._accrue(at_ms)
                self._move(SessionStatus.WORKING, at_ms)
            elif self.last_transition_ms is None:
                self._move(SessionStatus.WORKING, at_ms)

        elif entry_type == "assistant" and message.get("role") == "assistant":
            asks_user = any(
                block.get("type") == "tool_use" and block.get("name") in self.user_input_tools
                for block in _content_blocks(message)
            )
            if asks_user:
                self._accrue_working(at_ms)
                self._move(SessionStatus.WAITING_FOR_INPUT, at_ms)
            elif message.get("stop_reason") != TOOL_USE_STOP_REASON:
                self._accrue_working(at_ms)
                self._move(SessionStatus.IDLE, at_ms)

    def _move(self, state: SessionStatus, at_ms: int) -> None:
        self.state = state
        self.last_transition_ms = at_ms

    def _accrue(self, at_ms: int) -> None:
        duration = max(0, at_ms - self.last_transition_ms)
        if self.state is SessionStatus.IDLE:
            self.idle_ms += duration
        elif self.state is SessionStatus.WAITING_FOR_INPUT:
            self.waiting_ms += duration
        else:
            self.working_ms += duration

    def _accrue_working(self, at_ms: int) -> None:
        if self.last_transition_ms is not None and self.state is SessionStatus.WORKING:
            self._accrue(at_ms)


def parse_transcript(
    path: str | Path,
    pricing: PriceResolver | None = None,
    user_input_tools: Collection[str] | None = None,
) -> TranscriptSummary | None:
    """Parse a transcript file into usage totals, cost and state durations.

    Returns None if the file cannot be read or holds no usage records.
    Parsing the same file twice yields identical totals.
    """
    path = Path(path)
    pricing = pricing or get_price_resolver()
    if user_input_tools is None:
        user_input_tools = settings.get_user_input_tools()

    usage = UsageAggregator()
    timeline = TimeReconstructor(user_input_tools)
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None

    try:
        for entry in iter_transcript_entries(path):
            timestamp = _parse_timestamp(entry.get("timestamp"))
            if timestamp is not None:
                if first_timestamp is None or timestamp < first_timestamp:
                    first_timestamp = timestamp
                if last_timestamp is None or timestamp > last_timestamp:
                    last_timestamp = timestamp

            timeline.observe(entry, timestamp)
            usage.observe(entry)
    except OSError as e:
        logger.warning(f"Cannot read transcript {path}: {e}")
        return None

    if usage.request_count == 0:
        return None

    totals, primary_model, breakdown = usage.totals()
    if breakdown:
        cost_usd = sum(pricing.calculate_cost(tokens, model) for model, tokens in breakdown.items())
    else:
        cost_usd = pricing.calculate_cost(totals, primary_model)

    summary = TranscriptSummary(
        input_tokens=totals.input_tokens,
        output_tokens=totals.output_tokens,
        cache_creation_tokens=totals.cache_creation_tokens,
        cache_read_tokens=totals.cache_read_tokens,
        total_tokens=totals.total,
        cost_usd=cost_usd,
        model=primary_model,
        model_breakdown=breakdown,
        request_count=usage.request_count,
        first_timestamp=first_timestamp,
        last_timestamp=last_timestamp,
        total_working_ms=timeline.working_ms,
        total_waiting_ms=timeline.waiting_ms,
        total_idle_ms=timeline.idle_ms,
    )
    logger.info(
        f"[Transcript] Parsed {usage.request_count} requests from {path.name}: "
        f"in={totals.input_tokens} cache_read={totals.cache_read_tokens} "
        f"cache_create={totals.cache_creation_tokens} out={totals.output_tokens} "
        f"total={totals.total} cost=${cost_usd:.4f}"
    )
    return summary
