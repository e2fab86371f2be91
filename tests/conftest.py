"""Pytest configuration and fixtures."""

import json
import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

# Set test environment variables BEFORE importing anything that loads settings
# so nothing touches the real home directory or the network
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="claude-blocker-test-")
os.environ["CLAUDE_BLOCKER_DATA_DIR"] = _TEST_DATA_DIR
os.environ["CLAUDE_BLOCKER_PROJECTS_DIR"] = str(Path(_TEST_DATA_DIR) / "projects")
os.environ["CLAUDE_BLOCKER_PRICING_REFRESH_ENABLED"] = "false"
os.environ["CLAUDE_BLOCKER_BACKFILL_ON_STARTUP"] = "false"

import pytest

from claude_blocker_api.core.history import HistoryStore
from claude_blocker_api.core.pricing import PriceResolver
from claude_blocker_api.core.session_store import SessionStore
from claude_blocker_api.models import HookPayload

ASK_TOOL = "AskUserQuestion"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def hook(event: str, session_id: str = "session-a", **fields: Any) -> HookPayload:
    """Build a hook payload."""
    return HookPayload(session_id=session_id, hook_event_name=event, **fields)


def iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def user_entry(at: datetime, content: Any = "Please help") -> dict[str, Any]:
    return {
        "type": "user",
        "timestamp": iso(at),
        "message": {"role": "user", "content": content},
    }


def assistant_entry(
    at: datetime,
    request_id: str,
    *,
    model: str = "claude-sonnet-4-20250514",
    input_tokens: int = 0,
    output_tokens: int = 0,
    cache_creation: int = 0,
    cache_read: int = 0,
    stop_reason: str | None = "end_turn",
    tool: str | None = None,
) -> dict[str, Any]:
    content: list[dict[str, Any]] = [{"type": "text", "text": "ok"}]
    if tool:
        content.append({"type": "tool_use", "id": f"tool-{request_id}", "name": tool, "input": {}})
    return {
        "type": "assistant",
        "requestId": request_id,
        "timestamp": iso(at),
        "message": {
            "role": "assistant",
            "model": model,
            "stop_reason": stop_reason,
            "content": content,
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_creation_input_tokens": cache_creation,
                "cache_read_input_tokens": cache_read,
            },
        },
    }


def write_transcript(path: Path, entries: list[dict[str, Any] | str]) -> Path:
    """Write entries as JSONL; plain strings are written verbatim."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for entry in entries:
            f.write(entry if isinstance(entry, str) else json.dumps(entry))
            f.write("\n")
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver(tmp_path: Path) -> PriceResolver:
    """Resolver with fallback prices only."""
    return PriceResolver(cache_file=tmp_path / "pricing-cache.json")


@pytest.fixture
def history(tmp_path: Path, clock: FakeClock) -> HistoryStore:
    return HistoryStore(tmp_path / "sessions.json", save_delay_seconds=60, clock=clock)


@pytest.fixture
def store(history: HistoryStore, resolver: PriceResolver, clock: FakeClock) -> SessionStore:
    return SessionStore(
        history,
        resolver,
        clock=clock,
        waiting_debounce_ms=500,
        user_input_tools={ASK_TOOL},
    )
