"""Request models for API endpoints."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HookEventName(str, Enum):
    """Hook events consumed by the session store."""

    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    STOP = "Stop"
    SUBAGENT_START = "SubagentStart"
    SUBAGENT_STOP = "SubagentStop"


_KNOWN_EVENTS = {e.value: e for e in HookEventName}


class HookPayload(BaseModel):
    """Lifecycle notification posted by the coding assistant's hooks.

    The external tool sends more event kinds than the store consumes, so
    `hook_event_name` is kept as a free string and mapped through `event`.
    """

    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(..., min_length=1, description="Opaque session identifier")
    hook_event_name: str = Field(..., min_length=1, description="Hook event kind")
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    cwd: str | None = None
    transcript_path: str | None = None
    agent_id: str | None = None
    agent_type: str | None = None
    agent_transcript_path: str | None = None
    input_tokens: int | None = Field(default=None, ge=0)
    output_tokens: int | None = Field(default=None, ge=0)
    total_tokens: int | None = Field(default=None, ge=0)
    cost_usd: float | None = Field(default=None, ge=0)

    @property
    def event(self) -> HookEventName | None:
        """The consumed event kind, or None for kinds the store ignores."""
        return _KNOWN_EVENTS.get(self.hook_event_name)


class StatuslineCost(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_cost_usd: float = 0.0


class StatuslineContextWindow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_input_tokens: int = 0
    total_output_tokens: int = 0


class StatuslinePayload(BaseModel):
    """Absolute usage totals reported by the assistant's status line script."""

    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(..., min_length=1)
    cost: StatuslineCost | None = None
    context_window: StatuslineContextWindow | None = None
