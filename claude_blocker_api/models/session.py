"""Session data models."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys for the wire and on-disk files."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionStatus(str, Enum):
    """Session status enumeration."""

    IDLE = "idle"
    WORKING = "working"
    WAITING_FOR_INPUT = "waiting_for_input"


class TokenBreakdown(CamelModel):
    """Token counts by kind."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    def add(self, other: "TokenBreakdown") -> None:
        """Add another breakdown into this one in place."""
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.cache_creation_tokens += other.cache_creation_tokens
        self.cache_read_tokens += other.cache_read_tokens

    def minus(self, other: "TokenBreakdown") -> "TokenBreakdown":
        """Return the non-negative difference self - other."""
        return TokenBreakdown(
            input_tokens=max(0, self.input_tokens - other.input_tokens),
            output_tokens=max(0, self.output_tokens - other.output_tokens),
            cache_creation_tokens=max(0, self.cache_creation_tokens - other.cache_creation_tokens),
            cache_read_tokens=max(0, self.cache_read_tokens - other.cache_read_tokens),
        )

    @property
    def total(self) -> int:
        # cache creation is billed but not counted in the total
        return self.input_tokens + self.cache_read_tokens + self.output_tokens


def merge_model_breakdown(
    target: dict[str, TokenBreakdown], source: dict[str, TokenBreakdown]
) -> None:
    """Add every per-model breakdown in source into target."""
    for model, tokens in source.items():
        target.setdefault(model, TokenBreakdown()).add(tokens)


class ToolInput(CamelModel):
    """Whitelisted subset of a tool invocation's input."""

    file_path: str | None = None
    command: str | None = None
    pattern: str | None = None
    description: str | None = None


class ToolCall(CamelModel):
    """A recent tool invocation."""

    name: str
    timestamp: datetime
    input: ToolInput | None = None


class SessionUsage(CamelModel):
    """Token and cost totals shared by live and historical sessions."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    model: str | None = None
    model_breakdown: dict[str, TokenBreakdown] = Field(default_factory=dict)

    def token_breakdown(self) -> TokenBreakdown:
        return TokenBreakdown(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cache_creation_tokens=self.cache_creation_tokens,
            cache_read_tokens=self.cache_read_tokens,
        )

    def copy_usage_from(self, other: "SessionUsage") -> None:
        """Overwrite all usage fields with the values of another usage record."""
        self.input_tokens = other.input_tokens
        self.output_tokens = other.output_tokens
        self.cache_creation_tokens = other.cache_creation_tokens
        self.cache_read_tokens = other.cache_read_tokens
        self.total_tokens = other.total_tokens
        self.cost_usd = other.cost_usd
        self.model = other.model
        self.model_breakdown = {
            name: tokens.model_copy() for name, tokens in other.model_breakdown.items()
        }


class Session(SessionUsage):
    """Live session state, owned by the session store."""

    id: str
    status: SessionStatus = SessionStatus.IDLE
    project_name: str
    initial_cwd: str | None = None
    cwd: str | None = None
    start_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_activity: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_tool: str | None = None
    tool_count: int = 0
    recent_tools: list[ToolCall] = Field(default_factory=list)
    waiting_for_input_since: datetime | None = None
    status_since: datetime = Field(default_factory=lambda: datetime.now(UTC))
    total_working_ms: int = 0
    total_waiting_ms: int = 0
    total_idle_ms: int = 0


class HistoricalSession(SessionUsage):
    """Snapshot of an ended session."""

    id: str
    project_name: str
    initial_cwd: str | None = None
    cwd: str | None = None
    start_time: datetime
    end_time: datetime
    last_activity: datetime | None = None
    last_tool: str | None = None
    tool_count: int = 0
    total_duration_ms: int = 0
    total_working_ms: int = 0
    total_waiting_ms: int = 0
    total_idle_ms: int = 0
    recent_tools: list[ToolCall] = Field(default_factory=list)


class TrackedSubagent(CamelModel):
    """A nested unit of work running inside a session."""

    id: str
    session_id: str
    type: str = "unknown"
    start_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
