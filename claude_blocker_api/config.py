"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LITELLM_PRICING_URL = (
    "https://raw.githubusercontent.com/BerriAI/litellm/main/model_prices_and_context_window.json"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLAUDE_BLOCKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service settings
    service_host: str = Field(default="127.0.0.1", description="Host to bind the service")
    service_port: int = Field(default=8765, description="Port to bind the service")
    log_level: str = Field(default="info", description="Logging level")

    # CORS
    allowed_origins: str = Field(
        default="*",
        description="Allowed CORS origins (comma-separated)",
    )

    def get_allowed_origins(self) -> list[str]:
        """Get allowed origins as a list."""
        if isinstance(self.allowed_origins, str):
            return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]
        return self.allowed_origins

    # Paths
    data_dir: Path = Field(
        default=Path.home() / ".claude-blocker",
        description="Directory holding history, stats and pricing cache files",
    )
    projects_dir: Path = Field(
        default=Path.home() / ".claude" / "projects",
        description="Root directory of per-project transcript folders",
    )

    @property
    def history_file(self) -> Path:
        return self.data_dir / "sessions.json"

    @property
    def stats_file(self) -> Path:
        return self.data_dir / "historical-stats.json"

    @property
    def pricing_cache_file(self) -> Path:
        return self.data_dir / "pricing-cache.json"

    # Session tracking
    session_timeout_seconds: float = Field(
        default=300.0, description="Inactivity before a live session is moved to history"
    )
    stale_check_interval_seconds: float = Field(
        default=30.0, description="Interval of the stale session sweep"
    )
    waiting_debounce_ms: int = Field(
        default=500,
        description="Minimum dwell in waiting_for_input before PreToolUse/Stop may leave it",
    )
    recent_tools_limit: int = Field(default=5, description="Recent tool calls kept per session")
    user_input_tools: str = Field(
        default="AskUserQuestion,ask_user,ask_human",
        description="Tool names that block on user input (comma-separated)",
    )

    def get_user_input_tools(self) -> frozenset[str]:
        """Get user input tool names as a set."""
        return frozenset(t.strip() for t in self.user_input_tools.split(",") if t.strip())

    # History
    history_retention_days: int = Field(default=7, description="Days of session history kept")
    history_save_delay_seconds: float = Field(
        default=5.0, description="Debounce delay for history writes"
    )

    # Pricing
    pricing_url: str = Field(default=LITELLM_PRICING_URL, description="Remote price catalog")
    pricing_cache_ttl_hours: float = Field(default=24.0, description="Pricing cache lifetime")
    pricing_fetch_timeout_seconds: float = Field(default=10.0, description="Catalog fetch timeout")
    pricing_refresh_enabled: bool = Field(
        default=True, description="Fetch the remote catalog on startup"
    )

    # Backfill
    backfill_batch_size: int = Field(default=10, description="Transcripts parsed per batch")
    backfill_batch_delay_ms: int = Field(default=100, description="Pause between batches")
    backfill_on_startup: bool = Field(
        default=True, description="Run the daily backfill check at startup"
    )
    backfill_check_interval_seconds: float = Field(
        default=3600.0, description="How often to check whether today's backfill has run"
    )


# Global settings instance
settings = Settings()
