"""
Configuration settings with Pydantic validation.
All settings are loaded from environment variables (or .env).
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from llm_consensus.strategy.aggregator import AggregationMode


class Settings(BaseSettings):
    """Main application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Circuit Breaker (per provider)
    failure_threshold: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Consecutive failures before a provider's circuit opens"
    )
    open_timeout_ms: int = Field(
        default=60_000,
        ge=1,
        description="How long an open circuit stays open before a trial call (ms)"
    )

    # Provider Defaults (used when a provider spec omits them)
    default_timeout_ms: int = Field(
        default=9000,
        ge=100,
        le=300_000,
        description="Per-attempt HTTP timeout (ms)"
    )
    default_max_retries: int = Field(
        default=1,
        ge=0,
        le=10,
        description="Retries after the first attempt on network failure"
    )

    # Aggregation
    aggregation_mode: AggregationMode = Field(
        default=AggregationMode.WEIGHTED,
        description="Consensus mode: MAJORITY, WEIGHTED or FIRST"
    )
    position_risk_percent: float = Field(
        default=2.0,
        gt=0.0,
        le=100.0,
        description="Suggested position size attached to each signal (% of equity)"
    )
    past_signal_limit: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Similar past signals included in the prompt (0 disables)"
    )

    # Storage
    database_path: Path = Field(
        default=Path("data/consensus.db"),
        description="SQLite database for provider state and the playbook"
    )
    providers_file: Path = Field(
        default=Path("config/providers.json"),
        description="JSON file listing provider specs"
    )
    playbook_max_signals: int = Field(
        default=500,
        ge=1,
        description="Signals kept in the playbook; oldest are dropped first"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_file: Optional[Path] = Field(
        default=None,
        description="Optional log file path"
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON"
    )

    @field_validator("aggregation_mode", mode="before")
    @classmethod
    def normalize_aggregation_mode(cls, v):
        """Accept lowercase mode names from the environment."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log_level: {v}")
        return level

    @model_validator(mode="after")
    def validate_timeouts(self) -> "Settings":
        """An open circuit must outlast a single provider attempt."""
        if self.open_timeout_ms < self.default_timeout_ms:
            raise ValueError(
                f"open_timeout_ms ({self.open_timeout_ms}) must be >= "
                f"default_timeout_ms ({self.default_timeout_ms})"
            )
        return self


# Global settings instance (lazy loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
