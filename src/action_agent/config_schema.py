"""Pydantic configuration schema for the action agent.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup.

Usage:
    from action_agent.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

DEFAULT_ZERO_SCORE_KEYWORDS = [
    "Facebook",
    "bank",
    "Uber",
    "keeta",
    "flights",
    "GoDaddy",
    "booking.com",
    "decompress",
    "lunch",
    "afternoon catch up",
    "morning catch up",
]

DEFAULT_PROMOTIONAL_KEYWORDS = ["discount", "coupon", "newsletter", "offer", "sale"]

DEFAULT_FINANCE_KEYWORDS = ["payment", "invoice", "billing", "bank", "receipt", "tax"]


class ModelsConfig(BaseModel):
    """Claude model selection."""

    extraction: str = Field(
        default="claude-haiku-4-5-20251001",
        description="Model for action extraction",
    )
    max_tokens: int = Field(
        default=1024,
        ge=256,
        le=8192,
        description="Max output tokens for an extraction call",
    )


class AnthropicConfig(BaseModel):
    """Anthropic SDK client settings."""

    max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Transport-level retries performed by the SDK (429, 5xx, network)",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Per-request timeout passed to the SDK client",
    )


def _clean_keywords(v: list[str]) -> list[str]:
    cleaned = [k.strip() for k in v if k and k.strip()]
    if len(cleaned) != len(v):
        raise ValueError("Keywords cannot be empty strings")
    return cleaned


class ExtractionConfig(BaseModel):
    """Scoring policy for action extraction."""

    zero_score_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ZERO_SCORE_KEYWORDS),
        description="Keywords that force importanceRating to 0 (case-insensitive)",
    )
    promotional_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROMOTIONAL_KEYWORDS),
        description="Markers of promotional content (scored 3-10, no action)",
    )
    finance_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FINANCE_KEYWORDS),
        description="Finance terms that exempt content from the promotional filter",
    )
    enforce_policy: bool = Field(
        default=True,
        description="Apply the zero-score and promotional rules to the model output",
    )
    no_action_suggestion: str = Field(
        default="No action needed",
        description="Suggestion used for filtered items",
    )

    @field_validator("zero_score_keywords", "promotional_keywords", "finance_keywords")
    @classmethod
    def validate_keywords(cls, v: list[str]) -> list[str]:
        """Reject blank keywords, which would match everything."""
        return _clean_keywords(v)


class DatabaseConfig(BaseModel):
    """SQLite database location."""

    path: str = Field(
        default="data/action_agent.db",
        description="Path to the SQLite database file",
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure database path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class LLMLoggingConfig(BaseModel):
    """LLM request logging configuration."""

    enabled: bool = Field(default=True, description="Enable LLM request logging")
    retention_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Days to retain LLM request logs",
    )
    log_prompts: bool = Field(
        default=True,
        description="Store the system prompt alongside the user prompt",
    )
    log_responses: bool = Field(
        default=True,
        description="Store full responses",
    )
    prune_interval_hours: int = Field(
        default=24,
        ge=1,
        le=168,
        description="How often the server prunes logs older than retention_days",
    )


class InviteCodesConfig(BaseModel):
    """Invite code generation settings."""

    code_length: int = Field(
        default=8,
        ge=6,
        le=32,
        description="Number of characters in generated codes",
    )
    expire_after_days: int | None = Field(
        default=30,
        ge=1,
        description="Days until a new code expires (null = never)",
    )


class AppConfig(BaseModel):
    """Root configuration schema for the action agent.

    If validation fails on startup, the application exits with a clear error.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    models: ModelsConfig = Field(default_factory=ModelsConfig)
    anthropic: AnthropicConfig = Field(default_factory=AnthropicConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    llm_logging: LLMLoggingConfig = Field(default_factory=LLMLoggingConfig)
    invite_codes: InviteCodesConfig = Field(default_factory=InviteCodesConfig)
