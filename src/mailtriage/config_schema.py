"""Pydantic configuration schema for mail triage.

This module defines the configuration schema that mirrors config.yaml.
Every section has defaults, so an empty (or missing) config file yields a
working pipeline against the Groq chat-completion endpoint.

Usage:
    from mailtriage.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import regex
from pydantic import BaseModel, Field, field_validator, model_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

# provider -> (model, credential env var)
PROVIDER_DEFAULTS: dict[str, tuple[str, str]] = {
    "openai_compatible": ("llama-3.1-8b-instant", "GROQ_API_KEY"),
    "anthropic": ("claude-haiku-4-5", "ANTHROPIC_API_KEY"),
}


class AIConfig(BaseModel):
    """Language-model completion provider configuration."""

    provider: Literal["openai_compatible", "anthropic"] = Field(
        default="openai_compatible",
        description="Backend: any OpenAI-compatible chat endpoint, or Anthropic messages",
    )
    model: str | None = Field(
        default=None,
        description="Model identifier (defaults per provider)",
    )
    base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="Base URL for the OpenAI-compatible endpoint (ignored for anthropic)",
    )
    api_key_env: str | None = Field(
        default=None,
        description="Environment variable holding the credential (defaults per provider)",
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Sampling temperature (low favors deterministic classification)",
    )
    max_tokens: int = Field(
        default=300,
        ge=50,
        le=4096,
        description="Maximum output tokens per completion",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Per-request timeout",
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempt budget for rate-limited requests",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL without a trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def apply_provider_defaults(self) -> "AIConfig":
        """Fill model and credential variable from the provider when omitted."""
        default_model, default_key_env = PROVIDER_DEFAULTS[self.provider]
        if self.model is None:
            self.model = default_model
        if self.api_key_env is None:
            self.api_key_env = default_key_env
        return self


class GovernorConfig(BaseModel):
    """Throughput governor configuration for batch processing."""

    interval_seconds: float = Field(
        default=2.1,
        gt=0,
        le=60,
        description="Minimum spacing between classification starts",
    )
    cache_capacity: int = Field(
        default=1000,
        ge=1,
        le=1_000_000,
        description="Maximum cached results (least recently used evicted first)",
    )


class NormalizerConfig(BaseModel):
    """Email body normalization limits."""

    prompt_max_length: int = Field(
        default=1500,
        ge=100,
        le=20000,
        description="Maximum body characters sent to the model",
    )
    storage_max_length: int = Field(
        default=2000,
        ge=100,
        le=50000,
        description="Maximum body characters kept for storage",
    )
    summary_max_length: int = Field(
        default=200,
        ge=20,
        le=2000,
        description="Length of the content slice used as a fallback summary",
    )


class RulesConfig(BaseModel):
    """Optional replacement pattern lists for the rule engine.

    Each list, when given, replaces the built-in patterns of that rule set.
    Patterns are case-insensitive regular expressions matched against the
    lowercased "subject body sender" text.
    """

    skip_ai: list[str] | None = None
    force_low: list[str] | None = None
    force_high: list[str] | None = None
    fallback_low: list[str] | None = None
    fallback_high: list[str] | None = None
    date_block: list[str] | None = None
    actionable_context: list[str] | None = None
    meeting_keywords: list[str] | None = Field(
        default=None,
        description="Plain keywords/phrases, matched as whole words",
    )

    @field_validator(
        "skip_ai",
        "force_low",
        "force_high",
        "fallback_low",
        "fallback_high",
        "date_block",
        "actionable_context",
    )
    @classmethod
    def validate_patterns(cls, v: list[str] | None) -> list[str] | None:
        """Ensure every pattern compiles and the list isn't empty."""
        if v is None:
            return v
        if not v:
            raise ValueError("Pattern list cannot be empty (omit it to use the defaults)")
        for pattern in v:
            try:
                regex.compile(pattern)
            except regex.error as e:
                raise ValueError(f"Invalid pattern {pattern!r}: {e}") from e
        return v


class LoggingConfig(BaseModel):
    """Logging output configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    json_output: bool = Field(
        default=True,
        description="JSON logs (False for human-readable console output)",
    )


class AppConfig(BaseModel):
    """Root configuration schema for mail triage.

    This model validates the entire config.yaml structure.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )
    timezone: str = Field(
        default="UTC",
        description="Timezone used to decide what 'today' is for due dates",
    )
    ai: AIConfig = Field(default_factory=AIConfig)
    governor: GovernorConfig = Field(default_factory=GovernorConfig)
    normalizer: NormalizerConfig = Field(default_factory=NormalizerConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the timezone is a valid IANA name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone '{v}' (use an IANA name like 'Asia/Kolkata')") from e
        return v

    @model_validator(mode="after")
    def validate_lengths(self) -> "AppConfig":
        """Storage window must be at least as large as the prompt window."""
        if self.normalizer.storage_max_length < self.normalizer.prompt_max_length:
            raise ValueError("normalizer.storage_max_length must be >= prompt_max_length")
        return self
