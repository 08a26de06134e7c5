"""Application configuration management using Pydantic Settings.

This module defines the `Settings` class, which loads configuration parameters
from environment variables and a `.env` file: logging, service identity for
the telemetry resource, and the content policy knobs (capture, sampling,
truncation, redaction, event and metric attribute caps).

`get_settings` provides a cached, singleton instance; `build_policy` turns
settings into the `ContentPolicy` consumed by `process()`.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Callable, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict as _SettingsConfigDict

from .privacy.policy import ContentPolicy


class Settings(BaseSettings):
    """Defines all application configuration parameters.

    Integer limits use 0 to mean "disabled" so every knob can be switched off
    from the environment without unsetting it.
    """

    model_config = _SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Logging & service identity
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    SERVICE_NAME: str = Field(default="eval-telemetry", description="service.name resource attribute")
    SERVICE_VERSION: str = Field(default="0.1.0", description="service.version resource attribute")
    DEPLOYMENT_ENVIRONMENT: Optional[str] = Field(
        default=None, description="deployment.environment span/metric attribute"
    )

    # ---------------- Content policy -----------------
    CAPTURE_CONTENT: bool = Field(
        default=False,
        description="Opt-in: emit message/tool content as span events",
    )
    SAMPLE_CONTENT_RATE: float = Field(
        default=1.0,
        description="Fraction of records (by deterministic id hash) whose content is captured",
    )
    CONTENT_MAX_LENGTH: int = Field(
        default=0,
        description="Max characters per emitted content value (0 = disabled)",
    )
    MARK_TRUNCATED_CONTENT: bool = Field(
        default=False,
        description="Flag truncated values with gen_ai.message.content_truncated",
    )
    REDACT_PATTERN: Optional[str] = Field(
        default=None,
        description=(
            "Regular expression; content matching it is withheld and only its "
            "fingerprint emitted"
        ),
    )
    SUPPRESS_INFO_EVENTS: bool = Field(
        default=False,
        description="Suppress agent step / RAG chunk events even when content is captured",
    )

    # ---------------- Cardinality -----------------
    MAX_EVENTS_PER_SPAN: int = Field(
        default=0, description="Maximum span events per record (0 = unbounded)"
    )
    METRIC_ATTRIBUTE_ALLOWLIST: Any = Field(
        default_factory=list,
        description=(
            "Optional comma-separated list of metric attribute keys to keep. "
            "Empty list (default) means no allowlisting."
        ),
    )
    MAX_METRIC_ATTRIBUTES: int = Field(
        default=0, description="Maximum attributes per metric point (0 = unbounded)"
    )

    @field_validator("METRIC_ATTRIBUTE_ALLOWLIST", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated string into list of stripped strings.

        Supports both direct list input (from code/tests) and comma-separated
        string input (from environment variables).
        """
        if isinstance(v, list):
            return [s.strip() for s in v if s.strip()]
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return []

    @field_validator("SAMPLE_CONTENT_RATE")
    @classmethod
    def check_rate(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("SAMPLE_CONTENT_RATE must be within [0, 1]")
        return v

    @field_validator("CONTENT_MAX_LENGTH", "MAX_EVENTS_PER_SPAN", "MAX_METRIC_ATTRIBUTES")
    @classmethod
    def check_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("limits must be >= 0 (0 disables the limit)")
        return v

    @field_validator("REDACT_PATTERN", "DEPLOYMENT_ENVIRONMENT", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("REDACT_PATTERN")
    @classmethod
    def check_pattern(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                re.compile(v)
            except re.error as exc:
                raise ValueError(f"REDACT_PATTERN is not a valid regular expression: {exc}") from exc
        return v


def pattern_redactor(pattern: str) -> Callable[[str], Optional[str]]:
    """Build a general redaction hook withholding any content that matches `pattern`."""
    compiled = re.compile(pattern)

    def _redact(content: str) -> Optional[str]:
        return None if compiled.search(content) else content

    return _redact


def build_policy(settings: Settings) -> ContentPolicy:
    """Translate settings into a ContentPolicy (0-valued limits become None)."""
    return ContentPolicy(
        capture_content=settings.CAPTURE_CONTENT,
        sample_rate=settings.SAMPLE_CONTENT_RATE,
        max_content_length=settings.CONTENT_MAX_LENGTH or None,
        mark_truncated=settings.MARK_TRUNCATED_CONTENT,
        redact=pattern_redactor(settings.REDACT_PATTERN) if settings.REDACT_PATTERN else None,
        suppress_informational_events=settings.SUPPRESS_INFO_EVENTS,
        max_events_per_span=settings.MAX_EVENTS_PER_SPAN or None,
        metric_attribute_allowlist=list(settings.METRIC_ATTRIBUTE_ALLOWLIST) or None,
        max_metric_attributes=settings.MAX_METRIC_ATTRIBUTES or None,
        environment=settings.DEPLOYMENT_ENVIRONMENT,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:  # pragma: no cover - trivial
    """Return a cached, singleton instance of the application settings."""
    return Settings()
