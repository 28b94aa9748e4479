"""Outbox relay settings."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._sanitizers import sanitize_inline_numeric
from .yaml_sources import create_outbox_yaml_source


class OutboxSettings(BaseSettings):
    """Polling, retry and dead-letter settings for the outbox relay.

    Environment variables use OUTBOX_ prefix.
    Example: OUTBOX_BATCH_SIZE=100, OUTBOX_POLL_INTERVAL_MS=1000
    """

    # ─────────────────────────────────────────────────────
    # Polling
    # ─────────────────────────────────────────────────────
    batch_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum number of outbox rows fetched per poll.",
    )
    poll_interval_ms: int = Field(
        default=1000,
        ge=10,
        le=3_600_000,
        description="Milliseconds between polls.",
    )

    # ─────────────────────────────────────────────────────
    # Retry / dead-lettering
    # ─────────────────────────────────────────────────────
    max_attempts: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Publish attempts before a row is forwarded to the dead-letter topic.",
    )
    retry_backoff_ms: int = Field(
        default=5000,
        ge=0,
        le=86_400_000,
        description="Base backoff in milliseconds; doubled after every failed attempt.",
    )
    dead_letter_topic: str = Field(
        default="dlq.survey-service",
        min_length=1,
        max_length=249,
        pattern=r"^[a-zA-Z0-9._-]+$",
        description="Topic receiving rows that exhausted their attempts.",
    )

    # ─────────────────────────────────────────────────────
    # Lifecycle / maintenance
    # ─────────────────────────────────────────────────────
    graceful_timeout: float = Field(
        default=30.0,
        ge=0.1,
        le=300.0,
        description="Seconds stop() waits for an in-flight poll before logging that it is still running.",
    )
    cleanup_older_than_days: int = Field(
        default=7,
        ge=1,
        le=3650,
        description="Default retention for processed rows removed by cleanup.",
    )

    model_config = SettingsConfigDict(
        env_prefix="OUTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_outbox_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @field_validator("batch_size", "poll_interval_ms", "max_attempts", "retry_backoff_ms", mode="before")
    @classmethod
    def _normalize_numeric(cls, value: Any) -> Any:
        """Allow numeric env vars with inline comments (e.g., "1000  # 1s")."""
        return sanitize_inline_numeric(value)

    @property
    def poll_interval(self) -> float:
        """Poll interval in seconds."""
        return self.poll_interval_ms / 1000

    def backoff_for(self, attempts: int) -> float:
        """Seconds to wait after the given number of failed attempts.

        ``retry_backoff_ms * 2^(attempts - 1)``: 5s, 10s, 20s, ... with defaults.
        """
        exponent = max(attempts - 1, 0)
        return self.retry_backoff_ms * (2**exponent) / 1000
