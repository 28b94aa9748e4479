"""Projection consumer settings (state store TTLs, idempotency)."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_projection_yaml_source


class ProjectionSettings(BaseSettings):
    """TTLs and idempotency settings for the projection consumers.

    Environment variables use PROJECTION_ prefix.
    Example: PROJECTION_SESSION_TTL=3600, PROJECTION_IDEMPOTENCY_ENABLED=true
    """

    # ─────────────────────────────────────────────────────
    # Session projections
    # ─────────────────────────────────────────────────────
    session_ttl: int = Field(default=3600, ge=1, description="Session record TTL in seconds.")
    active_session_ttl: int = Field(
        default=3600,
        ge=1,
        description="Active-session index entry TTL in seconds.",
    )
    session_metrics_ttl: int = Field(
        default=86400,
        ge=1,
        description="Completed/terminated session snapshot TTL in seconds.",
    )

    # ─────────────────────────────────────────────────────
    # Quota projections
    # ─────────────────────────────────────────────────────
    quota_mapping_ttl: int = Field(
        default=3600,
        ge=1,
        description="TTL of the per-session quota status mapping in seconds.",
    )

    # ─────────────────────────────────────────────────────
    # Answer projections / real-time analytics
    # ─────────────────────────────────────────────────────
    answers_ttl: int = Field(default=86400, ge=1, description="Cached page answers TTL in seconds.")
    progress_ttl: int = Field(
        default=3600,
        ge=1,
        description="TTL of the real-time progress entry per session.",
    )
    expected_answers: int = Field(
        default=10,
        ge=1,
        description="Answer count treated as 100% progress when estimating completion.",
    )
    counter_window: int = Field(
        default=86400,
        ge=1,
        description="Window in seconds for survey/tenant analytics counters.",
    )
    realtime_activity_ttl: int = Field(
        default=300,
        ge=1,
        description="TTL of the real-time activity and participants entries.",
    )

    # ─────────────────────────────────────────────────────
    # Idempotency ledger
    # ─────────────────────────────────────────────────────
    idempotency_enabled: bool = Field(
        default=True,
        description="Skip events whose id was already applied by the same consumer group.",
    )
    idempotency_ttl: int = Field(
        default=604800,
        ge=1,
        description="Seconds an applied event id is remembered (7 days).",
    )

    model_config = SettingsConfigDict(
        env_prefix="PROJECTION_",
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
            create_projection_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )
