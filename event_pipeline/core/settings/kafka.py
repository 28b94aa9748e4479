"""Kafka broker settings for FastStream.

Transport security (SASL/TLS) is intentionally not configurable here; the
broker is expected to be reachable on a trusted network.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._sanitizers import sanitize_inline_numeric
from .yaml_sources import create_kafka_yaml_source


class KafkaSettings(BaseSettings):
    """Kafka connection, producer and consumer settings.

    Environment variables use KAFKA_ prefix.
    Example: KAFKA_BROKERS="kafka-1:9092,kafka-2:9092", KAFKA_CLIENT_ID="survey-service"
    """

    # ─────────────────────────────────────────────────────
    # Enable/disable toggle
    # ─────────────────────────────────────────────────────
    enabled: bool = Field(
        default=True,
        description="Enable Kafka integration. When False, relay and consumers refuse to start.",
    )

    # ─────────────────────────────────────────────────────
    # Connection parameters
    # ─────────────────────────────────────────────────────
    brokers: str = Field(
        default="localhost:9092",
        min_length=1,
        description="Comma-separated list of bootstrap brokers (host:port).",
    )
    client_id: str = Field(
        default="survey-service",
        min_length=1,
        max_length=100,
        description="Client id reported to the brokers.",
    )

    # ─────────────────────────────────────────────────────
    # Retry / resilience
    # ─────────────────────────────────────────────────────
    retry_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Number of connection attempts before giving up on transient failures.",
    )
    retry_backoff: float = Field(
        default=1.0,
        gt=0,
        le=60.0,
        description="Initial seconds to wait between connection attempts (doubles each retry).",
    )
    connection_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=300.0,
        description="Timeout in seconds for a single connection attempt.",
    )
    publish_timeout: float = Field(
        default=10.0,
        ge=0.1,
        le=120.0,
        description="Seconds to wait for a publish acknowledgement.",
    )

    # ─────────────────────────────────────────────────────
    # Consumers
    # ─────────────────────────────────────────────────────
    auto_offset_reset: str = Field(
        default="earliest",
        pattern=r"^(earliest|latest)$",
        description="Where a new consumer group starts reading (earliest|latest).",
    )

    # ─────────────────────────────────────────────────────
    # Graceful shutdown
    # ─────────────────────────────────────────────────────
    graceful_timeout: float = Field(
        default=15.0,
        ge=0.1,
        le=300.0,
        description="Graceful shutdown timeout in seconds.",
    )

    model_config = SettingsConfigDict(
        env_prefix="KAFKA_",
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
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_kafka_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @field_validator("retry_attempts", "connection_timeout", "publish_timeout", mode="before")
    @classmethod
    def _normalize_numeric(cls, value: Any) -> Any:
        return sanitize_inline_numeric(value)

    @computed_field  # type: ignore[misc]
    @property
    def bootstrap_servers(self) -> list[str]:
        """Broker addresses as a list, blanks dropped."""
        return [server.strip() for server in self.brokers.split(",") if server.strip()]
