"""Redis state store settings."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote, unquote, urlparse

from pydantic import Field, SecretStr, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_redis_yaml_source


class RedisSettings(BaseSettings):
    """Redis connection settings for the projection state store.

    Environment variables use REDIS_ prefix.
    Example: REDIS_URL="redis://localhost:6379/0"

    Supports bidirectional configuration:
    1. Provide REDIS_URL → components are parsed automatically
    2. Provide components (host, port, db, password) → URL is built automatically
    """

    # ──────────────────────────────────────────────────────────────
    # Connection configuration (bidirectional)
    # ──────────────────────────────────────────────────────────────

    redis_url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection URL. If provided, overrides component fields.",
    )

    host: str = Field(default="localhost", description="Redis server hostname or IP address")

    port: int = Field(default=6379, ge=1, le=65535, description="Redis server port")

    db: int = Field(default=0, ge=0, le=15, description="Redis database number (0-15)")

    username: str | None = Field(default=None, description="Redis username (Redis 6+ ACL)")

    password: SecretStr | None = Field(default=None, description="Redis password")

    # ──────────────────────────────────────────────────────────────
    # Connection pool settings
    # ──────────────────────────────────────────────────────────────

    max_connections: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum Redis connection pool size",
    )

    socket_timeout: float = Field(
        default=5.0,
        ge=0.1,
        le=30.0,
        description="Redis socket timeout in seconds (for operations)",
    )

    socket_connect_timeout: float = Field(
        default=5.0,
        ge=0.1,
        le=30.0,
        description="Redis socket connection timeout in seconds",
    )

    # ──────────────────────────────────────────────────────────────
    # Retry and resilience settings
    # ──────────────────────────────────────────────────────────────

    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts for a failed operation",
    )

    retry_delay: float = Field(
        default=0.5,
        ge=0.01,
        le=5.0,
        description="Initial retry delay in seconds (with exponential backoff)",
    )

    # ──────────────────────────────────────────────────────────────
    # Keyspace
    # ──────────────────────────────────────────────────────────────

    key_prefix: str = Field(
        default="",
        max_length=100,
        pattern=r"^([a-zA-Z0-9_-]+:?)?$",
        description="Optional prefix for every key written by the pipeline (empty = none)",
    )

    @model_validator(mode="after")
    def _apply_url(self) -> RedisSettings:
        """Parse redis_url into component fields if provided."""
        if self.redis_url:
            parsed = urlparse(self.redis_url)
            if parsed.hostname:
                object.__setattr__(self, "host", parsed.hostname)
            if parsed.port:
                object.__setattr__(self, "port", parsed.port)
            if parsed.path and len(parsed.path) > 1 and parsed.path.lstrip("/").isdigit():
                object.__setattr__(self, "db", int(parsed.path.lstrip("/")))
            if parsed.username:
                object.__setattr__(self, "username", unquote(parsed.username))
            if parsed.password:
                object.__setattr__(self, "password", SecretStr(unquote(parsed.password)))
        return self

    @computed_field  # type: ignore[misc]
    @property
    def url(self) -> str:
        """Build Redis URL from component fields."""
        auth = ""
        if self.username or self.password:
            username_part = quote(self.username) if self.username else ""
            password_part = quote(self.password.get_secret_value()) if self.password else ""
            if username_part and password_part:
                auth = f"{username_part}:{password_part}@"
            elif password_part:
                auth = f":{password_part}@"
            else:
                auth = f"{username_part}@"
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"

    def connection_pool_kwargs(self) -> dict[str, Any]:
        """Return kwargs for redis.asyncio.ConnectionPool.from_url()."""
        return {
            "max_connections": self.max_connections,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_connect_timeout,
            "decode_responses": True,
            "encoding": "utf-8",
        }

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
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
            create_redis_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )
