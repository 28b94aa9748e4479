"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process. In tests, clear the cache to force a reload::

    get_outbox_settings.cache_clear()

or construct a settings object directly with overrides::

    OutboxSettings(max_attempts=2)
"""

from __future__ import annotations

from functools import lru_cache

from .kafka import KafkaSettings
from .logs import LoggingSettings
from .outbox import OutboxSettings
from .postgres import PostgresSettings
from .projections import ProjectionSettings
from .redis import RedisSettings


@lru_cache(maxsize=1)
def get_kafka_settings() -> KafkaSettings:
    """Get cached Kafka settings."""
    return KafkaSettings()


@lru_cache(maxsize=1)
def get_redis_settings() -> RedisSettings:
    """Get cached Redis settings."""
    return RedisSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> PostgresSettings:
    """Get cached database settings."""
    return PostgresSettings()


@lru_cache(maxsize=1)
def get_outbox_settings() -> OutboxSettings:
    """Get cached outbox relay settings."""
    return OutboxSettings()


@lru_cache(maxsize=1)
def get_projection_settings() -> ProjectionSettings:
    """Get cached projection consumer settings."""
    return ProjectionSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings."""
    return LoggingSettings()


def clear_all_caches() -> None:
    """Clear every cached settings instance (tests and reloads)."""
    get_kafka_settings.cache_clear()
    get_redis_settings.cache_clear()
    get_db_settings.cache_clear()
    get_outbox_settings.cache_clear()
    get_projection_settings.cache_clear()
    get_logging_settings.cache_clear()
