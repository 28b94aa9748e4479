"""Modular Pydantic Settings v2 configuration.

One frozen settings model per domain (kafka/redis/db/outbox/projection/logging),
accessed through LRU-cached loaders::

    from event_pipeline.core.settings import get_outbox_settings

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. YAML/conf.d files (optional, local/dev)
    3. Environment variables (production)
    4. .env file (development only)
    5. secrets_dir (Kubernetes/Docker secrets)
"""

from __future__ import annotations

from .kafka import KafkaSettings
from .loader import (
    clear_all_caches,
    get_db_settings,
    get_kafka_settings,
    get_logging_settings,
    get_outbox_settings,
    get_projection_settings,
    get_redis_settings,
)
from .logs import LoggingSettings
from .outbox import OutboxSettings
from .postgres import PostgresSettings
from .projections import ProjectionSettings
from .redis import RedisSettings

__all__ = [
    "KafkaSettings",
    "LoggingSettings",
    "OutboxSettings",
    "PostgresSettings",
    "ProjectionSettings",
    "RedisSettings",
    "clear_all_caches",
    "get_db_settings",
    "get_kafka_settings",
    "get_logging_settings",
    "get_outbox_settings",
    "get_projection_settings",
    "get_redis_settings",
]
