"""Tests for the pydantic-settings configuration classes."""

from __future__ import annotations

import pytest

from event_pipeline.core.settings import (
    KafkaSettings,
    OutboxSettings,
    PostgresSettings,
    ProjectionSettings,
    RedisSettings,
    clear_all_caches,
    get_outbox_settings,
)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    clear_all_caches()
    yield
    clear_all_caches()


class TestOutboxSettings:
    """Test suite for OutboxSettings."""

    def test_defaults(self, monkeypatch):
        """Test the documented defaults."""
        for name in ("BATCH_SIZE", "POLL_INTERVAL_MS", "MAX_ATTEMPTS", "RETRY_BACKOFF_MS", "DEAD_LETTER_TOPIC"):
            monkeypatch.delenv(f"OUTBOX_{name}", raising=False)

        settings = OutboxSettings()

        assert settings.batch_size == 100
        assert settings.poll_interval_ms == 1000
        assert settings.max_attempts == 5
        assert settings.retry_backoff_ms == 5000
        assert settings.dead_letter_topic == "dlq.survey-service"

    def test_env_overrides(self, monkeypatch):
        """Test OUTBOX_ environment variables, including inline comments."""
        monkeypatch.setenv("OUTBOX_BATCH_SIZE", "25")
        monkeypatch.setenv("OUTBOX_POLL_INTERVAL_MS", "250  # quarter second")
        monkeypatch.setenv("OUTBOX_MAX_ATTEMPTS", "3")

        settings = get_outbox_settings()

        assert settings.batch_size == 25
        assert settings.poll_interval_ms == 250
        assert settings.poll_interval == 0.25
        assert settings.max_attempts == 3

    @pytest.mark.parametrize(("attempts", "seconds"), [(1, 5.0), (2, 10.0), (3, 20.0), (4, 40.0)])
    def test_backoff_doubles(self, attempts, seconds):
        """Test retry_backoff_ms * 2^(attempts-1)."""
        assert OutboxSettings(retry_backoff_ms=5000).backoff_for(attempts) == seconds

    def test_settings_are_frozen(self):
        """Test that settings cannot be mutated after load."""
        settings = OutboxSettings()

        with pytest.raises(ValueError):
            settings.batch_size = 1


class TestKafkaSettings:
    """Test suite for KafkaSettings."""

    def test_bootstrap_servers_from_env(self, monkeypatch):
        """Test KAFKA_BROKERS is split into a list."""
        monkeypatch.setenv("KAFKA_BROKERS", "kafka-1:9092, kafka-2:9092,")
        monkeypatch.setenv("KAFKA_CLIENT_ID", "relay-1")

        settings = KafkaSettings()

        assert settings.bootstrap_servers == ["kafka-1:9092", "kafka-2:9092"]
        assert settings.client_id == "relay-1"


class TestRedisSettings:
    """Test suite for RedisSettings."""

    def test_url_is_parsed_into_components(self):
        """Test that REDIS_URL populates host, port, db and password."""
        settings = RedisSettings(REDIS_URL="redis://:s3cret@cache:6380/2")

        assert settings.host == "cache"
        assert settings.port == 6380
        assert settings.db == 2
        assert settings.password is not None
        assert settings.password.get_secret_value() == "s3cret"
        assert settings.url == "redis://:s3cret@cache:6380/2"

    def test_components_build_url(self):
        """Test that component fields build the URL."""
        settings = RedisSettings(host="redis", port=6379, db=1)

        assert settings.url == "redis://redis:6379/1"
        assert settings.connection_pool_kwargs()["decode_responses"] is True


class TestPostgresSettings:
    """Test suite for PostgresSettings."""

    def test_non_postgres_dsn_is_used_verbatim(self):
        """Test that a SQLite DSN passes straight through."""
        settings = PostgresSettings(DATABASE_URL="sqlite+aiosqlite:///:memory:")

        assert not settings.is_postgres
        assert settings.url == "sqlite+aiosqlite:///:memory:"


class TestProjectionSettings:
    """Test suite for ProjectionSettings."""

    def test_defaults(self):
        """Test default TTLs."""
        settings = ProjectionSettings()

        assert settings.session_ttl == 3600
        assert settings.session_metrics_ttl == 86400
        assert settings.counter_window == 86400
        assert settings.realtime_activity_ttl == 300
        assert settings.expected_answers == 10
