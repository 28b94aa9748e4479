"""Pytest configuration and shared fixtures.

Organization:
    - Clock Fixtures: deterministic "now" for the relay
    - Database Fixtures: in-memory SQLite engine and session factory
    - Broker Fixtures: in-process stand-in for FastStream's KafkaBroker
    - State Store Fixtures: dict-backed stand-in for redis.asyncio
    - Settings Fixtures: small, fast settings for relay and consumers

No test needs Kafka, Redis or PostgreSQL to be running.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from event_pipeline.infra.cache import StateStore
    from event_pipeline.infra.messaging import BrokerClient

# Keep settings independent of the developer's environment
os.environ.setdefault("CONFIG_DIR", "/nonexistent-event-pipeline-conf")
os.environ.setdefault("LOG_FILE_ENABLED", "false")


# ============================================================================
# Clock Fixtures
# ============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC))


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """Async engine on a throwaway SQLite file with the pipeline tables created.

    A file (not :memory:) gives every session its own connection, as in
    production.
    """
    from event_pipeline.core.database import Base
    from event_pipeline.infra.events.outbox import models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    from event_pipeline.infra.database.session import create_session_factory

    return create_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ============================================================================
# Broker Fixtures
# ============================================================================


class FakeKafkaBroker:
    """Records publishes and subscriptions instead of talking to Kafka.

    ``fail_topics`` makes every publish to those topics raise;
    ``start_errors`` are raised by successive ``start()`` calls.
    """

    def __init__(self) -> None:
        self.published: list[dict[str, Any]] = []
        self.subscriptions: list[dict[str, Any]] = []
        self.fail_topics: set[str] = set()
        self.start_errors: list[BaseException] = []
        self.start_calls = 0
        self.close_calls = 0
        self.started = False
        self.ping_result = True

    async def start(self) -> None:
        self.start_calls += 1
        if self.start_errors:
            raise self.start_errors.pop(0)
        self.started = True

    async def close(self) -> None:
        self.close_calls += 1
        self.started = False

    async def ping(self, timeout: float | None = None) -> bool:
        return self.ping_result

    async def publish(
        self,
        message: Any,
        topic: str,
        *,
        key: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        if topic in self.fail_topics:
            raise ConnectionError(f"broker unavailable for {topic}")
        self.published.append({"topic": topic, "body": message, "key": key, "headers": dict(headers or {})})

    def subscriber(self, *topics: str, **options: Any):
        def register(handler):
            self.subscriptions.append({"topics": topics, "options": options, "handler": handler})
            return handler

        return register

    def messages_for(self, topic: str) -> list[dict[str, Any]]:
        return [message for message in self.published if message["topic"] == topic]


@pytest.fixture
def kafka_settings():
    from event_pipeline.core.settings import KafkaSettings

    return KafkaSettings(
        retry_attempts=3,
        retry_backoff=0.01,
        connection_timeout=1.0,
        publish_timeout=1.0,
    )


@pytest.fixture
def fake_kafka() -> FakeKafkaBroker:
    return FakeKafkaBroker()


@pytest.fixture
async def broker_client(kafka_settings, fake_kafka: FakeKafkaBroker) -> AsyncGenerator[BrokerClient]:
    """Connected BrokerClient backed by FakeKafkaBroker."""
    from event_pipeline.infra.messaging import BrokerClient

    client = BrokerClient(kafka_settings, broker=fake_kafka, dead_letter_topic="dlq.survey-service")
    await client.connect()
    try:
        yield client
    finally:
        await client.disconnect()


# ============================================================================
# State Store Fixtures
# ============================================================================


class FakePipeline:
    """Queues commands and applies them in order on execute()."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._commands: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._commands.clear()

    def hincrby(self, key: str, field: str, amount: int = 1) -> FakePipeline:
        self._commands.append(("hincrby", (key, field, amount)))
        return self

    def incr(self, key: str, amount: int = 1) -> FakePipeline:
        self._commands.append(("incr", (key, amount)))
        return self

    def expire(self, key: str, seconds: int) -> FakePipeline:
        self._commands.append(("expire", (key, seconds)))
        return self

    async def execute(self) -> list[Any]:
        self._redis.round_trips += 1
        results = [self._redis.apply(name, *args) for name, args in self._commands]
        self._commands.clear()
        return results


class FakeRedis:
    """Dict-backed subset of redis.asyncio.Redis (decode_responses=True).

    TTLs are recorded, not enforced.
    """

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.ttls: dict[str, int] = {}
        self.round_trips = 0
        self.closed = False

    def apply(self, name: str, *args: Any) -> Any:
        if name == "hincrby":
            key, field, amount = args
            bucket = self.hashes.setdefault(key, {})
            bucket[field] = str(int(bucket.get(field, "0")) + amount)
            return int(bucket[field])
        if name == "incr":
            key, amount = args
            self.values[key] = str(int(self.values.get(key, "0")) + amount)
            return int(self.values[key])
        if name == "expire":
            key, seconds = args
            if key not in self.values and key not in self.hashes:
                return False
            self.ttls[key] = seconds
            return True
        raise NotImplementedError(name)

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        self.round_trips += 1
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool | None:
        self.round_trips += 1
        if nx and (key in self.values or key in self.hashes):
            return None
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        else:
            self.ttls.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        self.round_trips += 1
        deleted = 0
        for key in keys:
            if self.values.pop(key, None) is not None or self.hashes.pop(key, None) is not None:
                deleted += 1
            self.ttls.pop(key, None)
        return deleted

    async def exists(self, key: str) -> int:
        return int(key in self.values or key in self.hashes)

    async def ttl(self, key: str) -> int:
        if key not in self.values and key not in self.hashes:
            return -2
        return self.ttls.get(key, -1)

    async def hgetall(self, key: str) -> dict[str, str]:
        self.round_trips += 1
        return dict(self.hashes.get(key, {}))

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
async def state_store(fake_redis: FakeRedis) -> AsyncGenerator[StateStore]:
    """Connected StateStore backed by FakeRedis."""
    from event_pipeline.core.settings import RedisSettings
    from event_pipeline.infra.cache import StateStore

    store = StateStore(RedisSettings(), client=fake_redis)
    await store.connect()
    try:
        yield store
    finally:
        await store.disconnect()


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def outbox_settings():
    from event_pipeline.core.settings import OutboxSettings

    return OutboxSettings(
        batch_size=100,
        poll_interval_ms=50,
        max_attempts=3,
        retry_backoff_ms=5000,
        dead_letter_topic="dlq.survey-service",
        graceful_timeout=1.0,
    )


@pytest.fixture
def projection_settings():
    from event_pipeline.core.settings import ProjectionSettings

    return ProjectionSettings()
