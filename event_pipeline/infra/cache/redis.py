"""Redis state store for the projection consumers.

This module provides the key/value client the consumers write their
projections through:
- Connection pooling (``redis.asyncio``)
- Automatic retry with exponential backoff on connection errors and timeouts
- JSON values with TTLs
- Atomic hash counters (quota buckets) and windowed counters
- An idempotency ledger (``SET NX EX``) for at-least-once delivery
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, cast

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from event_pipeline.core.exceptions import StateStoreError
from event_pipeline.core.settings import get_redis_settings
from event_pipeline.infra.cache import keys
from event_pipeline.utils.retry import retry

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from event_pipeline.core.settings import RedisSettings

logger = logging.getLogger(__name__)
redis_settings = get_redis_settings()

TRANSIENT_ERRORS = (RedisConnectionError, RedisTimeoutError)

redis_retry = retry(
    max_attempts=redis_settings.max_retries,
    initial_delay=redis_settings.retry_delay,
    max_delay=5.0,
    exceptions=TRANSIENT_ERRORS,
)


class StateStore:
    """Redis client with retry logic and connection pooling.

    Example:
        store = StateStore()
        await store.connect()

        await store.set_json("session:abc", {"status": "started"}, ttl=3600)
        record = await store.get_json("session:abc")

        await store.adjust_counters("quota:b1", {"reserved": -1, "filled": 1})

        await store.disconnect()
    """

    def __init__(self, settings: RedisSettings | None = None, *, client: Redis | None = None) -> None:
        """Initialize the state store.

        Args:
            settings: Redis settings; loaded from the environment when omitted.
            client: Pre-built client (tests pass a fake here). When given,
                ``connect()`` only checks it with a PING.
        """
        self.settings = settings or redis_settings
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = client
        self._owns_client = client is None
        self._prefix = self.settings.key_prefix

    async def connect(self) -> None:
        """Open the connection pool and check it with a PING.

        Raises:
            RedisConnectionError: If Redis cannot be reached.
        """
        logger.info(
            "Connecting to Redis",
            extra={
                "host": self.settings.host,
                "port": self.settings.port,
                "db": self.settings.db,
                "max_connections": self.settings.max_connections,
            },
        )
        if self._owns_client and self._client is None:
            self._pool = ConnectionPool.from_url(
                self.settings.url,
                **self.settings.connection_pool_kwargs(),
            )
            self._client = Redis(connection_pool=self._pool)

        try:
            await cast("Awaitable[bool]", self.client.ping())
        except Exception as e:
            logger.exception("Failed to connect to Redis", extra={"error": str(e)})
            await self.disconnect()
            raise
        logger.info("Redis connection established")

    async def disconnect(self) -> None:
        """Close the client and its pool."""
        if self._owns_client and self._client is not None:
            await cast("Any", self._client).aclose()
            self._client = None
        if self._pool is not None:
            await cast("Any", self._pool).aclose()
            self._pool = None
        logger.info("Redis connection closed")

    @property
    def client(self) -> Redis:
        """Underlying client.

        Raises:
            StateStoreError: If not connected.
        """
        if self._client is None:
            raise StateStoreError("State store not connected. Call connect() first.")
        return self._client

    def key(self, name: str) -> str:
        """Apply the configured global prefix to ``name``."""
        return f"{self._prefix}{name}" if self._prefix else name

    @redis_retry
    async def ping(self) -> bool:
        try:
            return bool(await cast("Awaitable[bool]", self.client.ping()))
        except StateStoreError:
            return False

    # ──────────────────────────────────────────────────────────────
    # JSON values
    # ──────────────────────────────────────────────────────────────

    @redis_retry
    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> None:
        payload = json.dumps(value, default=str, separators=(",", ":"))
        await self.client.set(self.key(key), payload, ex=ttl)

    @redis_retry
    async def get_json(self, key: str) -> Any | None:
        raw = await self.client.get(self.key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding non-JSON value", extra={"key": key})
            return None

    @redis_retry
    async def delete(self, *key_names: str) -> int:
        if not key_names:
            return 0
        return int(await self.client.delete(*(self.key(k) for k in key_names)))

    @redis_retry
    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(self.key(key)))

    @redis_retry
    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds (-1 without expiry, -2 when missing)."""
        return int(await self.client.ttl(self.key(key)))

    # ──────────────────────────────────────────────────────────────
    # Session helpers
    # ──────────────────────────────────────────────────────────────

    async def set_session(self, session_id: str, record: Mapping[str, Any], ttl: int) -> None:
        await self.set_json(keys.session(session_id), dict(record), ttl=ttl)

    async def get_session(self, session_id: str) -> dict[str, Any] | None:
        return await self.get_json(keys.session(session_id))

    # ──────────────────────────────────────────────────────────────
    # Counters
    # ──────────────────────────────────────────────────────────────

    @redis_retry
    async def adjust_counters(
        self,
        key: str,
        deltas: Mapping[str, int],
        ttl: int | None = None,
    ) -> dict[str, int]:
        """Apply several HINCRBY deltas to one hash in a single MULTI/EXEC.

        Args:
            key: Hash key.
            deltas: Field to delta, e.g. ``{"reserved": -1, "filled": 1}``.
            ttl: Optional EXPIRE refreshed in the same transaction.

        Returns:
            The new value of every adjusted field.
        """
        if not deltas:
            return {}
        full_key = self.key(key)
        async with self.client.pipeline(transaction=True) as pipe:
            for field, delta in deltas.items():
                pipe.hincrby(full_key, field, delta)
            if ttl is not None:
                pipe.expire(full_key, ttl)
            results = await pipe.execute()
        return {field: int(value) for field, value in zip(deltas, results, strict=False)}

    @redis_retry
    async def get_quota(self, bucket_id: str) -> dict[str, int]:
        """Return the bucket's counters (``reserved``, ``filled``), zero when unset."""
        raw = await self.client.hgetall(self.key(keys.quota(bucket_id)))
        counters = {"reserved": 0, "filled": 0}
        counters.update({field: int(value) for field, value in raw.items()})
        return counters

    @redis_retry
    async def increment_window(self, key: str, window_seconds: int) -> int:
        """INCR ``key`` and (re)set its expiry to ``window_seconds`` atomically."""
        full_key = self.key(key)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(full_key)
            pipe.expire(full_key, window_seconds)
            count, _ = await pipe.execute()
        return int(count)

    @redis_retry
    async def get_window_count(self, key: str) -> int:
        raw = await self.client.get(self.key(key))
        return int(raw) if raw is not None else 0

    # ──────────────────────────────────────────────────────────────
    # Idempotency ledger
    # ──────────────────────────────────────────────────────────────

    @redis_retry
    async def claim_event(self, scope: str, event_id: str, ttl: int) -> bool:
        """Record ``event_id`` as applied within ``scope``.

        Returns:
            True if this call made the claim, False if it was already held.
        """
        claimed = await self.client.set(self.key(keys.processed_event(scope, event_id)), "1", nx=True, ex=ttl)
        return bool(claimed)

    @redis_retry
    async def release_event(self, scope: str, event_id: str) -> None:
        await self.client.delete(self.key(keys.processed_event(scope, event_id)))
