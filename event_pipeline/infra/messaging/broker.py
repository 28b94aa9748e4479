"""Kafka broker client using FastStream.

Wraps a ``faststream.kafka.KafkaBroker`` with the lifecycle the relay and
the consumers need:

- ``connect()`` retries transient network failures with exponential backoff
  and fails fast on authentication or configuration errors
- ``publish()`` sends a JSON envelope with a partition key and string headers
- ``create_consumer(group_id)`` hands out ``ConsumerGroup`` handles whose
  subscriptions start with the broker

Consumer handlers never propagate exceptions to FastStream: a failing
message is logged and the group's offset still advances (auto-commit).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from aiokafka.errors import KafkaConnectionError, KafkaTimeoutError
from faststream.kafka import KafkaBroker
from faststream.kafka.annotations import KafkaMessage

from event_pipeline.core.events.envelope import EventEnvelope
from event_pipeline.core.exceptions import (
    BrokerConnectionError,
    EventRejectedError,
    PipelineError,
    PublishError,
)
from event_pipeline.core.settings import get_kafka_settings
from event_pipeline.infra.logging.context import log_context
from event_pipeline.infra.metrics.prometheus import (
    consumer_handler_duration_seconds,
    consumer_messages_total,
)
from event_pipeline.utils.retry import RetryError, RetryStrategy, retry_async

if TYPE_CHECKING:
    from event_pipeline.core.settings import KafkaSettings

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    KafkaConnectionError,
    KafkaTimeoutError,
    TimeoutError,
    OSError,
)

MessageHandler = Callable[[EventEnvelope], Awaitable[None]]


class ConnectionState(StrEnum):
    """Connection states for the Kafka broker.

    Attributes:
        DISCONNECTED: Not connected (initial state, or after disconnect()).
        CONNECTING: connect() is in progress.
        CONNECTED: Producer (and any subscribers) are running.
        FAILED: The last connect() gave up.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


def _error_text(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class BrokerClient:
    """Connection lifecycle, publishing and consumer groups on one KafkaBroker."""

    def __init__(
        self,
        settings: KafkaSettings | None = None,
        *,
        broker: KafkaBroker | None = None,
        dead_letter_topic: str | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Kafka settings; loaded from the environment when omitted.
            broker: Pre-built broker (tests pass a fake here).
            dead_letter_topic: Where consumer groups forward rejected messages.
        """
        self.settings = settings or get_kafka_settings()
        self.dead_letter_topic = dead_letter_topic
        self._broker = broker or KafkaBroker(
            self.settings.bootstrap_servers,
            client_id=self.settings.client_id,
            graceful_timeout=self.settings.graceful_timeout,
            logger=logger,
        )
        self._state = ConnectionState.DISCONNECTED
        self._groups: dict[str, ConsumerGroup] = {}
        self._last_error: str | None = None

    @property
    def broker(self) -> KafkaBroker:
        return self._broker

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    async def connect(self) -> None:
        """Start the producer and every registered subscriber.

        Transient failures are retried ``retry_attempts`` times with
        exponential backoff. Anything else is treated as an authentication or
        configuration problem and raised on the first failure.

        Raises:
            BrokerConnectionError: ``transient`` tells the two cases apart.
        """
        if self.is_connected:
            logger.debug("Kafka broker already connected")
            return

        self._state = ConnectionState.CONNECTING
        logger.info(
            "Connecting to Kafka",
            extra={
                "brokers": self.settings.bootstrap_servers,
                "client_id": self.settings.client_id,
                "consumer_groups": sorted(self._groups),
            },
        )

        strategy = RetryStrategy(
            max_attempts=self.settings.retry_attempts,
            initial_delay=self.settings.retry_backoff,
            max_delay=30.0,
            exceptions=TRANSIENT_ERRORS,
        )
        try:
            await retry_async(self._start_once, strategy=strategy)
        except RetryError as e:
            self._state = ConnectionState.FAILED
            self._last_error = _error_text(e.last_exception)
            raise BrokerConnectionError(
                f"Kafka unavailable after {e.attempts} attempts: {self._last_error}",
                transient=True,
                extra={"brokers": self.settings.bootstrap_servers},
            ) from e
        except Exception as e:
            self._state = ConnectionState.FAILED
            self._last_error = _error_text(e)
            logger.error(
                "Kafka authentication or configuration failure, not retrying",
                extra={"brokers": self.settings.bootstrap_servers, "error": self._last_error},
            )
            raise BrokerConnectionError(
                f"Kafka connection rejected: {self._last_error}",
                transient=False,
                extra={"brokers": self.settings.bootstrap_servers},
            ) from e

        self._state = ConnectionState.CONNECTED
        self._last_error = None
        logger.info("Kafka broker connected", extra={"brokers": self.settings.bootstrap_servers})

    async def _start_once(self) -> None:
        try:
            await asyncio.wait_for(self._broker.start(), timeout=self.settings.connection_timeout)
        except BaseException:
            await self._close_broker()
            raise

    async def _close_broker(self) -> None:
        try:
            await self._broker.close()
        except Exception as e:
            logger.warning("Error closing Kafka broker", extra={"error": _error_text(e)})

    async def disconnect(self) -> None:
        """Stop consumers and the producer; errors are logged, not raised."""
        if self._state == ConnectionState.DISCONNECTED:
            return
        logger.info("Disconnecting from Kafka")
        await self._close_broker()
        self._state = ConnectionState.DISCONNECTED

    async def publish(self, topic: str, key: str, envelope: EventEnvelope) -> None:
        """Publish an envelope and wait for the broker acknowledgement.

        Raises:
            PublishError: Not connected, timed out or rejected by the broker.
        """
        await self._send(
            topic,
            envelope.to_json().encode("utf-8"),
            key=key,
            headers=envelope.headers(),
        )
        logger.debug(
            "Event published",
            extra={"topic": topic, "key": key, "event_id": envelope.event_id, "event_type": envelope.type},
        )

    async def publish_raw(
        self,
        topic: str,
        body: bytes,
        *,
        key: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Publish bytes as-is (dead-lettering messages that never parsed).

        Raises:
            PublishError: Not connected, timed out or rejected by the broker.
        """
        await self._send(topic, body, key=key, headers=headers or {})

    async def _send(self, topic: str, body: bytes, *, key: str | None, headers: dict[str, str]) -> None:
        if not self.is_connected:
            raise PublishError("Kafka broker is not connected", topic=topic, key=key)
        try:
            await asyncio.wait_for(
                self._broker.publish(
                    body,
                    topic=topic,
                    key=key.encode("utf-8") if key is not None else None,
                    headers=headers,
                ),
                timeout=self.settings.publish_timeout,
            )
        except TimeoutError as e:
            raise PublishError(
                f"Publish not acknowledged within {self.settings.publish_timeout}s",
                topic=topic,
                key=key,
            ) from e
        except Exception as e:
            raise PublishError(_error_text(e), topic=topic, key=key) from e

    def create_consumer(self, group_id: str) -> ConsumerGroup:
        """Return the ConsumerGroup handle for ``group_id`` (one per group)."""
        group = self._groups.get(group_id)
        if group is None:
            group = ConsumerGroup(self, group_id)
            self._groups[group_id] = group
        return group

    async def check_health(self) -> dict[str, Any]:
        """Report connection state.

        Returns:
            Dictionary with ``status`` ("healthy", "unhealthy", "unavailable"),
            ``state``, ``is_connected`` and an optional ``reason``.
        """
        health: dict[str, Any] = {
            "state": self._state.value,
            "is_connected": self.is_connected,
            "brokers": self.settings.bootstrap_servers,
            "consumer_groups": sorted(self._groups),
        }
        if not self.is_connected:
            health["status"] = "unavailable"
            if self._last_error:
                health["reason"] = self._last_error
            return health

        try:
            reachable = await self._broker.ping(timeout=self.settings.connection_timeout)
        except Exception as e:
            reachable = False
            health["reason"] = _error_text(e)
        health["status"] = "healthy" if reachable else "unhealthy"
        return health


class ConsumerGroup:
    """Subscriptions that share one Kafka consumer group."""

    def __init__(self, client: BrokerClient, group_id: str) -> None:
        self._client = client
        self.group_id = group_id
        self.topics: list[str] = []

    def subscribe(self, topics: Iterable[str], handler: MessageHandler) -> None:
        """Register ``handler`` for every message on ``topics``.

        Must be called before ``BrokerClient.connect()``; the subscriber
        starts with the broker.

        Raises:
            PipelineError: If the client is already connected.
        """
        topic_list = [str(topic) for topic in topics]
        if self._client.is_connected:
            raise PipelineError(
                detail="Subscribe before connecting the broker",
                type="late-subscription",
                extra={"group_id": self.group_id, "topics": topic_list},
            )

        async def on_message(body: Any, msg: KafkaMessage) -> None:
            raw = msg.raw_message
            await self.dispatch(
                msg.body,
                handler,
                topic=getattr(raw, "topic", None),
                key=getattr(raw, "key", None),
            )

        subscriber = self._client.broker.subscriber(
            *topic_list,
            group_id=self.group_id,
            auto_commit=True,
            auto_offset_reset=self._client.settings.auto_offset_reset,
        )
        subscriber(on_message)
        self.topics.extend(topic_list)
        logger.info(
            "Consumer group subscribed",
            extra={"group_id": self.group_id, "topics": topic_list},
        )

    async def dispatch(
        self,
        body: bytes | str,
        handler: MessageHandler,
        *,
        topic: str | None = None,
        key: bytes | str | None = None,
    ) -> None:
        """Decode one message and run ``handler`` on it; never raises."""
        try:
            envelope = EventEnvelope.from_json(body)
        except EventRejectedError as e:
            consumer_messages_total.labels(self.group_id, "unknown", "rejected").inc()
            logger.warning(
                "Rejected malformed message",
                extra={"group_id": self.group_id, "topic": topic, "error": e.detail},
            )
            await self._forward_rejected(body, e, topic=topic, key=key, event_type=None)
            return

        started = time.perf_counter()
        with log_context(
            event_id=envelope.event_id,
            event_type=envelope.type,
            consumer_group=self.group_id,
        ):
            try:
                await handler(envelope)
            except EventRejectedError as e:
                consumer_messages_total.labels(self.group_id, envelope.type, "rejected").inc()
                logger.warning(
                    "Rejected event",
                    extra={"group_id": self.group_id, "topic": topic, "error": e.detail},
                )
                await self._forward_rejected(body, e, topic=topic, key=key, event_type=envelope.type)
            except Exception:
                consumer_messages_total.labels(self.group_id, envelope.type, "failed").inc()
                logger.exception(
                    "Error processing event",
                    extra={"group_id": self.group_id, "topic": topic},
                )
            else:
                consumer_messages_total.labels(self.group_id, envelope.type, "processed").inc()
            finally:
                consumer_handler_duration_seconds.labels(self.group_id, envelope.type).observe(
                    time.perf_counter() - started
                )

    async def _forward_rejected(
        self,
        body: bytes | str,
        error: EventRejectedError,
        *,
        topic: str | None,
        key: bytes | str | None,
        event_type: str | None,
    ) -> None:
        dead_letter_topic = self._client.dead_letter_topic
        if not dead_letter_topic:
            return

        raw = body.encode("utf-8") if isinstance(body, str) else body
        key_text = key.decode("utf-8", errors="replace") if isinstance(key, bytes) else key
        headers = {
            "error": error.detail,
            "errorType": error.type,
            "consumerGroup": self.group_id,
        }
        if topic:
            headers["originalTopic"] = topic
        if event_type:
            headers["eventType"] = event_type
        try:
            await self._client.publish_raw(dead_letter_topic, raw, key=key_text, headers=headers)
        except PublishError:
            logger.exception(
                "Could not forward rejected message to dead-letter topic",
                extra={"group_id": self.group_id, "dead_letter_topic": dead_letter_topic},
            )
