"""Shared machinery of the projection consumers.

A consumer owns one consumer group on one topic and a table of handlers,
one per event type it projects. The table is checked against the route
table when the consumer is built, so a handler for a type that is published
elsewhere fails at startup instead of silently never firing.

Delivery is at-least-once. Each applied event id is claimed in the state
store under ``(group, aggregate id)`` before its handler runs. If the handler
fails before any counter moved, the claim is released so a redelivery can
apply it. Once a counter moved the claim is kept: replaying the event would
count it twice, so the remaining writes are lost instead and logged.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar

from event_pipeline.core.events.catalogue import EventType, Topic
from event_pipeline.core.events.payloads import EventPayload, PayloadRegistry, payload_registry
from event_pipeline.core.events.routing import TopicRouter, default_router
from event_pipeline.core.exceptions import PipelineError, UnknownEventTypeError
from event_pipeline.core.settings import get_projection_settings
from event_pipeline.infra.cache import keys

if TYPE_CHECKING:
    from event_pipeline.core.events.envelope import EventEnvelope
    from event_pipeline.core.settings import ProjectionSettings
    from event_pipeline.infra.cache import StateStore
    from event_pipeline.infra.messaging import BrokerClient, ConsumerGroup

logger = logging.getLogger(__name__)

EventHandler = Callable[["EventEnvelope", Any], Awaitable[None]]

# Set once the current event has moved a counter.
_counters_moved: ContextVar[bool] = ContextVar("counters_moved", default=False)


def mark_counters_moved() -> None:
    _counters_moved.set(True)


def isoformat(moment: datetime) -> str:
    """UTC ISO-8601 with a ``Z`` suffix and millisecond precision."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_isoformat(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        return None
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)


class ProjectionConsumer:
    """Base class: decode, deduplicate and dispatch events to handlers.

    Subclasses set ``group_id`` and ``topic`` and implement ``handlers()``.
    """

    group_id: ClassVar[str]
    topic: ClassVar[Topic]

    def __init__(
        self,
        store: StateStore,
        *,
        settings: ProjectionSettings | None = None,
        router: TopicRouter | None = None,
        registry: PayloadRegistry = payload_registry,
    ) -> None:
        self.store = store
        self.settings = settings or get_projection_settings()
        self.router = router or default_router
        self.registry = registry
        self._handlers = {str(event_type): handler for event_type, handler in self.handlers().items()}
        self._validate_handlers()

    def handlers(self) -> Mapping[EventType, EventHandler]:
        raise NotImplementedError

    @property
    def event_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def _validate_handlers(self) -> None:
        for event_type in self._handlers:
            try:
                topic = self.router.topic_for(event_type)
            except UnknownEventTypeError as e:
                raise PipelineError(
                    detail=f"{type(self).__name__} handles unrouted event type {event_type}",
                    type="consumer-misconfigured",
                    extra={"group_id": self.group_id, "event_type": event_type},
                ) from e
            if topic != self.topic:
                raise PipelineError(
                    detail=f"{type(self).__name__} handles {event_type}, which is published to {topic}",
                    type="consumer-misconfigured",
                    extra={"group_id": self.group_id, "event_type": event_type, "topic": str(topic)},
                )
            if not self.registry.is_registered(event_type):
                raise PipelineError(
                    detail=f"No payload schema registered for {event_type}",
                    type="consumer-misconfigured",
                    extra={"group_id": self.group_id, "event_type": event_type},
                )

    def aggregate_id(self, envelope: EventEnvelope, payload: EventPayload) -> str:
        """Aggregate the event belongs to; scopes the idempotency claim."""
        return envelope.session_id or getattr(payload, "session_id", None) or envelope.event_id

    def register(self, broker: BrokerClient) -> ConsumerGroup:
        """Subscribe this consumer's group to its topic (before the broker connects)."""
        group = broker.create_consumer(self.group_id)
        group.subscribe([self.topic], self.handle)
        return group

    async def handle(self, envelope: EventEnvelope) -> None:
        """Apply one event to the projections.

        Types without a handler are ignored. Payloads that do not match their
        schema raise ``EventRejectedError`` and nothing is written.
        """
        handler = self._handlers.get(envelope.type)
        if handler is None:
            logger.debug("Ignoring event type", extra={"group_id": self.group_id, "event_type": envelope.type})
            return

        payload = self.registry.decode(envelope)
        scope = f"{self.group_id}:{self.aggregate_id(envelope, payload)}"

        if self.settings.idempotency_enabled:
            claimed = await self.store.claim_event(scope, envelope.event_id, self.settings.idempotency_ttl)
            if not claimed:
                logger.info(
                    "Skipping already applied event",
                    extra={"group_id": self.group_id, "event_id": envelope.event_id},
                )
                return

        token = _counters_moved.set(False)
        try:
            await handler(envelope, payload)
        except Exception:
            if self.settings.idempotency_enabled:
                if _counters_moved.get():
                    logger.error(
                        "Event partially applied, keeping idempotency claim",
                        extra={"group_id": self.group_id, "event_id": envelope.event_id, "event_type": envelope.type},
                    )
                else:
                    await self._release(scope, envelope.event_id)
            raise
        finally:
            _counters_moved.reset(token)

    async def _release(self, scope: str, event_id: str) -> None:
        try:
            await self.store.release_event(scope, event_id)
        except Exception:
            logger.exception("Could not release idempotency claim", extra={"scope": scope, "event_id": event_id})

    async def adjust_counters(self, key: str, deltas: Mapping[str, int], ttl: int | None = None) -> dict[str, int]:
        counters = await self.store.adjust_counters(key, deltas, ttl=ttl)
        mark_counters_moved()
        return counters

    async def increment_window(self, key: str, window_seconds: int) -> int:
        count = await self.store.increment_window(key, window_seconds)
        mark_counters_moved()
        return count

    async def bump_counters(self, survey_id: str | None, tenant_id: str | None, *parts: str) -> None:
        """Increment the survey and tenant windowed counters named by ``parts``."""
        window = self.settings.counter_window
        if survey_id:
            await self.increment_window(keys.survey_counter(survey_id, *parts), window)
        if tenant_id:
            await self.increment_window(keys.tenant_counter(tenant_id, *parts), window)


__all__ = ["EventHandler", "ProjectionConsumer", "isoformat", "mark_counters_moved", "parse_isoformat"]
