"""Static routing from event type to topic and partition key.

Every event of one aggregate (a survey session, a quota bucket, a
collector) is keyed identically, so the broker keeps them on one partition
and consumers see them in order.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from event_pipeline.core.events.catalogue import EventType, Topic
from event_pipeline.core.exceptions import PipelineError, UnknownEventTypeError


@dataclass(frozen=True, slots=True)
class Route:
    """Where an event type goes and which payload field keys it."""

    topic: Topic
    key_field: str


ROUTES: Mapping[EventType, Route] = {
    EventType.SESSION_STARTED: Route(Topic.SESSIONS, "sessionId"),
    EventType.SESSION_COMPLETED: Route(Topic.SESSIONS, "sessionId"),
    EventType.SESSION_TERMINATED: Route(Topic.SESSIONS, "sessionId"),
    EventType.ANSWER_UPSERTED: Route(Topic.ANSWERS, "sessionId"),
    EventType.QUOTA_RESERVED: Route(Topic.QUOTA, "bucketId"),
    EventType.QUOTA_RELEASED: Route(Topic.QUOTA, "bucketId"),
    EventType.QUOTA_FINALIZED: Route(Topic.QUOTA, "bucketId"),
    EventType.COLLECTOR_OPENED: Route(Topic.COLLECTORS, "collectorId"),
    EventType.COLLECTOR_PAUSED: Route(Topic.COLLECTORS, "collectorId"),
    EventType.COLLECTOR_CLOSED: Route(Topic.COLLECTORS, "collectorId"),
    EventType.INVITE_CONSUMED: Route(Topic.COLLECTORS, "collectorId"),
}


def validate_routes(routes: Mapping[Any, Route]) -> None:
    """Check that a route table covers the catalogue exactly.

    Raises:
        PipelineError: If an event type is unrouted, a key is not a catalogue
            member, or a route targets a topic outside the catalogue.
    """
    missing = sorted(set(EventType) - set(routes))
    unknown = sorted(str(key) for key in routes if not isinstance(key, EventType))
    bad_topics = sorted(
        str(event_type) for event_type, route in routes.items() if not isinstance(route.topic, Topic)
    )
    if missing or unknown or bad_topics:
        raise PipelineError(
            detail="Route table does not match the event catalogue",
            type="routing-misconfigured",
            extra={"unrouted": missing, "unknown_types": unknown, "invalid_topics": bad_topics},
        )


validate_routes(ROUTES)


class TopicRouter:
    """Resolves topics and partition keys for outbox events."""

    def __init__(self, routes: Mapping[EventType, Route] = ROUTES) -> None:
        validate_routes(routes)
        self._routes = dict(routes)
        self._by_value = {str(event_type): route for event_type, route in routes.items()}

    def route(self, event_type: str) -> Route:
        """Return the route for an event type.

        Raises:
            UnknownEventTypeError: If the type has no route.
        """
        try:
            return self._by_value[event_type]
        except KeyError:
            raise UnknownEventTypeError(event_type) from None

    def topic_for(self, event_type: str) -> Topic:
        return self.route(event_type).topic

    def event_types_for(self, topic: Topic | str) -> frozenset[EventType]:
        """All event types routed to ``topic``."""
        return frozenset(t for t, route in self._routes.items() if route.topic == topic)

    @property
    def topics(self) -> frozenset[Topic]:
        return frozenset(route.topic for route in self._routes.values())

    @staticmethod
    def derive_key(
        route: Route,
        payload: Mapping[str, Any],
        session_id: str | None,
        event_id: str,
    ) -> str:
        """Partition key: payload[key_field], else session id, else the event id.

        Empty strings and nulls fall through to the next candidate.
        """
        value = payload.get(route.key_field)
        if value is not None and str(value) != "":
            return str(value)
        if session_id:
            return session_id
        return event_id

    def resolve(
        self,
        event_type: str,
        payload: Mapping[str, Any],
        session_id: str | None,
        event_id: str,
    ) -> tuple[Topic, str]:
        """Topic and key for one event.

        Raises:
            UnknownEventTypeError: If the type has no route.
        """
        route = self.route(event_type)
        return route.topic, self.derive_key(route, payload, session_id, event_id)


default_router = TopicRouter()
