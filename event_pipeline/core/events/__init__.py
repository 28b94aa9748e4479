"""Event catalogue, wire envelope, routing and the outbox writer."""

from __future__ import annotations

from .catalogue import EventType, Topic, parse_event_type
from .envelope import ENVELOPE_VERSION, DeadLetterEnvelope, EventEnvelope
from .payloads import (
    AnswerItem,
    AnswerUpsertedPayload,
    CollectorPayload,
    EventPayload,
    InviteConsumedPayload,
    PayloadRegistry,
    QuotaPayload,
    SessionPayload,
    SessionTerminatedPayload,
    payload_registry,
)
from .publisher import OutboxWriter, StagedEvent
from .routing import ROUTES, Route, TopicRouter, default_router, validate_routes

__all__ = [
    "ENVELOPE_VERSION",
    "ROUTES",
    "AnswerItem",
    "AnswerUpsertedPayload",
    "CollectorPayload",
    "DeadLetterEnvelope",
    "EventEnvelope",
    "EventPayload",
    "EventType",
    "InviteConsumedPayload",
    "OutboxWriter",
    "PayloadRegistry",
    "QuotaPayload",
    "Route",
    "SessionPayload",
    "SessionTerminatedPayload",
    "StagedEvent",
    "Topic",
    "TopicRouter",
    "default_router",
    "parse_event_type",
    "payload_registry",
    "validate_routes",
]
