"""Closed catalogue of event types and topics.

Both enums are exhaustive: adding an event type without a route or a
payload schema makes the package fail at import.
"""

from __future__ import annotations

from enum import StrEnum


class EventType(StrEnum):
    """Domain facts recorded in the outbox."""

    SESSION_STARTED = "session.started"
    SESSION_COMPLETED = "session.completed"
    SESSION_TERMINATED = "session.terminated"
    ANSWER_UPSERTED = "answer.upserted"
    QUOTA_RESERVED = "quota.reserved"
    QUOTA_RELEASED = "quota.released"
    QUOTA_FINALIZED = "quota.finalized"
    COLLECTOR_OPENED = "collector.opened"
    COLLECTOR_PAUSED = "collector.paused"
    COLLECTOR_CLOSED = "collector.closed"
    INVITE_CONSUMED = "invite.consumed"


class Topic(StrEnum):
    """Broker topics the relay publishes to."""

    SESSIONS = "runtime.sessions"
    ANSWERS = "runtime.answers"
    QUOTA = "runtime.quota"
    COLLECTORS = "collectors.events"


def parse_event_type(value: str) -> EventType | None:
    """Return the catalogue member for ``value``, or None if it is not one."""
    try:
        return EventType(value)
    except ValueError:
        return None
