"""Custom exception classes for the event pipeline.

Every failure the relay or a consumer can hit maps onto one of these types.
The relay and the consumer loops catch them at the smallest possible scope
(one outbox row, one inbound message) so they never escape a run loop.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base pipeline exception.

    All custom exceptions should inherit from this class.

    Attributes:
        detail: Human-readable error message.
        type: Error type identifier (stable, machine-readable).
        extra: Additional context-specific information about the error.

    Example:
            raise PipelineError(
            detail="Outbox row could not be routed",
            type="routing-error",
            extra={"event_id": "abc123", "event_type": "foo.bar"},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "pipeline-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize pipeline exception.

        Args:
            detail: Human-readable error message.
            type: Error type identifier.
            extra: Additional context about the error.
        """
        self.detail = detail
        self.type = type
        self.extra = extra or {}
        super().__init__(detail)


class UnknownEventTypeError(PipelineError):
    """Raised when an event type has no routing entry.

    This is a permanent mapping failure: retrying will not help, but the
    relay still counts it against the row's attempts instead of crashing.
    """

    def __init__(self, event_type: str) -> None:
        super().__init__(
            detail=f"Unknown event type: {event_type}",
            type="unknown-event-type",
            extra={"event_type": event_type},
        )
        self.event_type = event_type


class PublishError(PipelineError):
    """Raised when the broker rejects or fails to acknowledge a publish.

    Treated as transient by the relay (retried with exponential backoff).
    """

    def __init__(
        self,
        detail: str,
        topic: str,
        key: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            detail=detail,
            type="publish-failed",
            extra={"topic": topic, "key": key, **(extra or {})},
        )
        self.topic = topic
        self.key = key


class RetriesExhaustedError(PipelineError):
    """Raised when an outbox row has used all of its publish attempts."""

    def __init__(self, event_id: str, attempts: int, last_error: str | None = None) -> None:
        super().__init__(
            detail=f"Event {event_id} exhausted {attempts} publish attempts",
            type="retries-exhausted",
            extra={"event_id": event_id, "attempts": attempts, "last_error": last_error},
        )
        self.event_id = event_id
        self.attempts = attempts
        self.last_error = last_error


class EventRejectedError(PipelineError):
    """Raised when an inbound message does not match its schema.

    Consumers fail closed: the message is not applied to any projection.
    """

    def __init__(
        self,
        detail: str,
        event_type: str | None = None,
        event_id: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            detail=detail,
            type="event-rejected",
            extra={"event_type": event_type, "event_id": event_id, **(extra or {})},
        )
        self.event_type = event_type
        self.event_id = event_id


class BrokerConnectionError(PipelineError):
    """Raised when the broker connection cannot be established.

    Attributes:
        transient: False for authentication or configuration failures,
            which are not retried.
    """

    def __init__(self, detail: str, *, transient: bool, extra: dict[str, Any] | None = None) -> None:
        super().__init__(
            detail=detail,
            type="broker-unavailable" if transient else "broker-misconfigured",
            extra=extra,
        )
        self.transient = transient


class StateStoreError(PipelineError):
    """Raised when the state store is used before it is connected."""

    def __init__(self, detail: str, extra: dict[str, Any] | None = None) -> None:
        super().__init__(detail=detail, type="state-store-error", extra=extra)


__all__ = [
    "BrokerConnectionError",
    "EventRejectedError",
    "PipelineError",
    "PublishError",
    "RetriesExhaustedError",
    "StateStoreError",
    "UnknownEventTypeError",
]
