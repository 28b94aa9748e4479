"""Payload schemas per event type and the registry that decodes them.

Consumers never read raw payload dicts: they decode through the registry,
which rejects a payload that does not match its type's schema.

Usage:
    payload = payload_registry.decode(envelope)
    assert isinstance(payload, QuotaPayload)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from event_pipeline.core.events.catalogue import EventType, parse_event_type
from event_pipeline.core.events.envelope import EventEnvelope
from event_pipeline.core.exceptions import EventRejectedError, PipelineError


class EventPayload(BaseModel):
    """Base class for payload schemas (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ──────────────────────────────────────────────────────────────
# Sessions
# ──────────────────────────────────────────────────────────────


class SessionPayload(EventPayload):
    session_id: str = Field(min_length=1)
    survey_id: str | None = None


class SessionTerminatedPayload(SessionPayload):
    reason: str | None = None


# ──────────────────────────────────────────────────────────────
# Answers
# ──────────────────────────────────────────────────────────────


class AnswerItem(EventPayload):
    """One answered question; value fields depend on the question type."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="allow",
    )

    question_id: str | None = None
    choices: list[Any] | None = None
    text_value: str | None = None
    number_value: float | None = None

    @property
    def value(self) -> Any:
        """First non-empty answer value, or None."""
        return self.choices or self.text_value or self.number_value


class AnswerUpsertedPayload(EventPayload):
    session_id: str = Field(min_length=1)
    page_id: str = Field(min_length=1)
    answers: list[AnswerItem] = Field(default_factory=list)


# ──────────────────────────────────────────────────────────────
# Quotas
# ──────────────────────────────────────────────────────────────


class QuotaPayload(EventPayload):
    session_id: str = Field(min_length=1)
    bucket_id: str = Field(min_length=1)


# ──────────────────────────────────────────────────────────────
# Collectors
# ──────────────────────────────────────────────────────────────


class CollectorPayload(EventPayload):
    collector_id: str = Field(min_length=1)
    survey_id: str | None = None


class InviteConsumedPayload(CollectorPayload):
    invite_id: str | None = None


_ENVELOPE_ID_FIELDS = ("session_id", "survey_id")


class PayloadRegistry:
    """Maps each event type to its payload schema."""

    def __init__(self) -> None:
        self._schemas: dict[EventType, type[EventPayload]] = {}

    def register(
        self, *event_types: EventType
    ) -> Callable[[type[EventPayload]], type[EventPayload]]:
        """Class decorator / call registering a schema for event types.

        Raises:
            ValueError: If a type is already registered with another schema.
        """

        def _register(schema: type[EventPayload]) -> type[EventPayload]:
            for event_type in event_types:
                existing = self._schemas.get(event_type)
                if existing is not None and existing is not schema:
                    raise ValueError(
                        f"Event type '{event_type}' already registered with {existing.__name__}"
                    )
                self._schemas[event_type] = schema
            return schema

        return _register

    def schema_for(self, event_type: str) -> type[EventPayload] | None:
        member = parse_event_type(event_type)
        return self._schemas.get(member) if member is not None else None

    def is_registered(self, event_type: str) -> bool:
        return self.schema_for(event_type) is not None

    def validate_catalogue(self) -> None:
        """Raise if any catalogue member lacks a schema."""
        missing = sorted(set(EventType) - set(self._schemas))
        if missing:
            raise PipelineError(
                detail="Event types without payload schema",
                type="payload-schema-missing",
                extra={"event_types": missing},
            )

    def validate_payload(self, event_type: str, payload: Mapping[str, Any]) -> EventPayload:
        """Validate a raw payload for ``event_type``.

        Raises:
            EventRejectedError: Unknown type or schema mismatch.
        """
        schema = self.schema_for(event_type)
        if schema is None:
            raise EventRejectedError(
                detail=f"No payload schema for event type: {event_type}",
                event_type=event_type,
            )
        try:
            return schema.model_validate(dict(payload))
        except ValidationError as e:
            raise EventRejectedError(
                detail=f"Payload does not match {schema.__name__}",
                event_type=event_type,
                extra={"errors": e.errors(include_url=False, include_input=False)},
            ) from e

    def decode(self, envelope: EventEnvelope) -> EventPayload:
        """Decode an envelope's payload (fail closed).

        ``sessionId`` and ``surveyId`` missing from the payload are taken
        from the envelope when the schema has those fields.

        Raises:
            EventRejectedError: Unknown type or schema mismatch.
        """
        payload = dict(envelope.payload)
        schema = self.schema_for(envelope.type)
        if schema is not None:
            _fill_envelope_ids(schema, payload, envelope)
        try:
            return self.validate_payload(envelope.type, payload)
        except EventRejectedError as e:
            e.event_id = envelope.event_id
            e.extra["event_id"] = envelope.event_id
            raise


def _fill_envelope_ids(
    schema: type[EventPayload], payload: dict[str, Any], envelope: EventEnvelope
) -> None:
    for field in _ENVELOPE_ID_FIELDS:
        value = getattr(envelope, field)
        if not value or field not in schema.model_fields:
            continue
        alias = to_camel(field)
        if payload.get(alias) or payload.get(field):
            continue
        payload.pop(field, None)
        payload[alias] = value


payload_registry = PayloadRegistry()

payload_registry.register(EventType.SESSION_STARTED, EventType.SESSION_COMPLETED)(SessionPayload)
payload_registry.register(EventType.SESSION_TERMINATED)(SessionTerminatedPayload)
payload_registry.register(EventType.ANSWER_UPSERTED)(AnswerUpsertedPayload)
payload_registry.register(
    EventType.QUOTA_RESERVED, EventType.QUOTA_RELEASED, EventType.QUOTA_FINALIZED
)(QuotaPayload)
payload_registry.register(
    EventType.COLLECTOR_OPENED, EventType.COLLECTOR_PAUSED, EventType.COLLECTOR_CLOSED
)(CollectorPayload)
payload_registry.register(EventType.INVITE_CONSUMED)(InviteConsumedPayload)

payload_registry.validate_catalogue()
