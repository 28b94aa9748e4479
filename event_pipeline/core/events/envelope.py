"""Canonical wire records for published events.

An envelope is built fresh from an outbox row for every publish attempt and
serialized as camelCase JSON. Headers duplicate the fields consumers filter
on so they can route without parsing the body.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from event_pipeline.core.exceptions import EventRejectedError

if TYPE_CHECKING:
    from event_pipeline.infra.events.outbox.models import OutboxEvent

ENVELOPE_VERSION = 1


class EventEnvelope(BaseModel):
    """Versioned envelope around one domain fact.

    Attributes:
        event_id: Id of the outbox row the envelope was built from.
        type: Event type tag (e.g. ``session.started``).
        version: Envelope schema version, currently always 1.
        occurred_at: When the fact happened in the business transaction.
        tenant_id: Owning tenant.
        survey_id: Survey the fact belongs to, if any.
        session_id: Respondent session the fact belongs to, if any.
        payload: Type-specific body, decoded by the consumers.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    event_id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    version: int = ENVELOPE_VERSION
    occurred_at: datetime
    tenant_id: str = Field(min_length=1)
    survey_id: str | None = None
    session_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_outbox(cls, event: OutboxEvent) -> EventEnvelope:
        """Build the envelope for an outbox row."""
        return cls(
            event_id=event.id,
            type=event.type,
            version=ENVELOPE_VERSION,
            occurred_at=event.occurred_at,
            tenant_id=event.tenant_id,
            survey_id=event.survey_id,
            session_id=event.session_id,
            payload=dict(event.payload or {}),
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: str | bytes) -> EventEnvelope:
        """Parse a JSON envelope.

        Raises:
            EventRejectedError: If the body is not a valid envelope.
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise EventRejectedError(
                detail="Malformed event envelope",
                extra={"errors": e.errors(include_url=False, include_input=False)},
            ) from e

    def headers(self) -> dict[str, str]:
        """Broker headers; every value is a string."""
        return {
            "eventType": self.type,
            "tenantId": self.tenant_id,
            "version": str(self.version),
        }

    @property
    def occurred_at_utc(self) -> datetime:
        """``occurred_at`` as an aware UTC datetime (naive values are taken as UTC)."""
        if self.occurred_at.tzinfo is None:
            return self.occurred_at.replace(tzinfo=UTC)
        return self.occurred_at.astimezone(UTC)


class DeadLetterEnvelope(EventEnvelope):
    """Envelope forwarded to the dead-letter topic.

    ``original_topic`` is None when the event type could not be routed.
    """

    attempts: int = Field(ge=0)
    error: str | None = None
    original_topic: str | None = None
    failed_at: datetime

    @classmethod
    def from_envelope(
        cls,
        envelope: EventEnvelope,
        *,
        attempts: int,
        error: str | None,
        original_topic: str | None,
        failed_at: datetime,
    ) -> DeadLetterEnvelope:
        return cls(
            **envelope.model_dump(),
            attempts=attempts,
            error=error,
            original_topic=original_topic,
            failed_at=failed_at,
        )

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        headers["attempts"] = str(self.attempts)
        if self.original_topic:
            headers["originalTopic"] = self.original_topic
        return headers
