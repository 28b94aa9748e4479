"""Outbox writer: the producing side of the transactional outbox.

Facts are staged in the outbox table rather than published directly, so
they commit or roll back together with the business change that produced
them. The relay publishes them afterwards.

Usage:
    async with session.begin():
        session.add(answer_row)
        writer = OutboxWriter(session)
        await writer.stage(
            EventType.QUOTA_RESERVED,
            tenant_id="t-1",
            payload=QuotaPayload(session_id="s-1", bucket_id="b-1"),
            survey_id="sv-1",
            session_id="s-1",
        )
    # outbox row and answer row are committed together
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from event_pipeline.core.events.catalogue import EventType
from event_pipeline.core.events.payloads import EventPayload, PayloadRegistry, payload_registry
from event_pipeline.core.exceptions import EventRejectedError, UnknownEventTypeError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from event_pipeline.infra.events.outbox.models import OutboxEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StagedEvent:
    """Input for OutboxWriter.stage_many."""

    type: EventType | str
    tenant_id: str
    payload: EventPayload | Mapping[str, Any]
    survey_id: str | None = None
    session_id: str | None = None
    occurred_at: datetime | None = field(default=None)


class OutboxWriter:
    """Stages outbox rows in the caller's session.

    Payloads are validated against their schema before they are written, so
    a malformed fact fails in the producing transaction instead of reaching
    the consumers.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        registry: PayloadRegistry = payload_registry,
    ) -> None:
        self._session = session
        self._registry = registry
        self._pending_count = 0

    def _build(self, staged: StagedEvent) -> OutboxEvent:
        from event_pipeline.infra.events.outbox.models import OutboxEvent

        event_type = str(staged.type)
        if not self._registry.is_registered(event_type):
            raise UnknownEventTypeError(event_type)

        if isinstance(staged.payload, EventPayload):
            payload = staged.payload.to_wire()
        else:
            payload = self._registry.validate_payload(event_type, staged.payload).to_wire()
            # Keep fields the schema does not declare; consumers ignore them.
            payload = {**dict(staged.payload), **payload}

        if not staged.tenant_id:
            raise EventRejectedError(detail="tenant_id is required", event_type=event_type)

        occurred_at = staged.occurred_at or datetime.now(UTC)
        return OutboxEvent(
            tenant_id=staged.tenant_id,
            survey_id=staged.survey_id,
            session_id=staged.session_id,
            type=event_type,
            payload=payload,
            occurred_at=occurred_at,
            available_at=occurred_at,
            attempts=0,
        )

    async def stage(
        self,
        event_type: EventType | str,
        *,
        tenant_id: str,
        payload: EventPayload | Mapping[str, Any],
        survey_id: str | None = None,
        session_id: str | None = None,
        occurred_at: datetime | None = None,
    ) -> OutboxEvent:
        """Add one outbox row to the current transaction.

        Raises:
            UnknownEventTypeError: If the type is not in the catalogue.
            EventRejectedError: If the payload does not match its schema.
        """
        row = self._build(
            StagedEvent(
                type=event_type,
                tenant_id=tenant_id,
                payload=payload,
                survey_id=survey_id,
                session_id=session_id,
                occurred_at=occurred_at,
            )
        )
        self._session.add(row)
        await self._session.flush([row])
        self._pending_count += 1

        logger.debug(
            "Event staged in outbox",
            extra={"event_id": row.id, "event_type": row.type, "tenant_id": row.tenant_id},
        )
        return row

    async def stage_many(self, events: Iterable[StagedEvent]) -> list[OutboxEvent]:
        """Add several rows to the current transaction; all validated first."""
        rows = [self._build(staged) for staged in events]
        if not rows:
            return rows

        self._session.add_all(rows)
        await self._session.flush(rows)
        self._pending_count += len(rows)

        logger.debug(
            "Batch of events staged in outbox",
            extra={"count": len(rows), "event_types": [row.type for row in rows]},
        )
        return rows

    @property
    def pending_count(self) -> int:
        """Number of rows staged through this writer."""
        return self._pending_count
