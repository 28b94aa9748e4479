"""OutboxEvent SQLAlchemy model for the transactional outbox pattern.

Rows are written by the business service in the same transaction as the
domain change that produced them. The relay is the only writer after that:
it bumps ``attempts``, pushes ``available_at`` forward on failure and sets
``processed_at`` exactly once.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from event_pipeline.core.database import Base, UTCDateTime

MAX_ERROR_LENGTH = 1000


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class OutboxEvent(Base):
    """A domain fact waiting to be (or already) published.

    Attributes:
        id: UUID string; becomes the envelope's ``eventId``.
        tenant_id: Owning tenant.
        survey_id: Optional survey the fact belongs to.
        session_id: Optional respondent session; fallback partition key.
        type: Event type tag (e.g. ``quota.reserved``).
        payload: Type-specific JSON object.
        occurred_at: When the fact happened; relay publishes in this order.
        available_at: Earliest time the relay may (re)try the row.
        attempts: Failed publish attempts so far; never decreases.
        processed_at: Set once the row is published or dead-lettered.
        last_error: Most recent failure, truncated.
    """

    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    survey_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=_utcnow)
    available_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=_utcnow)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_outbox_events_pending_scan", "processed_at", "available_at", "occurred_at"),
        Index("ix_outbox_events_tenant_id_survey_id_type", "tenant_id", "survey_id", "type"),
        Index("ix_outbox_events_session_id", "session_id"),
    )

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None

    def __repr__(self) -> str:
        return (
            f"<OutboxEvent(id={self.id}, type={self.type}, attempts={self.attempts}, "
            f"processed={self.is_processed})>"
        )
