"""Repository for OutboxEvent queries used by the relay.

Every state-changing UPDATE is guarded by ``processed_at IS NULL``: once a
row is processed it is terminal and the relay never touches it again.
Methods take ``now`` explicitly so the relay's clock drives every
timestamp.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import and_, case, delete, func, select, update

from event_pipeline.infra.events.outbox.models import MAX_ERROR_LENGTH, OutboxEvent

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True, slots=True)
class OutboxMetrics:
    """Row counts by relay state."""

    pending: int
    failed: int
    processed: int
    dead_lettered: int
    total: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _count_where(condition: ColumnElement[bool]) -> ColumnElement[int]:
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _truncate(error: str | None) -> str | None:
    if error is None:
        return None
    return error[:MAX_ERROR_LENGTH]


class OutboxRepository:
    """Queries and guarded updates against the outbox table."""

    async def add(self, session: AsyncSession, event: OutboxEvent) -> OutboxEvent:
        """Stage a row in the caller's transaction (no commit)."""
        session.add(event)
        return event

    async def get(self, session: AsyncSession, event_id: str) -> OutboxEvent | None:
        return await session.get(OutboxEvent, event_id)

    async def fetch_pending(
        self,
        session: AsyncSession,
        *,
        now: datetime,
        batch_size: int,
        max_attempts: int,
    ) -> Sequence[OutboxEvent]:
        """Rows due for a publish attempt, oldest fact first.

        Returns rows with ``processed_at IS NULL``, ``available_at <= now``
        and ``attempts < max_attempts``, ordered by ``occurred_at``.
        """
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.processed_at.is_(None),
                OutboxEvent.available_at <= now,
                OutboxEvent.attempts < max_attempts,
            )
            .order_by(OutboxEvent.occurred_at.asc(), OutboxEvent.id.asc())
            .limit(batch_size)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def fetch_exhausted(
        self,
        session: AsyncSession,
        *,
        now: datetime,
        batch_size: int,
        max_attempts: int,
    ) -> Sequence[OutboxEvent]:
        """Exhausted rows whose dead-letter forward has not succeeded yet."""
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.processed_at.is_(None),
                OutboxEvent.available_at <= now,
                OutboxEvent.attempts >= max_attempts,
            )
            .order_by(OutboxEvent.occurred_at.asc(), OutboxEvent.id.asc())
            .limit(batch_size)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def mark_processed(self, session: AsyncSession, event_id: str, *, now: datetime) -> bool:
        """Set ``processed_at``; False if the row was already processed or is gone."""
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id, OutboxEvent.processed_at.is_(None))
            .values(processed_at=now)
        )
        result = await session.execute(stmt)
        return result.rowcount > 0

    async def record_failure(
        self,
        session: AsyncSession,
        event_id: str,
        *,
        attempts: int,
        error: str | None,
        available_at: datetime,
    ) -> bool:
        """Store a failed attempt: new attempt count, error and next availability."""
        stmt = (
            update(OutboxEvent)
            .where(
                OutboxEvent.id == event_id,
                OutboxEvent.processed_at.is_(None),
                OutboxEvent.attempts < attempts,
            )
            .values(attempts=attempts, last_error=_truncate(error), available_at=available_at)
        )
        result = await session.execute(stmt)
        return result.rowcount > 0

    async def defer(
        self,
        session: AsyncSession,
        event_id: str,
        *,
        available_at: datetime,
        error: str | None,
    ) -> bool:
        """Push ``available_at`` forward without counting an attempt."""
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id, OutboxEvent.processed_at.is_(None))
            .values(available_at=available_at, last_error=_truncate(error))
        )
        result = await session.execute(stmt)
        return result.rowcount > 0

    async def cleanup_processed(
        self,
        session: AsyncSession,
        *,
        now: datetime,
        older_than_days: int = 7,
    ) -> int:
        """Delete rows processed more than ``older_than_days`` ago.

        Returns:
            Number of rows deleted.
        """
        cutoff = now - timedelta(days=older_than_days)
        stmt = (
            delete(OutboxEvent)
            .where(OutboxEvent.processed_at.is_not(None), OutboxEvent.processed_at < cutoff)
            .returning(OutboxEvent.id)
        )
        result = await session.execute(stmt)
        return len(result.scalars().all())

    async def get_metrics(self, session: AsyncSession, *, max_attempts: int) -> OutboxMetrics:
        """Count rows by state in a single query."""
        unprocessed = OutboxEvent.processed_at.is_(None)
        is_processed = OutboxEvent.processed_at.is_not(None)
        exhausted = OutboxEvent.attempts >= max_attempts
        retryable = OutboxEvent.attempts < max_attempts

        stmt = select(
            _count_where(and_(unprocessed, retryable)),
            _count_where(and_(unprocessed, exhausted)),
            _count_where(is_processed),
            _count_where(and_(is_processed, exhausted)),
            func.count(),
        ).select_from(OutboxEvent)
        row = (await session.execute(stmt)).one()
        pending, failed, processed, dead_lettered, total = (int(value or 0) for value in row)
        return OutboxMetrics(
            pending=pending,
            failed=failed,
            processed=processed,
            dead_lettered=dead_lettered,
            total=total,
        )


__all__ = ["OutboxMetrics", "OutboxRepository"]
