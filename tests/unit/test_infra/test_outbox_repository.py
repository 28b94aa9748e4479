"""Tests for OutboxRepository queries and guarded updates."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from event_pipeline.infra.events.outbox import OutboxEvent, OutboxRepository

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def make_row(
    event_id: str,
    *,
    occurred_at: datetime = NOW,
    available_at: datetime | None = None,
    attempts: int = 0,
    processed_at: datetime | None = None,
    event_type: str = "session.started",
) -> OutboxEvent:
    return OutboxEvent(
        id=event_id,
        tenant_id="t1",
        session_id="s1",
        type=event_type,
        payload={"sessionId": "s1"},
        occurred_at=occurred_at,
        available_at=available_at or occurred_at,
        attempts=attempts,
        processed_at=processed_at,
    )


@pytest.fixture
def repo() -> OutboxRepository:
    return OutboxRepository()


class TestFetchPending:
    """Test suite for fetch_pending."""

    async def test_orders_by_occurred_at_and_filters(self, db_session, repo):
        """Test that only due, unprocessed, retryable rows are returned oldest first."""
        db_session.add_all(
            [
                make_row("late", occurred_at=NOW - timedelta(minutes=1)),
                make_row("early", occurred_at=NOW - timedelta(minutes=5)),
                make_row("future", available_at=NOW + timedelta(seconds=30)),
                make_row("done", processed_at=NOW),
                make_row("exhausted", attempts=5),
            ]
        )
        await db_session.commit()

        rows = await repo.fetch_pending(db_session, now=NOW, batch_size=10, max_attempts=5)

        assert [row.id for row in rows] == ["early", "late"]

    async def test_respects_batch_size(self, db_session, repo):
        """Test that at most batch_size rows are returned."""
        db_session.add_all([make_row(f"e{i}", occurred_at=NOW - timedelta(seconds=i)) for i in range(5)])
        await db_session.commit()

        rows = await repo.fetch_pending(db_session, now=NOW, batch_size=2, max_attempts=5)

        assert [row.id for row in rows] == ["e4", "e3"]

    def test_pending_scan_index_covers_order(self):
        """Test that the pending-scan index ends with the ordering column."""
        [index] = [ix for ix in OutboxEvent.__table__.indexes if ix.name == "ix_outbox_events_pending_scan"]

        assert [column.name for column in index.columns] == ["processed_at", "available_at", "occurred_at"]


class TestUpdates:
    """Test suite for the guarded UPDATE methods."""

    async def test_mark_processed_only_once(self, db_session, repo):
        """Test that processed_at is set once and never overwritten."""
        db_session.add(make_row("e1"))
        await db_session.commit()

        assert await repo.mark_processed(db_session, "e1", now=NOW) is True
        assert await repo.mark_processed(db_session, "e1", now=NOW + timedelta(hours=1)) is False
        await db_session.commit()

        row = await repo.get(db_session, "e1")
        await db_session.refresh(row)
        assert row.processed_at == NOW

    async def test_record_failure(self, db_session, repo):
        """Test that a failure stores attempts, error and next availability."""
        db_session.add(make_row("e1"))
        await db_session.commit()
        retry_at = NOW + timedelta(seconds=5)

        updated = await repo.record_failure(db_session, "e1", attempts=1, error="boom", available_at=retry_at)
        await db_session.commit()

        row = await repo.get(db_session, "e1")
        await db_session.refresh(row)
        assert updated is True
        assert row.attempts == 1
        assert row.last_error == "boom"
        assert row.available_at == retry_at

    async def test_record_failure_truncates_error(self, db_session, repo):
        """Test that long errors are truncated to the column limit."""
        db_session.add(make_row("e1"))
        await db_session.commit()

        await repo.record_failure(db_session, "e1", attempts=1, error="x" * 5000, available_at=NOW)
        await db_session.commit()

        row = await repo.get(db_session, "e1")
        await db_session.refresh(row)
        assert len(row.last_error) == 1000

    async def test_record_failure_ignores_processed_rows(self, db_session, repo):
        """Test that processed rows are terminal."""
        db_session.add(make_row("e1", processed_at=NOW))
        await db_session.commit()

        updated = await repo.record_failure(db_session, "e1", attempts=1, error="late", available_at=NOW)

        assert updated is False

    async def test_defer_keeps_attempts(self, db_session, repo):
        """Test that defer moves available_at without counting an attempt."""
        db_session.add(make_row("e1", attempts=5))
        await db_session.commit()
        later = NOW + timedelta(minutes=10)

        await repo.defer(db_session, "e1", available_at=later, error="dlq down")
        await db_session.commit()

        row = await repo.get(db_session, "e1")
        await db_session.refresh(row)
        assert row.attempts == 5
        assert row.available_at == later


class TestMaintenance:
    """Test suite for metrics and cleanup."""

    async def test_get_metrics(self, db_session, repo):
        """Test counts by relay state."""
        db_session.add_all(
            [
                make_row("pending-1"),
                make_row("pending-2", attempts=2),
                make_row("failed", attempts=5),
                make_row("published", processed_at=NOW),
                make_row("dead", attempts=5, processed_at=NOW),
            ]
        )
        await db_session.commit()

        metrics = await repo.get_metrics(db_session, max_attempts=5)

        assert metrics.as_dict() == {
            "pending": 2,
            "failed": 1,
            "processed": 2,
            "dead_lettered": 1,
            "total": 5,
        }

    async def test_get_metrics_empty_table(self, db_session, repo):
        """Test that an empty table reports zeros."""
        metrics = await repo.get_metrics(db_session, max_attempts=5)

        assert metrics.total == 0
        assert metrics.pending == 0

    async def test_cleanup_processed(self, db_session, repo):
        """Test that only rows processed before the cut-off are deleted."""
        db_session.add_all(
            [
                make_row("old", processed_at=NOW - timedelta(days=10)),
                make_row("recent", processed_at=NOW - timedelta(days=1)),
                make_row("pending"),
            ]
        )
        await db_session.commit()

        deleted = await repo.cleanup_processed(db_session, now=NOW, older_than_days=7)
        await db_session.commit()

        assert deleted == 1
        db_session.expunge_all()
        assert await repo.get(db_session, "old") is None
        assert await repo.get(db_session, "recent") is not None
