"""Outbox relay: publishes staged events to Kafka.

The relay runs as a background task that:
1. Re-forwards exhausted rows whose dead-letter publish failed earlier
2. Polls the outbox table for due rows, oldest fact first
3. Publishes each row's envelope to its routed topic
4. Marks rows processed, or records the failure and schedules a retry

Rows are handled one at a time and each outcome is committed on its own, so
a failure on one row never affects the others in the batch. No row locks are
taken: exactly one relay may run against a given outbox table.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import inspect

from event_pipeline.core.events.envelope import DeadLetterEnvelope, EventEnvelope
from event_pipeline.core.events.routing import TopicRouter, default_router
from event_pipeline.core.exceptions import (
    PipelineError,
    RetriesExhaustedError,
    UnknownEventTypeError,
)
from event_pipeline.core.settings import get_outbox_settings
from event_pipeline.infra.events.outbox.repository import OutboxMetrics, OutboxRepository
from event_pipeline.infra.logging.context import log_context
from event_pipeline.infra.metrics.prometheus import (
    outbox_batch_size,
    outbox_dead_letter_failures_total,
    outbox_events_dead_lettered_total,
    outbox_events_published_total,
    outbox_poll_duration_seconds,
    outbox_publish_failures_total,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from event_pipeline.core.settings import OutboxSettings
    from event_pipeline.infra.events.outbox.models import OutboxEvent
    from event_pipeline.infra.messaging import BrokerClient

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, PipelineError):
        return exc.detail
    return f"{exc.__class__.__name__}: {exc}" if str(exc) else exc.__class__.__name__


class RelayState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(slots=True)
class PollResult:
    """Outcome counts of one poll."""

    published: int = 0
    failed: int = 0
    dead_lettered: int = 0
    redriven: int = 0

    @property
    def handled(self) -> int:
        return self.published + self.failed + self.redriven


class OutboxRelay:
    """Background publisher for the outbox table.

    Attributes:
        broker: Connected broker client used for every publish.
        settings: Batch size, poll interval, attempt limit and backoff.
        router: Resolves topic and partition key per event type.
    """

    def __init__(
        self,
        broker: BrokerClient,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: OutboxSettings | None = None,
        router: TopicRouter | None = None,
        repository: OutboxRepository | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Initialize the relay.

        Args:
            broker: Broker client (connected before ``start()``).
            session_factory: Async session factory; the process-wide one
                when omitted.
            settings: Outbox settings; loaded from the environment when omitted.
            router: Topic router; the default route table when omitted.
            repository: Outbox queries.
            clock: Source of "now" for every timestamp the relay writes.
        """
        if session_factory is None:
            from event_pipeline.infra.database.session import get_session_factory

            session_factory = get_session_factory()

        self.broker = broker
        self.settings = settings or get_outbox_settings()
        self.router = router or default_router
        self._session_factory = session_factory
        self._repository = repository or OutboxRepository()
        self._clock = clock

        self._state = RelayState.IDLE
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._first_poll_done = asyncio.Event()

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == RelayState.RUNNING

    async def start(self) -> None:
        """Poll once, then keep polling every ``poll_interval_ms`` in the background."""
        if self.is_running:
            logger.warning("Outbox relay already running")
            return

        self._state = RelayState.RUNNING
        self._stop_event = asyncio.Event()
        self._first_poll_done = asyncio.Event()
        logger.info(
            "Outbox relay started",
            extra={
                "batch_size": self.settings.batch_size,
                "poll_interval_ms": self.settings.poll_interval_ms,
                "max_attempts": self.settings.max_attempts,
                "dead_letter_topic": self.settings.dead_letter_topic,
            },
        )
        self._task = asyncio.create_task(self._run_loop(), name="outbox-relay")
        await self._first_poll_done.wait()

    async def stop(self) -> None:
        """Cancel future polls and wait for an in-flight poll to finish.

        The in-flight poll is never cancelled. Past ``graceful_timeout``
        seconds a warning is logged and the wait continues.
        """
        if not self.is_running:
            return

        self._state = RelayState.IDLE
        self._stop_event.set()

        if self._task:
            done, _ = await asyncio.wait({self._task}, timeout=self.settings.graceful_timeout)
            if not done:
                logger.warning(
                    "Outbox poll still in flight, waiting for it to finish",
                    extra={"graceful_timeout": self.settings.graceful_timeout},
                )
                await self._task
            self._task = None

        logger.info("Outbox relay stopped")

    async def wait(self) -> None:
        """Block until the background loop ends."""
        if self._task:
            await asyncio.shield(self._task)

    async def _run_loop(self) -> None:
        try:
            await self._poll_safely()
        finally:
            self._first_poll_done.set()

        while not self._stop_event.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.poll_interval)
            if self._stop_event.is_set():
                break
            await self._poll_safely()

    async def _poll_safely(self) -> None:
        try:
            await self.poll_once()
        except asyncio.CancelledError:
            logger.info("Outbox relay poll cancelled")
            raise
        except Exception:
            logger.exception("Error in outbox relay poll")

    async def poll_once(self) -> PollResult:
        """Run one poll: dead-letter redrive, then one batch of due rows."""
        result = PollResult()
        started = time.perf_counter()
        try:
            async with self._session_factory() as session:
                await self._redrive_dead_letters(session, result)

                events = await self._repository.fetch_pending(
                    session,
                    now=self._clock(),
                    batch_size=self.settings.batch_size,
                    max_attempts=self.settings.max_attempts,
                )
                # Release the read transaction before publishing.
                await session.commit()
                outbox_batch_size.set(len(events))

                for event in events:
                    await self._process_row(session, event, result)
        finally:
            outbox_poll_duration_seconds.observe(time.perf_counter() - started)

        if result.handled:
            logger.info(
                "Outbox batch processed",
                extra={
                    "published": result.published,
                    "failed": result.failed,
                    "dead_lettered": result.dead_lettered,
                    "redriven": result.redriven,
                },
            )
        return result

    async def _reload_if_expired(self, session: AsyncSession, event: OutboxEvent) -> None:
        # A rollback earlier in the batch expires every loaded row.
        if inspect(event).expired_attributes:
            await session.refresh(event)

    async def _process_row(self, session: AsyncSession, event: OutboxEvent, result: PollResult) -> None:
        await self._reload_if_expired(session, event)
        with log_context(event_id=event.id, event_type=event.type):
            try:
                await self._process_event(session, event, result)
            except Exception:
                logger.exception("Could not record outbox row outcome")
                await session.rollback()

    async def _process_event(self, session: AsyncSession, event: OutboxEvent, result: PollResult) -> None:
        topic: str | None = None
        try:
            topic, key = self.router.resolve(event.type, event.payload or {}, event.session_id, event.id)
            envelope = EventEnvelope.from_outbox(event)
            await self.broker.publish(topic, key, envelope)
        except Exception as e:
            await self._handle_failure(session, event, e, topic=topic, result=result)
            return

        await self._repository.mark_processed(session, event.id, now=self._clock())
        await session.commit()
        result.published += 1
        outbox_events_published_total.labels(event.type, topic).inc()
        logger.debug("Event published", extra={"topic": topic, "key": key})

    async def _handle_failure(
        self,
        session: AsyncSession,
        event: OutboxEvent,
        exc: Exception,
        *,
        topic: str | None,
        result: PollResult,
    ) -> None:
        attempts = event.attempts + 1
        error = _describe(exc)
        now = self._clock()
        reason = "unknown_event_type" if isinstance(exc, UnknownEventTypeError) else "publish_failed"
        outbox_publish_failures_total.labels(event.type, reason).inc()
        result.failed += 1

        if attempts >= self.settings.max_attempts:
            await self._repository.record_failure(
                session, event.id, attempts=attempts, error=error, available_at=now
            )
            await session.commit()
            exhausted = RetriesExhaustedError(event.id, attempts, error)
            logger.error(exhausted.detail, extra={"attempts": attempts, "error": error, "topic": topic})
            if await self._forward_to_dead_letter(session, event, attempts=attempts, error=error, original_topic=topic):
                result.dead_lettered += 1
            return

        available_at = now + timedelta(seconds=self.settings.backoff_for(attempts))
        await self._repository.record_failure(
            session, event.id, attempts=attempts, error=error, available_at=available_at
        )
        await session.commit()
        logger.warning(
            "Failed to publish event, scheduled for retry",
            extra={
                "attempts": attempts,
                "max_attempts": self.settings.max_attempts,
                "available_at": available_at.isoformat(),
                "error": error,
            },
        )

    async def _redrive_dead_letters(self, session: AsyncSession, result: PollResult) -> None:
        events = await self._repository.fetch_exhausted(
            session,
            now=self._clock(),
            batch_size=self.settings.batch_size,
            max_attempts=self.settings.max_attempts,
        )
        await session.commit()
        for event in events:
            await self._reload_if_expired(session, event)
            with log_context(event_id=event.id, event_type=event.type):
                try:
                    original_topic: str | None = self.router.topic_for(event.type)
                except UnknownEventTypeError:
                    original_topic = None
                try:
                    forwarded = await self._forward_to_dead_letter(
                        session,
                        event,
                        attempts=event.attempts,
                        error=event.last_error,
                        original_topic=original_topic,
                    )
                except Exception:
                    logger.exception("Could not record dead-letter redrive outcome")
                    await session.rollback()
                    continue
                if forwarded:
                    result.redriven += 1
                    result.dead_lettered += 1

    async def _forward_to_dead_letter(
        self,
        session: AsyncSession,
        event: OutboxEvent,
        *,
        attempts: int,
        error: str | None,
        original_topic: str | None,
    ) -> bool:
        """Publish an exhausted row to the dead-letter topic, then mark it processed.

        A failed forward leaves the row unprocessed and pushes ``available_at``
        out by the largest backoff; the next poll redrives it.
        """
        dead_letter_topic = self.settings.dead_letter_topic
        now = self._clock()
        try:
            envelope = DeadLetterEnvelope.from_envelope(
                EventEnvelope.from_outbox(event),
                attempts=attempts,
                error=error,
                original_topic=original_topic,
                failed_at=now,
            )
            await self.broker.publish(dead_letter_topic, event.session_id or event.id, envelope)
        except Exception as e:
            outbox_dead_letter_failures_total.labels(event.type).inc()
            retry_at = now + timedelta(seconds=self.settings.backoff_for(self.settings.max_attempts))
            logger.exception(
                "Failed to forward event to dead-letter topic",
                extra={"dead_letter_topic": dead_letter_topic, "retry_at": retry_at.isoformat()},
            )
            await self._repository.defer(session, event.id, available_at=retry_at, error=error or _describe(e))
            await session.commit()
            return False

        await self._repository.mark_processed(session, event.id, now=self._clock())
        await session.commit()
        outbox_events_dead_lettered_total.labels(event.type).inc()
        logger.warning(
            "Event forwarded to dead-letter topic",
            extra={"dead_letter_topic": dead_letter_topic, "attempts": attempts, "original_topic": original_topic},
        )
        return True

    async def get_metrics(self) -> OutboxMetrics:
        """Row counts: pending, failed, processed, dead-lettered and total."""
        async with self._session_factory() as session:
            return await self._repository.get_metrics(session, max_attempts=self.settings.max_attempts)

    async def cleanup_processed(self, older_than_days: int | None = None) -> int:
        """Delete rows processed more than ``older_than_days`` ago.

        Returns:
            Number of rows deleted.
        """
        days = older_than_days if older_than_days is not None else self.settings.cleanup_older_than_days
        async with self._session_factory() as session:
            deleted = await self._repository.cleanup_processed(session, now=self._clock(), older_than_days=days)
            await session.commit()
        logger.info("Processed outbox rows cleaned up", extra={"deleted": deleted, "older_than_days": days})
        return deleted


__all__ = ["Clock", "OutboxRelay", "PollResult", "RelayState", "utcnow"]
