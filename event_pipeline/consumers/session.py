"""Session lifecycle projection.

``(none) -> started -> completed | terminated``. A session record lives
under ``session:{id}`` while the respondent is active; finished sessions
also leave a longer-lived ``session_metrics:{id}`` snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from event_pipeline.core.events.catalogue import EventType, Topic
from event_pipeline.infra.cache import keys

from .base import EventHandler, ProjectionConsumer, isoformat, parse_isoformat

if TYPE_CHECKING:
    from event_pipeline.core.events.envelope import EventEnvelope
    from event_pipeline.core.events.payloads import SessionPayload, SessionTerminatedPayload

logger = logging.getLogger(__name__)

STATUS_STARTED = "started"
STATUS_COMPLETED = "completed"
STATUS_TERMINATED = "terminated"
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_TERMINATED})


class SessionConsumer(ProjectionConsumer):
    group_id = "session-consumer-group"
    topic = Topic.SESSIONS

    def handlers(self) -> Mapping[EventType, EventHandler]:
        return {
            EventType.SESSION_STARTED: self.on_started,
            EventType.SESSION_COMPLETED: self.on_completed,
            EventType.SESSION_TERMINATED: self.on_terminated,
        }

    async def on_started(self, envelope: EventEnvelope, payload: SessionPayload) -> None:
        session_id = payload.session_id
        survey_id = payload.survey_id or envelope.survey_id
        started_at = isoformat(envelope.occurred_at_utc)

        record = {
            "sessionId": session_id,
            "surveyId": survey_id,
            "tenantId": envelope.tenant_id,
            "status": STATUS_STARTED,
            "startTime": started_at,
            "currentPage": None,
            "progress": 0,
        }
        await self.store.set_session(session_id, record, ttl=self.settings.session_ttl)
        await self.store.set_json(
            keys.active_session(session_id),
            {"surveyId": survey_id, "tenantId": envelope.tenant_id, "startTime": started_at},
            ttl=self.settings.active_session_ttl,
        )
        await self.bump_counters(survey_id, envelope.tenant_id, "sessions", STATUS_STARTED)
        logger.info("Session started", extra={"session_id": session_id, "survey_id": survey_id})

    async def on_completed(self, envelope: EventEnvelope, payload: SessionPayload) -> None:
        await self._finish(envelope, payload, STATUS_COMPLETED)

    async def on_terminated(self, envelope: EventEnvelope, payload: SessionTerminatedPayload) -> None:
        await self._finish(envelope, payload, STATUS_TERMINATED, reason=payload.reason)

    async def _finish(
        self,
        envelope: EventEnvelope,
        payload: SessionPayload,
        status: str,
        *,
        reason: str | None = None,
    ) -> None:
        session_id = payload.session_id
        record = await self.store.get_session(session_id)
        if record is None:
            logger.warning(
                "Session record not found, skipping",
                extra={"session_id": session_id, "status": status},
            )
            return
        if record.get("status") in TERMINAL_STATUSES:
            logger.info(
                "Session already finished, skipping",
                extra={"session_id": session_id, "current_status": record.get("status"), "status": status},
            )
            return

        ended = envelope.occurred_at_utc
        started = parse_isoformat(record.get("startTime"))
        duration_ms = max(0, int((ended - started).total_seconds() * 1000)) if started else 0
        end_time = isoformat(ended)
        survey_id = record.get("surveyId") or payload.survey_id or envelope.survey_id
        tenant_id = record.get("tenantId") or envelope.tenant_id

        record.update(status=status, endTime=end_time, duration=duration_ms)
        if status == STATUS_COMPLETED:
            record["progress"] = 100
        else:
            record["terminationReason"] = reason
        await self.store.set_session(session_id, record, ttl=self.settings.session_ttl)

        snapshot: dict[str, Any] = {
            "surveyId": survey_id,
            "tenantId": tenant_id,
            "duration": duration_ms,
            "startTime": record.get("startTime"),
            "endTime": end_time,
            "status": status,
        }
        if status == STATUS_TERMINATED:
            snapshot["reason"] = reason
        await self.store.set_json(
            keys.session_metrics(session_id),
            snapshot,
            ttl=self.settings.session_metrics_ttl,
        )
        await self.store.delete(keys.active_session(session_id))
        await self.bump_counters(survey_id, tenant_id, "sessions", status)

        logger.info(
            "Session finished",
            extra={"session_id": session_id, "status": status, "duration_ms": duration_ms, "reason": reason},
        )
