"""Answer projection and real-time survey analytics."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from event_pipeline.core.events.catalogue import EventType, Topic
from event_pipeline.infra.cache import keys

from .base import EventHandler, ProjectionConsumer, isoformat, mark_counters_moved
from .session import TERMINAL_STATUSES

if TYPE_CHECKING:
    from event_pipeline.core.events.envelope import EventEnvelope
    from event_pipeline.core.events.payloads import AnswerUpsertedPayload

logger = logging.getLogger(__name__)


class AnswerConsumer(ProjectionConsumer):
    group_id = "answer-consumer-group"
    topic = Topic.ANSWERS

    def handlers(self) -> Mapping[EventType, EventHandler]:
        return {EventType.ANSWER_UPSERTED: self.on_upserted}

    def estimate_progress(self, total_answers: int) -> int:
        """Percent complete, assuming ``expected_answers`` answers finish a survey."""
        return min(round(total_answers / self.settings.expected_answers * 100), 100)

    async def on_upserted(self, envelope: EventEnvelope, payload: AnswerUpsertedPayload) -> None:
        session_id = payload.session_id
        page_id = payload.page_id
        survey_id = envelope.survey_id
        tenant_id = envelope.tenant_id
        timestamp = isoformat(envelope.occurred_at_utc)
        answers = [answer.to_wire() for answer in payload.answers]

        await self.store.set_json(
            keys.page_answers(session_id, page_id),
            {
                "sessionId": session_id,
                "pageId": page_id,
                "answers": answers,
                "timestamp": timestamp,
                "surveyId": survey_id,
                "tenantId": tenant_id,
            },
            ttl=self.settings.answers_ttl,
        )

        record = await self._update_session(session_id, page_id, len(answers), timestamp)

        await self.bump_counters(survey_id, tenant_id, "answers", "total")
        if survey_id:
            window = self.settings.counter_window
            await self.increment_window(keys.survey_counter(survey_id, "page", page_id, "answers"), window)
            for answer in payload.answers:
                if answer.question_id:
                    await self.increment_window(
                        keys.survey_counter(survey_id, "question", answer.question_id, "responses"),
                        window,
                    )

        for answer in payload.answers:
            if answer.question_id and answer.value is not None:
                await self.store.set_json(
                    keys.question_response(answer.question_id, session_id),
                    {
                        "sessionId": session_id,
                        "questionId": answer.question_id,
                        "value": answer.value,
                        "timestamp": timestamp,
                    },
                    ttl=self.settings.answers_ttl,
                )

        if survey_id:
            await self.store.set_json(
                keys.realtime("activity", survey_id),
                {
                    "type": "answer_submitted",
                    "sessionId": session_id,
                    "pageId": page_id,
                    "answerCount": len(answers),
                    "timestamp": timestamp,
                    "surveyId": survey_id,
                    "tenantId": tenant_id,
                },
                ttl=self.settings.realtime_activity_ttl,
            )
            await self.increment_window(
                keys.realtime("participants", survey_id),
                self.settings.realtime_activity_ttl,
            )

        if record is not None:
            await self.store.set_json(
                keys.realtime("progress", session_id),
                {
                    "sessionId": session_id,
                    "surveyId": record.get("surveyId") or survey_id,
                    "progress": record.get("progress", 0),
                    "currentPage": page_id,
                    "timestamp": timestamp,
                },
                ttl=self.settings.progress_ttl,
            )

        logger.debug(
            "Answers projected",
            extra={"session_id": session_id, "page_id": page_id, "answer_count": len(answers)},
        )

    async def _update_session(
        self,
        session_id: str,
        page_id: str,
        answer_count: int,
        timestamp: str,
    ) -> dict[str, Any] | None:
        """Advance progress fields on an existing session record; None if there is none."""
        record = await self.store.get_session(session_id)
        if record is None:
            return None

        total = int(record.get("totalAnswers") or 0) + answer_count
        record.update(currentPage=page_id, lastAnswerTime=timestamp, totalAnswers=total)
        if record.get("status") not in TERMINAL_STATUSES:
            record["progress"] = self.estimate_progress(total)
        await self.store.set_session(session_id, record, ttl=self.settings.session_ttl)
        mark_counters_moved()
        return record
