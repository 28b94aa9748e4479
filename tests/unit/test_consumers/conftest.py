"""Fixtures for projection consumer tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from itertools import count

import pytest

from event_pipeline.core.events import EventEnvelope

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class EnvelopeFactory:
    """Builds envelopes with increasing event ids."""

    def __init__(self) -> None:
        self._ids = count(1)

    def __call__(
        self,
        event_type: str,
        payload: dict,
        *,
        at: float = 0,
        event_id: str | None = None,
        tenant_id: str = "t1",
        survey_id: str | None = "sv1",
        session_id: str | None = None,
    ) -> EventEnvelope:
        return EventEnvelope(
            event_id=event_id or f"evt-{next(self._ids)}",
            type=event_type,
            occurred_at=T0 + timedelta(seconds=at),
            tenant_id=tenant_id,
            survey_id=survey_id,
            session_id=session_id if session_id is not None else payload.get("sessionId"),
            payload=payload,
        )


@pytest.fixture
def make_envelope() -> EnvelopeFactory:
    return EnvelopeFactory()
