"""Quota bucket projection.

``quota:{bucketId}`` is a hash with ``reserved`` and ``filled`` counters;
``quota:{bucketId}:session:{sessionId}`` remembers where each session's
reservation stands.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from event_pipeline.core.events.catalogue import EventType, Topic
from event_pipeline.infra.cache import keys

from .base import EventHandler, ProjectionConsumer, isoformat

if TYPE_CHECKING:
    from event_pipeline.core.events.envelope import EventEnvelope
    from event_pipeline.core.events.payloads import EventPayload, QuotaPayload

logger = logging.getLogger(__name__)


class QuotaConsumer(ProjectionConsumer):
    group_id = "quota-consumer-group"
    topic = Topic.QUOTA

    def handlers(self) -> Mapping[EventType, EventHandler]:
        return {
            EventType.QUOTA_RESERVED: self.on_reserved,
            EventType.QUOTA_RELEASED: self.on_released,
            EventType.QUOTA_FINALIZED: self.on_finalized,
        }

    def aggregate_id(self, envelope: EventEnvelope, payload: EventPayload) -> str:
        return getattr(payload, "bucket_id", None) or super().aggregate_id(envelope, payload)

    async def on_reserved(self, envelope: EventEnvelope, payload: QuotaPayload) -> None:
        counters = await self.adjust_counters(keys.quota(payload.bucket_id), {"reserved": 1})
        await self._set_mapping(envelope, payload, "reserved")
        await self.bump_counters(envelope.survey_id, None, "quotas", "reserved")
        logger.info("Quota reserved", extra={"bucket_id": payload.bucket_id, **counters})

    async def on_released(self, envelope: EventEnvelope, payload: QuotaPayload) -> None:
        counters = await self.adjust_counters(keys.quota(payload.bucket_id), {"reserved": -1})
        await self._set_mapping(envelope, payload, "released")
        logger.info("Quota released", extra={"bucket_id": payload.bucket_id, **counters})

    async def on_finalized(self, envelope: EventEnvelope, payload: QuotaPayload) -> None:
        counters = await self.adjust_counters(
            keys.quota(payload.bucket_id),
            {"reserved": -1, "filled": 1},
        )
        await self._set_mapping(envelope, payload, "finalized")
        await self.bump_counters(envelope.survey_id, None, "quotas", "completed")
        logger.info("Quota finalized", extra={"bucket_id": payload.bucket_id, **counters})

    async def _set_mapping(self, envelope: EventEnvelope, payload: QuotaPayload, status: str) -> None:
        await self.store.set_json(
            keys.quota_session(payload.bucket_id, payload.session_id),
            {"status": status, "timestamp": isoformat(envelope.occurred_at_utc)},
            ttl=self.settings.quota_mapping_ttl,
        )
