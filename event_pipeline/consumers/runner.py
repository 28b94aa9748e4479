"""Run the projection consumers in one process."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from event_pipeline.core.exceptions import PipelineError

from .answer import AnswerConsumer
from .quota import QuotaConsumer
from .session import SessionConsumer

if TYPE_CHECKING:
    from event_pipeline.core.settings import ProjectionSettings
    from event_pipeline.infra.cache import StateStore
    from event_pipeline.infra.messaging import BrokerClient

    from .base import ProjectionConsumer

logger = logging.getLogger(__name__)

CONSUMERS: dict[str, type[ProjectionConsumer]] = {
    "session": SessionConsumer,
    "quota": QuotaConsumer,
    "answer": AnswerConsumer,
}


class ConsumerRunner:
    """Wires the selected consumers to one broker client and one state store."""

    def __init__(
        self,
        broker: BrokerClient,
        store: StateStore,
        *,
        names: Iterable[str] | None = None,
        settings: ProjectionSettings | None = None,
    ) -> None:
        selected = list(names) if names else list(CONSUMERS)
        unknown = sorted(set(selected) - set(CONSUMERS))
        if unknown:
            raise PipelineError(
                detail=f"Unknown consumer(s): {', '.join(unknown)}",
                type="unknown-consumer",
                extra={"available": sorted(CONSUMERS)},
            )
        self.broker = broker
        self.store = store
        self.consumers = [CONSUMERS[name](store, settings=settings) for name in selected]

    async def start(self) -> None:
        """Connect the state store, subscribe every consumer, then connect the broker."""
        await self.store.connect()
        for consumer in self.consumers:
            consumer.register(self.broker)
        await self.broker.connect()
        logger.info(
            "Projection consumers running",
            extra={"consumer_groups": [consumer.group_id for consumer in self.consumers]},
        )

    async def stop(self) -> None:
        await self.broker.disconnect()
        await self.store.disconnect()
        logger.info("Projection consumers stopped")
