"""Projection consumer commands."""

import sys

import click
from redis.exceptions import RedisError

from event_pipeline.cli.utils import coro, error, info, wait_forever
from event_pipeline.consumers import CONSUMERS, ConsumerRunner
from event_pipeline.core.exceptions import BrokerConnectionError, StateStoreError
from event_pipeline.core.settings import get_kafka_settings, get_outbox_settings
from event_pipeline.infra.cache import StateStore
from event_pipeline.infra.messaging import BrokerClient


@click.group(name="consumers")
def consumers() -> None:
    """Projection consumer commands."""


@consumers.command()
@click.option(
    "--only",
    "names",
    multiple=True,
    type=click.Choice(sorted(CONSUMERS)),
    help="Run only the named consumer (repeatable)",
)
@coro
async def run(names: tuple[str, ...]) -> None:
    """Consume the event topics and maintain the Redis projections."""
    if not get_kafka_settings().enabled:
        error("Kafka is disabled (KAFKA_ENABLED=false), not starting consumers")
        sys.exit(1)

    broker = BrokerClient(dead_letter_topic=get_outbox_settings().dead_letter_topic)
    runner = ConsumerRunner(broker, StateStore(), names=names or None)
    info(f"Starting consumers: {', '.join(c.group_id for c in runner.consumers)}")

    try:
        await runner.start()
    except BrokerConnectionError as e:
        error(f"Cannot connect to Kafka: {e.detail}")
        await runner.stop()
        sys.exit(1)
    except (RedisError, StateStoreError) as e:
        error(f"Cannot connect to Redis: {e}")
        await runner.stop()
        sys.exit(1)

    try:
        await wait_forever()
    finally:
        await runner.stop()
