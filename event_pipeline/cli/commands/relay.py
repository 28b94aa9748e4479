"""Outbox relay commands."""

import sys

import click

from event_pipeline.cli.utils import coro, error, header, info, key_values, success, wait_forever, warning
from event_pipeline.core.exceptions import BrokerConnectionError
from event_pipeline.core.settings import get_kafka_settings, get_outbox_settings
from event_pipeline.infra.database.session import close_database, get_session_factory, init_database
from event_pipeline.infra.events.outbox import OutboxRelay
from event_pipeline.infra.messaging import BrokerClient


@click.group(name="relay")
def relay() -> None:
    """Outbox relay commands."""


@relay.command()
@coro
async def run() -> None:
    """Publish outbox rows to Kafka until interrupted."""
    if not get_kafka_settings().enabled:
        error("Kafka is disabled (KAFKA_ENABLED=false), not starting the relay")
        sys.exit(1)

    settings = get_outbox_settings()

    try:
        await init_database()
    except Exception as e:
        error(f"Cannot connect to the database: {e}")
        await close_database()
        sys.exit(1)

    broker = BrokerClient(dead_letter_topic=settings.dead_letter_topic)
    try:
        await broker.connect()
    except BrokerConnectionError as e:
        error(f"Cannot connect to Kafka: {e.detail}")
        await close_database()
        sys.exit(1)

    outbox_relay = OutboxRelay(broker, session_factory=get_session_factory(), settings=settings)
    info(
        f"Relay polling every {settings.poll_interval_ms}ms "
        f"(batch {settings.batch_size}, max attempts {settings.max_attempts})"
    )
    try:
        await outbox_relay.start()
        await wait_forever()
    finally:
        await outbox_relay.stop()
        await broker.disconnect()
        await close_database()


@relay.command()
@click.option("--json", "as_json", is_flag=True, help="Print metrics as JSON")
@coro
async def metrics(as_json: bool) -> None:
    """Show outbox row counts by state."""
    try:
        outbox_relay = OutboxRelay(BrokerClient(), session_factory=get_session_factory())
        counts = await outbox_relay.get_metrics()
    except Exception as e:
        error(f"Failed to read outbox metrics: {e}")
        sys.exit(1)
    finally:
        await close_database()

    if not as_json:
        header("Outbox")
    key_values(counts.as_dict(), as_json=as_json)


@relay.command()
@click.option(
    "--older-than-days",
    type=click.IntRange(min=1),
    default=None,
    help="Retention in days (default: OUTBOX_CLEANUP_OLDER_THAN_DAYS)",
)
@coro
async def cleanup(older_than_days: int | None) -> None:
    """Delete processed outbox rows past their retention."""
    try:
        outbox_relay = OutboxRelay(BrokerClient(), session_factory=get_session_factory())
        deleted = await outbox_relay.cleanup_processed(older_than_days)
    except Exception as e:
        error(f"Cleanup failed: {e}")
        sys.exit(1)
    finally:
        await close_database()

    if deleted:
        success(f"Deleted {deleted} processed outbox row(s)")
    else:
        warning("No processed outbox rows past retention")
