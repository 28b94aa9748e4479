"""Outbox table commands."""

import json
import sys

import click

from event_pipeline.cli.utils import coro, error, success
from event_pipeline.core.events import EventType, OutboxWriter
from event_pipeline.core.exceptions import PipelineError
from event_pipeline.infra.database.session import close_database, create_tables, get_async_session


@click.group(name="outbox")
def outbox() -> None:
    """Outbox table commands."""


@outbox.command()
@coro
async def init() -> None:
    """Create the outbox table where migrations are not run."""
    try:
        await create_tables()
    except Exception as e:
        error(f"Failed to create tables: {e}")
        sys.exit(1)
    finally:
        await close_database()
    success("Outbox table ready")


@outbox.command()
@click.argument("event_type", type=click.Choice([t.value for t in EventType]))
@click.option("--tenant-id", required=True, help="Owning tenant")
@click.option("--survey-id", default=None, help="Survey the fact belongs to")
@click.option("--session-id", default=None, help="Respondent session")
@click.option("--payload", "payload_json", default="{}", help="Payload as a JSON object (camelCase keys)")
@coro
async def stage(
    event_type: str,
    tenant_id: str,
    survey_id: str | None,
    session_id: str | None,
    payload_json: str,
) -> None:
    """Stage one event in the outbox (development helper)."""
    try:
        payload = json.loads(payload_json)
    except json.JSONDecodeError as e:
        error(f"--payload is not valid JSON: {e}")
        sys.exit(2)
    if not isinstance(payload, dict):
        error("--payload must be a JSON object")
        sys.exit(2)

    try:
        async with get_async_session() as session:
            row = await OutboxWriter(session).stage(
                event_type,
                tenant_id=tenant_id,
                payload=payload,
                survey_id=survey_id,
                session_id=session_id,
            )
            await session.commit()
    except PipelineError as e:
        error(e.detail)
        sys.exit(1)
    finally:
        await close_database()

    success(f"Staged {event_type} as {row.id}")
