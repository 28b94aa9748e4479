"""Main CLI entry point for the event pipeline."""

import click

from event_pipeline import __version__
from event_pipeline.cli.commands import consumers, outbox, relay
from event_pipeline.infra.logging.config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="event-pipeline")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Event pipeline CLI: outbox relay and projection consumers.

    \b
    Command Groups:
      relay      Publish outbox rows to Kafka
      consumers  Maintain Redis projections from the event topics
      outbox     Outbox table helpers

    \b
    Quick Start:
      event-pipeline outbox init              # Create the outbox table
      event-pipeline relay run                # Start the relay
      event-pipeline consumers run            # Start every consumer
      event-pipeline consumers run --only quota
      event-pipeline relay metrics --json     # Row counts by state
    """
    ctx.ensure_object(dict)


cli.add_command(relay.relay)
cli.add_command(consumers.consumers)
cli.add_command(outbox.outbox)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
