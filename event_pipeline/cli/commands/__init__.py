"""CLI command modules."""

from event_pipeline.cli.commands import consumers, outbox, relay

__all__ = ["consumers", "outbox", "relay"]
