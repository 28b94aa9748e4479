"""Outbox relay, Kafka publication and Redis projection consumers for survey events."""

__version__ = "0.1.0"
