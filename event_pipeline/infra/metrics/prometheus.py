"""Prometheus metrics for the relay and the projection consumers."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

REGISTRY = CollectorRegistry()

# Covers publish and handler latencies from 1ms to 10s
DEFAULT_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)

# Outbox relay metrics
outbox_events_published_total = Counter(
    "outbox_events_published_total",
    "Outbox events published to their primary topic",
    ["event_type", "topic"],
    registry=REGISTRY,
)

outbox_publish_failures_total = Counter(
    "outbox_publish_failures_total",
    "Failed publish attempts (each counts against the row's attempts)",
    ["event_type", "reason"],
    registry=REGISTRY,
)

outbox_events_dead_lettered_total = Counter(
    "outbox_events_dead_lettered_total",
    "Outbox events forwarded to the dead-letter topic",
    ["event_type"],
    registry=REGISTRY,
)

outbox_dead_letter_failures_total = Counter(
    "outbox_dead_letter_failures_total",
    "Failed dead-letter forwards (retried on a later poll)",
    ["event_type"],
    registry=REGISTRY,
)

outbox_poll_duration_seconds = Histogram(
    "outbox_poll_duration_seconds",
    "Duration of one relay poll in seconds",
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

outbox_batch_size = Gauge(
    "outbox_batch_size",
    "Rows fetched by the most recent poll",
    registry=REGISTRY,
)

# Consumer metrics
consumer_messages_total = Counter(
    "consumer_messages_total",
    "Messages handled by projection consumers, by outcome",
    ["consumer_group", "event_type", "outcome"],
    registry=REGISTRY,
)

consumer_handler_duration_seconds = Histogram(
    "consumer_handler_duration_seconds",
    "Projection handler duration in seconds",
    ["consumer_group", "event_type"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)
