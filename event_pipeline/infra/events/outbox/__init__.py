"""Transactional outbox: table model, queries and the relay."""

from __future__ import annotations

from .models import OutboxEvent
from .relay import OutboxRelay, PollResult, RelayState
from .repository import OutboxMetrics, OutboxRepository

__all__ = [
    "OutboxEvent",
    "OutboxMetrics",
    "OutboxRelay",
    "OutboxRepository",
    "PollResult",
    "RelayState",
]
