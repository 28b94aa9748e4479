"""Projection consumers: rebuild Redis read models from the event topics."""

from __future__ import annotations

from .answer import AnswerConsumer
from .base import ProjectionConsumer
from .quota import QuotaConsumer
from .runner import CONSUMERS, ConsumerRunner
from .session import SessionConsumer

__all__ = [
    "CONSUMERS",
    "AnswerConsumer",
    "ConsumerRunner",
    "ProjectionConsumer",
    "QuotaConsumer",
    "SessionConsumer",
]
