"""Kafka messaging via FastStream."""

from __future__ import annotations

from .broker import BrokerClient, ConnectionState, ConsumerGroup, MessageHandler

__all__ = ["BrokerClient", "ConnectionState", "ConsumerGroup", "MessageHandler"]
