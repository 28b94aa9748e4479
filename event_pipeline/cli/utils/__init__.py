"""CLI utilities for running async operations and formatting output."""

from event_pipeline.cli.utils.async_runner import coro, wait_forever
from event_pipeline.cli.utils.formatters import (
    error,
    header,
    info,
    key_values,
    success,
    warning,
)

__all__ = [
    "coro",
    "error",
    "header",
    "info",
    "key_values",
    "success",
    "wait_forever",
    "warning",
]
