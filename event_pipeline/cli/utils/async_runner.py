"""Run async command bodies under click."""

import asyncio
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

import click

# Conventional exit status for a process stopped by SIGINT.
INTERRUPTED_EXIT_CODE = 130

T = TypeVar("T")


def coro(f: Callable[..., Awaitable[T]]) -> Callable[..., T]:
    """Run an async click command in a fresh event loop.

    Ctrl+C cancels the command's task, so ``finally`` blocks in the command
    still close the broker, the store and the database, and the process
    exits with status 130.

    Usage:
        @relay.command()
        @coro
        async def run():
            await relay.start()
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return asyncio.run(f(*args, **kwargs))
        except KeyboardInterrupt:
            click.echo("Interrupted, stopped cleanly", err=True)
            raise SystemExit(INTERRUPTED_EXIT_CODE) from None

    return wrapper


async def wait_forever() -> None:
    """Park the current task until it is cancelled."""
    await asyncio.Event().wait()
