"""Terminal output for the pipeline commands."""

import json
from typing import Any

import click

# symbol, colour, stderr
_STYLES: dict[str, tuple[str, str, bool]] = {
    "success": ("✓", "green", False),
    "error": ("✗", "red", True),
    "warning": ("⚠", "yellow", False),
    "info": ("ℹ", "blue", False),
}


def _emit(style: str, message: str) -> None:
    symbol, colour, to_stderr = _STYLES[style]
    click.secho(f"{symbol} {message}", fg=colour, err=to_stderr)


def success(message: str) -> None:
    _emit("success", message)


def error(message: str) -> None:
    """Print an error to stderr."""
    _emit("error", message)


def warning(message: str) -> None:
    _emit("warning", message)


def info(message: str) -> None:
    _emit("info", message)


def header(title: str) -> None:
    click.secho(f"\n{title}", fg="cyan", bold=True)


def key_values(values: dict[str, Any], *, as_json: bool = False) -> None:
    """Print counters as aligned ``name  value`` rows, or as a JSON object."""
    if as_json:
        click.echo(json.dumps(values, indent=2, default=str))
        return
    width = max((len(name) for name in values), default=0)
    for name, value in values.items():
        click.echo(f"  {name.ljust(width)}  {value}")
