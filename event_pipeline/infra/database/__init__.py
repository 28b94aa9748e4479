"""Async database engine and sessions."""

from __future__ import annotations

from .session import (
    close_database,
    create_engine_from_settings,
    create_session_factory,
    create_tables,
    get_async_session,
    get_engine,
    get_session_factory,
    init_database,
)

__all__ = [
    "close_database",
    "create_engine_from_settings",
    "create_session_factory",
    "create_tables",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "init_database",
]
