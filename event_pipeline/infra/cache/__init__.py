"""Redis state store."""

from __future__ import annotations

from . import keys
from .redis import StateStore

__all__ = ["StateStore", "keys"]
