"""Database base classes and column types."""

from __future__ import annotations

from .base import NAMING_CONVENTION, Base
from .types import UTCDateTime

__all__ = ["NAMING_CONVENTION", "Base", "UTCDateTime"]
