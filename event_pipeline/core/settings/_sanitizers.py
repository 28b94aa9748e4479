"""Clean-up of raw environment values before validation."""

from __future__ import annotations

import re
from typing import Any

# A "#" only opens a comment after whitespace, so "topic#1" survives.
_INLINE_COMMENT = re.compile(r"\s+#.*$")


def sanitize_inline_numeric(value: Any) -> Any:
    """Drop a trailing ``  # comment`` from a numeric env value.

    ``OUTBOX_POLL_INTERVAL_MS="1000  # 1s"`` validates as ``1000``. Values
    that are nothing but a comment are passed through for pydantic to reject.
    """
    if not isinstance(value, str):
        return value
    cleaned = _INLINE_COMMENT.sub("", value).strip()
    if not cleaned or cleaned.startswith("#"):
        return value
    return cleaned
