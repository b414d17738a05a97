"""Normalization helpers.

Centralizes defensive parsing of backend and broker payloads.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_index(value: Any) -> int | None:
    """Parse a non-negative segment index; anything else is ``None``."""
    if isinstance(value, str):
        value = value.strip()
        if not value.lstrip("-").isdigit():
            return None
    parsed = safe_int(value)
    if parsed is None or parsed < 0:
        return None
    return parsed


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def parse_iso_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are taken as UTC.  Unparseable input gives ``None``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def unwrap(payload: Any, key: str) -> dict[str, Any]:
    """Merge a nested ``payload[key]`` object over its parent.

    Several endpoints answer either flat or wrapped (``{"route": {...}}``,
    ``{"user": {...}}``); nested values win.
    """
    if not isinstance(payload, dict):
        return {}
    nested = payload.get(key)
    if isinstance(nested, dict):
        merged = dict(payload)
        merged.update(nested)
        return merged
    return dict(payload)
