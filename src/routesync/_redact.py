"""Scrub request bodies before they reach DEBUG logs.

Bodies sent to the backend carry bearer tokens and the driver's live
position.  Credentials are replaced outright; coordinates are rounded to
roughly 100 m so traces stay useful without pinpointing anyone.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

REDACTED = "<redacted>"
_MAX_DEPTH = 12

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "authorization",
        "authtoken",
        "accesstoken",
        "refreshtoken",
        "token",
        "pushtoken",
        "password",
        "cookie",
    }
)

_COORDINATE_KEYS: frozenset[str] = frozenset(
    {"lat", "lon", "currentlat", "currentlon", "anomalylat", "anomalylon"}
)
_COORDINATE_DIGITS = 3


def _scrub_entry(key: str, value: Any, max_string: int, depth: int) -> Any:
    folded = key.lower()
    if folded in _SECRET_KEYS:
        return REDACTED
    if folded in _COORDINATE_KEYS and isinstance(value, float):
        return round(value, _COORDINATE_DIGITS)
    return redact_for_log(value, max_string=max_string, _depth=depth + 1)


def redact_for_log(value: Any, *, max_string: int = 256, _depth: int = 0) -> Any:
    """Return a copy of *value* with secrets removed and positions coarsened."""
    if _depth > _MAX_DEPTH:
        return "<nested>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}...(+{len(value) - max_string})"
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if isinstance(value, Mapping):
        return {str(k): _scrub_entry(str(k), v, max_string, _depth) for k, v in value.items()}
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)
