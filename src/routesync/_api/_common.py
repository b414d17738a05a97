"""Shared helpers for backend endpoint modules.

This module centralizes the most repeated patterns:
- turning a ``{code, message}`` body into an :class:`ApiResult`
- mapping a rejected command onto :class:`RouteSyncApiError`
- quoting path segments built from identifiers

It is internal to routesync and may change at any time.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from routesync.exceptions import RouteSyncApiError
from routesync.models.route import ApiResult


def path_id(value: str) -> str:
    """Quote an identifier for use as a single path segment."""
    return quote(str(value), safe="")


def parse_api_result(body: Any) -> ApiResult:
    """Build an :class:`ApiResult` from a command response body.

    Bodies that are not objects yield a result without a code.
    """
    if not isinstance(body, dict):
        return ApiResult(raw={})
    return ApiResult.model_validate(body)


def raise_for_result(endpoint: str, result: ApiResult) -> ApiResult:
    """Return *result* when ``code == 200``, raise otherwise."""
    if result.ok:
        return result
    raise RouteSyncApiError(
        f"{endpoint} failed: code={result.code} message={result.message or ''}",
        code=result.code,
        endpoint=endpoint,
    )
