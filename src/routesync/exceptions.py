"""Custom exception hierarchy for routesync."""

from __future__ import annotations


class RouteSyncError(Exception):
    """Base exception for all routesync errors."""


class RouteSyncConfigError(RouteSyncError):
    """Invalid or missing configuration."""


class RouteSyncTransportError(RouteSyncError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class RouteSyncApiError(RouteSyncError):
    """Backend answered but rejected the request (``code`` other than 200)."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class RouteSyncAuthenticationError(RouteSyncError):
    """No bearer token or user id available.

    The library never re-authenticates on its own.  Callers are expected
    to show a blocking prompt and send the user back through login.
    """


class RouteSessionError(RouteSyncError):
    """Operation not valid for the current route session state."""
