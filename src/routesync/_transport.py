"""HTTP transport with bearer-token authorization."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from enum import StrEnum
from typing import Any, Protocol

import aiohttp

from routesync._redact import redact_for_log
from routesync.config import RouteSyncConfig
from routesync.exceptions import RouteSyncAuthenticationError, RouteSyncTransportError

_logger = logging.getLogger(__name__)


class Service(StrEnum):
    """Backend service a path is resolved against."""

    DELIVERY = "delivery"
    POSITION = "position"


TokenProvider = Callable[[], Awaitable[str | None]]


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`HttpTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        path: str,
        *,
        service: Service = Service.DELIVERY,
        json_body: Mapping[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> Any: ...


class HttpTransport:
    """aiohttp transport that attaches the bearer token to every request."""

    def __init__(
        self,
        config: RouteSyncConfig,
        http_session: aiohttp.ClientSession,
        token_provider: TokenProvider,
    ) -> None:
        self._config = config
        self._http = http_session
        self._token_provider = token_provider
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _base_url(self, service: Service) -> str:
        if service == Service.POSITION:
            return self._config.position_base_url.rstrip("/")
        return self._config.delivery_base_url.rstrip("/")

    async def request(
        self,
        method: str,
        path: str,
        *,
        service: Service = Service.DELIVERY,
        json_body: Mapping[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        An empty body decodes to ``None``.
        """
        token = await self._token_provider()
        if not token:
            raise RouteSyncAuthenticationError(f"No auth token available for {method} {path}")

        headers: dict[str, str] = {
            "accept": "application/json",
            "authorization": f"Bearer {token}",
        }
        url = f"{self._base_url(service)}{path}"
        _logger.debug("%s %s params=%s body=%s", method, url, params, redact_for_log(json_body))

        try:
            async with self._http.request(
                method,
                url,
                json=dict(json_body) if json_body is not None else None,
                params=dict(params) if params is not None else None,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise RouteSyncTransportError(
                        f"HTTP {resp.status} from {path}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=path,
                    )
        except RouteSyncTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise RouteSyncTransportError(
                f"Request to {path} failed: {exc}",
                endpoint=path,
            ) from exc

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise RouteSyncTransportError(
                f"Invalid JSON from {path}: {text[:200]}",
                status_code=resp.status,
                endpoint=path,
            ) from exc
