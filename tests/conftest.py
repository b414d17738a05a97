from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import pytest

from routesync._constants import KEY_AUTH_TOKEN, KEY_USER_ID
from routesync._transport import Service
from routesync.config import RouteSyncConfig
from routesync.exceptions import RouteSyncTransportError
from routesync.manager import RouteSessionManager
from routesync.models.notice import Notice
from routesync.storage import MemorySessionStore

USER_ID = "user-1"
BASE = (45.0, 9.0)


def line(*offsets: tuple[float, float]) -> list[list[float]]:
    """Backend geometry (``[lon, lat]`` pairs) at lat/lon offsets from ``BASE``."""
    return [[BASE[1] + d_lon, BASE[0] + d_lat] for d_lat, d_lon in offsets]


@dataclass
class Call:
    method: str
    path: str
    service: Service
    json_body: Mapping[str, Any] | None
    params: Mapping[str, str] | None


@dataclass
class FakeBackend:
    """Transport double answering from a ``(method, path)`` table.

    A value may be a body, an exception instance to raise, or a callable
    taking the :class:`Call` and returning a body.  ``GET /nodes/<id>``
    answers ``{"name": "Stop <id>"}`` unless overridden; anything else
    unknown is a 404.
    """

    responses: dict[tuple[str, str], Any] = field(default_factory=dict)
    calls: list[Call] = field(default_factory=list)

    def on(self, method: str, path: str, response: Any) -> None:
        self.responses[(method, path)] = response

    def called(self, method: str, path: str) -> list[Call]:
        return [c for c in self.calls if c.method == method and c.path == path]

    def paths(self) -> list[str]:
        return [f"{c.method} {c.path}" for c in self.calls]

    async def request(
        self,
        method: str,
        path: str,
        *,
        service: Service = Service.DELIVERY,
        json_body: Mapping[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        call = Call(method, path, service, json_body, params)
        self.calls.append(call)
        if (method, path) in self.responses:
            response = self.responses[(method, path)]
        elif method == "GET" and path.startswith("/nodes/"):
            response = {"name": f"Stop {path.rsplit('/', 1)[-1]}"}
        else:
            raise RouteSyncTransportError(f"HTTP 404 from {path}", status_code=404, endpoint=path)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(call)
        return response


@dataclass
class FakeChannel:
    connected: bool = True
    topics: set[str] = field(default_factory=set)
    operations: list[tuple[str, str]] = field(default_factory=list)
    published: list[tuple[str, dict[str, Any], int]] = field(default_factory=list)

    @property
    def is_connected(self) -> bool:
        return self.connected

    def subscribe(self, topic: str) -> None:
        self.operations.append(("subscribe", topic))
        self.topics.add(topic)

    def unsubscribe(self, topic: str) -> None:
        self.operations.append(("unsubscribe", topic))
        self.topics.discard(topic)

    def publish(self, topic: str, payload: Mapping[str, Any], *, qos: int = 1) -> None:
        self.published.append((topic, dict(payload), qos))


@pytest.fixture
def config() -> RouteSyncConfig:
    return RouteSyncConfig()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def store() -> MemorySessionStore:
    return MemorySessionStore({KEY_USER_ID: USER_ID, KEY_AUTH_TOKEN: "token-1"})


@pytest.fixture
def notices() -> list[Notice]:
    return []


@pytest.fixture
def make_manager(
    config: RouteSyncConfig,
    backend: FakeBackend,
    store: MemorySessionStore,
    channel: FakeChannel,
    notices: list[Notice],
) -> Callable[..., RouteSessionManager]:
    def _make(**overrides: Any) -> RouteSessionManager:
        kwargs: dict[str, Any] = {
            "config": config,
            "transport": backend,
            "store": store,
            "channel": channel,
            "on_notice": notices.append,
        }
        kwargs.update(overrides)
        return RouteSessionManager(**kwargs)

    return _make


@pytest.fixture
def manager(make_manager: Callable[..., RouteSessionManager]) -> RouteSessionManager:
    return make_manager()
