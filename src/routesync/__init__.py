"""routesync - Async route session synchronization for delivery drivers."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyroutesync")
except PackageNotFoundError:
    __version__ = "0+local"
from routesync.admin import AdminLiveMonitor
from routesync.client import RouteSyncClient
from routesync.config import RouteSyncConfig
from routesync.exceptions import (
    RouteSessionError,
    RouteSyncApiError,
    RouteSyncAuthenticationError,
    RouteSyncConfigError,
    RouteSyncError,
    RouteSyncTransportError,
)
from routesync.geo import haversine_m
from routesync.manager import RouteSessionManager
from routesync.models import (
    AdvanceOutcome,
    Notice,
    NoticeKind,
    RouteChangeEvent,
    RouteChangeKind,
    RouteSegment,
    RouteSession,
    SessionState,
)
from routesync.offroute import OffRouteDetector
from routesync.storage import JsonFileSessionStore, MemorySessionStore, SessionStore
from routesync.subscriber import RouteEventSubscriber, SubscriptionState

__all__ = [
    "__version__",
    "AdminLiveMonitor",
    "AdvanceOutcome",
    "JsonFileSessionStore",
    "MemorySessionStore",
    "Notice",
    "NoticeKind",
    "OffRouteDetector",
    "RouteChangeEvent",
    "RouteChangeKind",
    "RouteEventSubscriber",
    "RouteSegment",
    "RouteSession",
    "RouteSessionError",
    "RouteSessionManager",
    "RouteSyncApiError",
    "RouteSyncAuthenticationError",
    "RouteSyncClient",
    "RouteSyncConfig",
    "RouteSyncConfigError",
    "RouteSyncError",
    "RouteSyncTransportError",
    "SessionState",
    "SessionStore",
    "SubscriptionState",
    "haversine_m",
]
