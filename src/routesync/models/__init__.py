"""Data models for routesync."""

from routesync.models._base import LatLon, RouteSyncBaseModel
from routesync.models.admin import LiveVehicle, VehicleContext
from routesync.models.events import RouteChangeEvent, RouteChangeKind
from routesync.models.notice import Notice, NoticeKind
from routesync.models.route import (
    ActiveRoute,
    ApiResult,
    NodeRef,
    RealNode,
    RecalculatedSegment,
    RouteMetadata,
    RouteSegment,
    SegmentRole,
    VirtualNode,
    VirtualNodeKind,
    parse_node_ref,
)
from routesync.models.session import AdvanceOutcome, RouteSession, SessionState

__all__ = [
    "ActiveRoute",
    "AdvanceOutcome",
    "ApiResult",
    "LatLon",
    "LiveVehicle",
    "NodeRef",
    "Notice",
    "NoticeKind",
    "RealNode",
    "RecalculatedSegment",
    "RouteChangeEvent",
    "RouteChangeKind",
    "RouteMetadata",
    "RouteSegment",
    "RouteSession",
    "RouteSyncBaseModel",
    "SegmentRole",
    "SessionState",
    "VehicleContext",
    "VirtualNode",
    "VirtualNodeKind",
    "parse_node_ref",
]
