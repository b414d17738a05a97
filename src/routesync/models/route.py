"""Route, segment and node models."""

from __future__ import annotations

import dataclasses
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator, model_validator

from routesync._constants import CODE_OK, VIRTUAL_NODE_PREFIXES
from routesync.ingestion.normalize import safe_float, safe_index, safe_str, unwrap
from routesync.models._base import LatLon, RouteSyncBaseModel, lonlat_pairs_to_latlon


class SegmentRole(StrEnum):
    """Semantic role of a segment endpoint."""

    PICKUP = "Pickup"
    DELIVERY = "Delivery"
    DEPOT = "Depot"


class VirtualNodeKind(StrEnum):
    START = "START"
    RESCUE = "RESCUE"
    UNKNOWN = "UNKNOWN"


@dataclasses.dataclass(frozen=True)
class RealNode:
    """A registered client or depot location, resolvable through ``/nodes/{id}``."""

    id: str


@dataclasses.dataclass(frozen=True)
class VirtualNode:
    """A route endpoint that is not a registered location.

    Vehicle start points and rescue insertion points are tagged by a
    string prefix on the backend node index.  They are never looked up.
    """

    kind: VirtualNodeKind
    label: str


NodeRef = RealNode | VirtualNode


def parse_node_ref(value: Any, label: str | None = None) -> NodeRef:
    """Resolve a backend node index into a :data:`NodeRef`."""
    text = safe_str(value)
    if text is None:
        return VirtualNode(kind=VirtualNodeKind.UNKNOWN, label=label or "Virtual")
    for prefix in VIRTUAL_NODE_PREFIXES:
        if text.startswith(prefix):
            return VirtualNode(kind=VirtualNodeKind(prefix.rstrip("_")), label=label or "Virtual")
    return RealNode(id=text)


def _coerce_id(value: Any) -> str | None:
    return safe_str(value)


class RouteSegment(RouteSyncBaseModel):
    """One leg of a route between two stops.

    Immutable once fetched; replaced wholesale when the route is refreshed
    and field-wise (geometry, distance, time) on off-route recalculation.
    """

    id: str
    from_label: str | None = None
    to_label: str | None = None
    geometry: tuple[LatLon, ...]
    from_node: NodeRef = Field(default_factory=lambda: VirtualNode(VirtualNodeKind.UNKNOWN, "Virtual"))
    to_node: NodeRef = Field(default_factory=lambda: VirtualNode(VirtualNodeKind.UNKNOWN, "Virtual"))
    order_ids: tuple[str, ...] = ()
    distance_m: float | None = None
    time_s: float | None = None
    to_name: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_segment_id(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("geometry")
    @classmethod
    def _require_line(cls, value: tuple[LatLon, ...]) -> tuple[LatLon, ...]:
        if len(value) < 2:
            raise ValueError("segment geometry needs at least two points")
        return value

    @field_validator("order_ids", mode="before")
    @classmethod
    def _dedupe_orders(cls, value: Any) -> Any:
        if value is None:
            return ()
        if not isinstance(value, (list, tuple, set, frozenset)):
            return value
        seen: dict[str, None] = {}
        for item in value:
            text = safe_str(item)
            if text is not None:
                seen.setdefault(text, None)
        return tuple(seen)

    @field_validator("distance_m", "time_s", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @classmethod
    def from_api(cls, row: dict[str, Any]) -> RouteSegment:
        """Parse one ``/realpath`` row (geometry as ``[lon, lat]`` pairs)."""
        return cls.model_validate(
            {
                "id": row.get("id"),
                "fromLabel": row.get("fromLabel"),
                "toLabel": row.get("toLabel"),
                "geometry": lonlat_pairs_to_latlon(row.get("geometry")),
                "fromNode": parse_node_ref(row.get("fromNodeIndex"), row.get("fromLabel")),
                "toNode": parse_node_ref(row.get("toNodeIndex"), row.get("toLabel")),
                "orderIds": row.get("orderIds") or [],
                "distanceM": row.get("distanceM"),
                "timeS": row.get("timeS"),
                "raw": row,
            }
        )

    @property
    def to_role(self) -> SegmentRole | None:
        try:
            return SegmentRole(self.to_label) if self.to_label else None
        except ValueError:
            return None

    def with_recalculation(self, update: RecalculatedSegment) -> RouteSegment:
        """Copy with only geometry, distance and time replaced."""
        return self.model_copy(
            update={
                "geometry": update.geometry,
                "distance_m": update.distance_m,
                "time_s": update.time_s,
            }
        )


class RecalculatedSegment(RouteSyncBaseModel):
    """``updatedSegment`` returned by the recalculation endpoint."""

    geometry: tuple[LatLon, ...]
    distance_m: float | None = None
    time_s: float | None = None

    @field_validator("geometry", mode="before")
    @classmethod
    def _convert_geometry(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)) and value and isinstance(value[0], list):
            return lonlat_pairs_to_latlon(value)
        return value

    @field_validator("geometry")
    @classmethod
    def _require_line(cls, value: tuple[LatLon, ...]) -> tuple[LatLon, ...]:
        if len(value) < 2:
            raise ValueError("recalculated geometry needs at least two points")
        return value

    @field_validator("distance_m", "time_s", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)


class RouteMetadata(RouteSyncBaseModel):
    """``GET /vehicle-routes/{routeId}``; fields may be nested under ``route``."""

    id: str | None = None
    vehicle_id: str | None = None
    associated_user_id: str | None = None
    completed: bool = False
    current_segment_index: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _unwrap_route(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = unwrap(values, "route")
        merged.setdefault("raw", dict(values))
        return merged

    @field_validator("id", "vehicle_id", "associated_user_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> str | None:
        return _coerce_id(value)

    @field_validator("completed", mode="before")
    @classmethod
    def _strict_completed(cls, value: Any) -> bool:
        return value is True

    @field_validator("current_segment_index", mode="before")
    @classmethod
    def _coerce_index(cls, value: Any) -> int | None:
        return safe_index(value)


class ActiveRoute(RouteSyncBaseModel):
    """``GET /vehicle-routes/from/{userId}/active``."""

    id: str
    vehicle_id: str | None = None
    current_segment_index: int = 0

    @field_validator("id", "vehicle_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> str | None:
        return _coerce_id(value)

    @field_validator("current_segment_index", mode="before")
    @classmethod
    def _coerce_index(cls, value: Any) -> int:
        parsed = safe_index(value)
        return 0 if parsed is None else parsed


class ApiResult(RouteSyncBaseModel):
    """``{code, message, ...}`` answer of command-style endpoints."""

    code: int | None = None
    message: str | None = None
    data: Any = None

    @field_validator("code", mode="before")
    @classmethod
    def _coerce_code(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
        return value if isinstance(value, int) else None

    @property
    def ok(self) -> bool:
        return self.code == CODE_OK
