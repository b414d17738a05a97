"""Route endpoints of the delivery service.

Endpoints:
  - GET   /vehicle-routes/from/{userId}/active
  - GET   /vehicle-routes/{routeId}
  - GET   /vehicle-routes/{routeId}/realpath
  - PATCH /vehicle-routes/{routeId}/update-progress
  - POST  /routes/{routeId}/complete
  - POST  /routes/recalculate-route
  - POST  /routes/report-anomaly
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from routesync._api._common import parse_api_result, path_id, raise_for_result
from routesync._api.nodes import fetch_node_name
from routesync._transport import Transport
from routesync.exceptions import RouteSyncApiError, RouteSyncTransportError
from routesync.models.route import (
    ActiveRoute,
    ApiResult,
    RealNode,
    RecalculatedSegment,
    RouteMetadata,
    RouteSegment,
    VirtualNode,
)

_logger = logging.getLogger(__name__)

RECALCULATE_ENDPOINT = "/routes/recalculate-route"
REPORT_ANOMALY_ENDPOINT = "/routes/report-anomaly"


async def fetch_active_route(transport: Transport, user_id: str) -> ActiveRoute | None:
    """Return the user's active route, or ``None`` when the backend answers 404."""
    endpoint = f"/vehicle-routes/from/{path_id(user_id)}/active"
    try:
        body = await transport.request("GET", endpoint)
    except RouteSyncTransportError as exc:
        if exc.status_code == 404:
            return None
        raise
    if not isinstance(body, dict):
        raise RouteSyncTransportError(f"Unexpected body from {endpoint}", endpoint=endpoint)
    try:
        return ActiveRoute.model_validate(body)
    except ValidationError as exc:
        raise RouteSyncTransportError(f"Malformed active route from {endpoint}", endpoint=endpoint) from exc


async def fetch_route_metadata(transport: Transport, route_id: str) -> RouteMetadata:
    endpoint = f"/vehicle-routes/{path_id(route_id)}"
    body = await transport.request("GET", endpoint)
    if not isinstance(body, dict):
        raise RouteSyncTransportError(f"Unexpected body from {endpoint}", endpoint=endpoint)
    return RouteMetadata.model_validate(body)


async def fetch_realpath(transport: Transport, route_id: str) -> list[RouteSegment]:
    """Fetch the ordered segments of a route.

    Rows whose geometry has fewer than two points are dropped, as are rows
    that cannot be parsed at all.
    """
    endpoint = f"/vehicle-routes/{path_id(route_id)}/realpath"
    body = await transport.request("GET", endpoint)
    rows = body if isinstance(body, list) else []

    segments: list[RouteSegment] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        geometry = row.get("geometry")
        if not isinstance(geometry, list) or len(geometry) <= 1:
            continue
        try:
            segments.append(RouteSegment.from_api(row))
        except (ValidationError, ValueError):
            _logger.debug("Skipping malformed realpath row id=%s", row.get("id"), exc_info=True)
    return segments


async def load_segments(transport: Transport, route_id: str) -> list[RouteSegment]:
    """Fetch segments and resolve each destination's display name.

    Real nodes are looked up once per load; virtual nodes use their label.
    """
    segments = await fetch_realpath(transport, route_id)
    names: dict[str, str] = {}
    resolved: list[RouteSegment] = []
    for segment in segments:
        node = segment.to_node
        if isinstance(node, RealNode):
            if node.id not in names:
                names[node.id] = await fetch_node_name(transport, node.id)
            name = names[node.id]
        elif isinstance(node, VirtualNode):
            name = node.label
        else:  # pragma: no cover
            name = None
        resolved.append(segment.model_copy(update={"to_name": name}))
    return resolved


async def update_progress(transport: Transport, route_id: str, segment_index: int) -> None:
    endpoint = f"/vehicle-routes/{path_id(route_id)}/update-progress"
    await transport.request("PATCH", endpoint, json_body={"currentSegmentIndex": segment_index})


async def complete_route(transport: Transport, route_id: str) -> ApiResult:
    endpoint = f"/routes/{path_id(route_id)}/complete"
    body = await transport.request("POST", endpoint)
    return parse_api_result(body)


def build_recalculation_body(
    *,
    route_id: str,
    current_lat: float,
    current_lon: float,
    segment_id: str | None,
    vehicle_id: str | None = None,
    segment_index: int | None = None,
) -> dict[str, Any]:
    """Build the recalculation request body.

    The driver variant sends ``segmentId``; the admin variant adds
    ``vehicleId`` and ``segmentIndex`` and leaves ``segmentId`` null.
    """
    body: dict[str, Any] = {
        "currentLat": current_lat,
        "currentLon": current_lon,
        "routeId": route_id,
        "segmentId": segment_id,
    }
    if vehicle_id is not None:
        body["vehicleId"] = vehicle_id
    if segment_index is not None:
        body["segmentIndex"] = segment_index
    return body


async def recalculate_route(transport: Transport, body: dict[str, Any]) -> RecalculatedSegment:
    """Request a new geometry for the segment described by *body*.

    Raises :class:`RouteSyncApiError` unless the backend answers
    ``code == 200`` with a usable ``updatedSegment``.
    """
    raw = await transport.request("POST", RECALCULATE_ENDPOINT, json_body=body)
    result = raise_for_result(RECALCULATE_ENDPOINT, parse_api_result(raw))
    updated = result.raw.get("updatedSegment")
    if not isinstance(updated, dict):
        raise RouteSyncApiError(
            f"{RECALCULATE_ENDPOINT} returned no updatedSegment",
            code=result.code,
            endpoint=RECALCULATE_ENDPOINT,
        )
    try:
        return RecalculatedSegment.model_validate(updated)
    except ValidationError as exc:
        raise RouteSyncApiError(
            f"{RECALCULATE_ENDPOINT} returned an unusable updatedSegment",
            code=result.code,
            endpoint=RECALCULATE_ENDPOINT,
        ) from exc


async def report_anomaly(
    transport: Transport,
    *,
    user_id: str,
    vehicle_id: str,
    route_id: str | None,
    lat: float,
    lon: float,
    timestamp: datetime | None = None,
) -> ApiResult:
    when = timestamp or datetime.now(UTC)
    body = {
        "userId": user_id,
        "vehicleId": vehicle_id,
        "activeRouteId": route_id,
        "anomalyLat": lat,
        "anomalyLon": lon,
        "timestamp": when.isoformat().replace("+00:00", "Z"),
    }
    raw = await transport.request("POST", REPORT_ANOMALY_ENDPOINT, json_body=body)
    return parse_api_result(raw)
