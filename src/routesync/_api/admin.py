"""Admin live-map endpoints.

Endpoints:
  - GET /admin/vehicles/live
  - GET /admin/vehicles/{vehicleId}/context
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from routesync._api._common import path_id
from routesync._transport import Transport
from routesync.exceptions import RouteSyncTransportError
from routesync.models.admin import LiveVehicle, VehicleContext

_logger = logging.getLogger(__name__)


async def fetch_live_vehicles(transport: Transport) -> list[LiveVehicle]:
    body = await transport.request("GET", "/admin/vehicles/live")
    vehicles: list[LiveVehicle] = []
    for row in body if isinstance(body, list) else []:
        try:
            vehicles.append(LiveVehicle.model_validate(row))
        except ValidationError:
            _logger.debug("Skipping malformed live vehicle row", exc_info=True)
    return vehicles


async def fetch_vehicle_context(transport: Transport, vehicle_id: str) -> VehicleContext | None:
    """Return the vehicle's route context, or ``None`` when none is available."""
    endpoint = f"/admin/vehicles/{path_id(vehicle_id)}/context"
    try:
        body = await transport.request("GET", endpoint)
    except RouteSyncTransportError as exc:
        if exc.status_code is not None and 400 <= exc.status_code < 500:
            return None
        raise
    if not isinstance(body, dict):
        return None
    return VehicleContext.model_validate(body)
