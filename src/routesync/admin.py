"""Admin live map: vehicle polling and supervised recalculation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable

from routesync._api import admin as _admin_api
from routesync._api import routes as _routes_api
from routesync._constants import STATUS_IN_TRANSIT
from routesync._transport import Transport
from routesync.config import RouteSyncConfig
from routesync.exceptions import RouteSyncApiError, RouteSyncTransportError
from routesync.models.admin import LiveVehicle, VehicleContext
from routesync.offroute import OffRouteDetector

_logger = logging.getLogger(__name__)


class AdminLiveMonitor:
    """Poll live vehicles and keep the selected vehicle's segment on track.

    Uses the same off-route rule as the driver session, with the admin
    cooldown so a polling loop cannot flood the recalculation endpoint.
    """

    def __init__(
        self,
        *,
        config: RouteSyncConfig,
        transport: Transport,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._transport = transport
        self._detector = OffRouteDetector(
            threshold_m=config.off_route_threshold_m,
            cooldown_s=config.admin_recalc_cooldown_s,
            clock=clock,
        )
        self._vehicles: list[LiveVehicle] = []
        self._selected_id: str | None = None
        self._context: VehicleContext | None = None

    @property
    def vehicles(self) -> list[LiveVehicle]:
        return list(self._vehicles)

    @property
    def selected_vehicle_id(self) -> str | None:
        return self._selected_id

    @property
    def context(self) -> VehicleContext | None:
        return self._context

    @property
    def detector(self) -> OffRouteDetector:
        return self._detector

    def vehicle(self, vehicle_id: str) -> LiveVehicle | None:
        return next((v for v in self._vehicles if v.vehicle_id == vehicle_id), None)

    async def refresh(self) -> list[LiveVehicle]:
        """Poll live vehicles.  On failure the previous list is kept."""
        try:
            self._vehicles = await _admin_api.fetch_live_vehicles(self._transport)
        except RouteSyncTransportError:
            _logger.debug("Live vehicle poll failed", exc_info=True)
        return self.vehicles

    async def select(self, vehicle_id: str) -> VehicleContext | None:
        """Select a vehicle and load its route context.

        Only ``IN_TRANSIT`` vehicles have a context; selecting any other
        vehicle clears the selection.
        """
        self.deselect()
        vehicle = self.vehicle(vehicle_id)
        if vehicle is None or vehicle.status != STATUS_IN_TRANSIT:
            return None
        context = await _admin_api.fetch_vehicle_context(self._transport, vehicle_id)
        if context is None:
            _logger.info("No route context for vehicle_id=%s", vehicle_id)
            return None
        self._selected_id = vehicle_id
        self._context = context
        return context

    def deselect(self) -> None:
        self._selected_id = None
        self._context = None
        self._detector.reset()

    async def check_selected(self) -> bool:
        """Recalculate the selected vehicle's segment if it drifted off it.

        Returns ``True`` when a new polyline was applied.
        """
        vehicle_id = self._selected_id
        context = self._context
        if vehicle_id is None or context is None or not context.can_recalculate:
            return False
        vehicle = self.vehicle(vehicle_id)
        position = vehicle.position if vehicle is not None else None
        if position is None:
            return False

        check = self._detector.check(position, context.current_segment_polyline)
        if not check.triggered:
            return False

        assert context.route_id is not None  # noqa: S101
        _logger.info(
            "Vehicle %s off route by %.0f m, requesting recalculation of route_id=%s",
            vehicle_id,
            check.distance_m,
            context.route_id,
        )
        body = _routes_api.build_recalculation_body(
            route_id=context.route_id,
            current_lat=position[0],
            current_lon=position[1],
            segment_id=None,
            vehicle_id=vehicle_id,
            segment_index=context.current_segment_index,
        )
        try:
            updated = await _routes_api.recalculate_route(self._transport, body)
        except (RouteSyncTransportError, RouteSyncApiError):
            _logger.warning("Admin recalculation failed vehicle_id=%s", vehicle_id, exc_info=True)
            return False

        if self._selected_id != vehicle_id or self._context is not context:
            _logger.debug("Dropping recalculation for deselected vehicle_id=%s", vehicle_id)
            return False
        self._context = context.model_copy(update={"current_segment_polyline": updated.geometry})
        return True

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll until *stop_event* is set."""
        while not stop_event.is_set():
            await self.refresh()
            await self.check_selected()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop_event.wait(), self._config.admin_poll_interval_s)
