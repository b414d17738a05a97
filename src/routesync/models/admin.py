"""Admin live-map models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import field_validator

from routesync.ingestion.normalize import parse_iso_timestamp, safe_float, safe_index, safe_str
from routesync.models._base import LatLon, RouteSyncBaseModel


class LiveVehicle(RouteSyncBaseModel):
    """One row of ``GET /admin/vehicles/live``."""

    vehicle_id: str
    lat: float | None = None
    lon: float | None = None
    status: str | None = None
    plate: str | None = None
    driver_name: str | None = None
    last_update: datetime | None = None
    speed_kmh: float | None = None
    is_stale: bool = False

    @field_validator("vehicle_id", "status", "plate", "driver_name", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("lat", "lon", "speed_kmh", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("last_update", mode="before")
    @classmethod
    def _parse_last_update(cls, value: Any) -> datetime | None:
        return parse_iso_timestamp(value)

    @field_validator("is_stale", mode="before")
    @classmethod
    def _coerce_stale(cls, value: Any) -> bool:
        return value is True

    @property
    def position(self) -> LatLon | None:
        # 0.0 is what the backend sends before the first fix.
        if not self.lat or not self.lon:
            return None
        return (self.lat, self.lon)


class VehicleContext(RouteSyncBaseModel):
    """``GET /admin/vehicles/{vehicleId}/context``."""

    vehicle_id: str | None = None
    route_id: str | None = None
    current_segment_index: int | None = None
    current_segment_polyline: tuple[LatLon, ...] = ()

    @field_validator("vehicle_id", "route_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("current_segment_index", mode="before")
    @classmethod
    def _coerce_index(cls, value: Any) -> int | None:
        if isinstance(value, bool):
            return None
        return safe_index(value)

    @field_validator("current_segment_polyline", mode="before")
    @classmethod
    def _parse_polyline(cls, value: Any) -> Any:
        if value is None:
            return ()
        if not isinstance(value, (list, tuple)):
            return value
        points: list[LatLon] = []
        for point in value:
            if isinstance(point, dict):
                lat = safe_float(point.get("lat"))
                lon = safe_float(point.get("lon"))
            elif isinstance(point, (list, tuple)) and len(point) >= 2:
                lat, lon = safe_float(point[0]), safe_float(point[1])
            else:
                continue
            if lat is not None and lon is not None:
                points.append((lat, lon))
        return tuple(points)

    @property
    def can_recalculate(self) -> bool:
        return bool(self.route_id) and self.current_segment_index is not None and len(self.current_segment_polyline) > 1
