"""Client configuration for routesync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from routesync._constants import DELIVERY_BASE_URL, MQTT_HOST, MQTT_WS_PORT, POSITION_BASE_URL
from routesync.exceptions import RouteSyncConfigError

_MQTT_TRANSPORTS = frozenset({"websockets", "tcp"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class RouteSyncConfig:
    """Client configuration.

    Parameters
    ----------
    delivery_base_url : str
        Base URL of the delivery service (routes, orders, nodes, admin).
    position_base_url : str
        Base URL of the position service (users / driver status).
    request_timeout : float
        Total timeout in seconds for a single HTTP request.
    mqtt_host : str
        Broker host for the route-change stream.
    mqtt_port : int
        Broker port.  Defaults to the websocket listener.
    mqtt_transport : str
        ``"websockets"`` or ``"tcp"``.
    mqtt_tls : bool
        Wrap the broker connection in TLS.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_client_id_prefix : str
        Prefix for the generated MQTT client id.
    off_route_threshold_m : float
        Distance from the current segment beyond which a recalculation
        is requested.
    driver_recalc_cooldown_s : float
        Minimum seconds between two driver-side recalculation triggers.
        ``0`` lets every off-route sample trigger.
    admin_recalc_cooldown_s : float
        Minimum seconds between two admin live-map recalculation triggers.
    arrival_radius_m : float
        Radius around the segment destination inside which arrival can
        be confirmed.
    position_publish_interval_s : float
        Period of the position heartbeat published on the stream.
    admin_poll_interval_s : float
        Period of the admin live vehicle polling loop.
    bootstrap_active_route : bool
        Ask the backend for the driver's active route when nothing
        could be restored locally.
    """

    delivery_base_url: str = DELIVERY_BASE_URL
    position_base_url: str = POSITION_BASE_URL
    request_timeout: float = 15.0
    mqtt_host: str = MQTT_HOST
    mqtt_port: int = MQTT_WS_PORT
    mqtt_transport: str = "websockets"
    mqtt_tls: bool = False
    mqtt_keepalive: int = 60
    mqtt_client_id_prefix: str = "routesync"
    off_route_threshold_m: float = 50.0
    driver_recalc_cooldown_s: float = 0.0
    admin_recalc_cooldown_s: float = 8.0
    arrival_radius_m: float = 50.0
    position_publish_interval_s: float = 5.0
    admin_poll_interval_s: float = 3.0
    bootstrap_active_route: bool = True

    def __post_init__(self) -> None:
        if self.mqtt_transport not in _MQTT_TRANSPORTS:
            raise RouteSyncConfigError(
                f"mqtt_transport must be one of {sorted(_MQTT_TRANSPORTS)}, got {self.mqtt_transport!r}"
            )
        if self.off_route_threshold_m <= 0:
            raise RouteSyncConfigError("off_route_threshold_m must be positive")
        if self.arrival_radius_m <= 0:
            raise RouteSyncConfigError("arrival_radius_m must be positive")
        if self.driver_recalc_cooldown_s < 0 or self.admin_recalc_cooldown_s < 0:
            raise RouteSyncConfigError("recalculation cooldowns must not be negative")
        if self.position_publish_interval_s <= 0 or self.admin_poll_interval_s <= 0:
            raise RouteSyncConfigError("polling and publish intervals must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> RouteSyncConfig:
        """Create configuration from ``ROUTESYNC_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "ROUTESYNC_DELIVERY_BASE_URL": "delivery_base_url",
            "ROUTESYNC_POSITION_BASE_URL": "position_base_url",
            "ROUTESYNC_MQTT_HOST": "mqtt_host",
            "ROUTESYNC_MQTT_TRANSPORT": "mqtt_transport",
            "ROUTESYNC_MQTT_CLIENT_ID_PREFIX": "mqtt_client_id_prefix",
        }
        _ENV_FLOAT_MAP = {
            "ROUTESYNC_REQUEST_TIMEOUT": "request_timeout",
            "ROUTESYNC_OFF_ROUTE_THRESHOLD_M": "off_route_threshold_m",
            "ROUTESYNC_DRIVER_RECALC_COOLDOWN_S": "driver_recalc_cooldown_s",
            "ROUTESYNC_ADMIN_RECALC_COOLDOWN_S": "admin_recalc_cooldown_s",
            "ROUTESYNC_ARRIVAL_RADIUS_M": "arrival_radius_m",
            "ROUTESYNC_POSITION_PUBLISH_INTERVAL_S": "position_publish_interval_s",
            "ROUTESYNC_ADMIN_POLL_INTERVAL_S": "admin_poll_interval_s",
        }
        _ENV_INT_MAP = {
            "ROUTESYNC_MQTT_PORT": "mqtt_port",
            "ROUTESYNC_MQTT_KEEPALIVE": "mqtt_keepalive",
        }
        _ENV_BOOL_MAP = {
            "ROUTESYNC_MQTT_TLS": ("mqtt_tls", False),
            "ROUTESYNC_BOOTSTRAP_ACTIVE_ROUTE": ("bootstrap_active_route", True),
        }

        config_kwargs: dict[str, Any] = {}
        try:
            for env_key, field_name in _ENV_STR_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = val.strip()
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = float(val)
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = int(val)
        except ValueError as exc:
            raise RouteSyncConfigError(f"Invalid numeric environment value: {exc}") from exc

        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)
