"""Route-change events received on the publish/subscribe stream."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from routesync.ingestion.normalize import parse_iso_timestamp, safe_str
from routesync.models._base import RouteSyncBaseModel


class RouteChangeKind(StrEnum):
    NORMAL = "normal"
    RESCUE = "rescue"

    @classmethod
    def _missing_(cls, value: object) -> RouteChangeKind:
        return cls.NORMAL


class RouteChangeEvent(RouteSyncBaseModel):
    """A ``route-started`` notification.  Ephemeral, consumed once.

    Parameters
    ----------
    route_id : str
        Route the notification is about.
    kind : RouteChangeKind
        ``rescue`` for rescue insertions, ``normal`` otherwise.
    timestamp : datetime or None
        Event time (``timestamp`` or ``ts`` on the wire), aware UTC.
    retained : bool
        Whether the broker replayed a stored message on (re)subscribe.
    vehicle_id : str or None
        Vehicle id taken from the topic.
    topic : str
        Topic the message arrived on.
    """

    route_id: str
    kind: RouteChangeKind = RouteChangeKind.NORMAL
    timestamp: datetime | None = Field(default=None, validation_alias=AliasChoices("timestamp", "ts"))
    retained: bool = False
    vehicle_id: str | None = None
    topic: str = ""

    @field_validator("route_id", "vehicle_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value: Any) -> RouteChangeKind:
        if isinstance(value, str):
            return RouteChangeKind(value.strip().lower())
        return RouteChangeKind.NORMAL

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> datetime | None:
        return parse_iso_timestamp(value)

    @property
    def is_rescue(self) -> bool:
        return self.kind == RouteChangeKind.RESCUE
