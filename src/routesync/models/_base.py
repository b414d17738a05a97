"""Base model for backend and broker payloads.

Every wire model inherits from :class:`RouteSyncBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase backend keys map
  automatically to snake_case fields.
* A ``raw`` dict that captures the original payload.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from routesync.ingestion.normalize import safe_float

LatLon = tuple[float, float]


def lonlat_pairs_to_latlon(value: Any) -> list[LatLon]:
    """Convert backend ``[[lon, lat], ...]`` geometry into ``(lat, lon)`` tuples.

    Raises :class:`ValueError` for anything that is not a list of numeric pairs.
    """
    if not isinstance(value, (list, tuple)):
        raise ValueError("geometry must be a list of [lon, lat] pairs")
    points: list[LatLon] = []
    for pair in value:
        if not isinstance(pair, (list, tuple)) or len(pair) < 2:
            raise ValueError(f"geometry point {pair!r} is not a [lon, lat] pair")
        lon = safe_float(pair[0])
        lat = safe_float(pair[1])
        if lon is None or lat is None:
            raise ValueError(f"geometry point {pair!r} is not numeric")
        points.append((lat, lon))
    return points


class RouteSyncBaseModel(BaseModel):
    """Base for backend payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Original payload dict."""

    @model_validator(mode="before")
    @classmethod
    def _stash_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict) or "raw" in values:
            return values
        stashed = dict(values)
        stashed["raw"] = dict(values)
        return stashed
