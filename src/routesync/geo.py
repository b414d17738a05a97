"""Great-circle distance helpers.

Points are ``(latitude, longitude)`` tuples in decimal degrees.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from routesync._constants import EARTH_RADIUS_M

LatLon = tuple[float, float]


def haversine_m(a: LatLon, b: LatLon) -> float:
    """Return the haversine distance in metres between two points."""
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def min_distance_to_path_m(point: LatLon, path: Sequence[LatLon]) -> float:
    """Minimum distance from *point* to any vertex of *path*.

    Returns ``math.inf`` for an empty path.
    """
    return min((haversine_m(point, vertex) for vertex in path), default=math.inf)


def distance_to_destination_m(point: LatLon, path: Sequence[LatLon]) -> float:
    """Distance from *point* to the last vertex of *path* (``inf`` if empty)."""
    if not path:
        return math.inf
    return haversine_m(point, path[-1])
