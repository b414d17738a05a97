"""Off-route detection.

One algorithm serves both the driver app and the admin live map.  They
differ only in the cooldown: the driver re-triggers on every off-route
sample, the admin view polls many vehicles and must not storm the
recalculation endpoint.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from routesync.geo import LatLon, min_distance_to_path_m


@dataclass(frozen=True)
class OffRouteCheck:
    distance_m: float
    off_route: bool
    triggered: bool


class OffRouteDetector:
    """Decide when a position sample warrants a recalculation request.

    Parameters
    ----------
    threshold_m
        Minimum distance to the segment path that counts as off route.
    cooldown_s
        Seconds after a trigger during which further off-route samples
        are reported but do not trigger.  ``0`` disables the cooldown.
    clock
        Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        *,
        threshold_m: float = 50.0,
        cooldown_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold_m = threshold_m
        self._cooldown_s = cooldown_s
        self._clock = clock
        self._cooldown_until: float | None = None

    @property
    def threshold_m(self) -> float:
        return self._threshold_m

    @property
    def cooldown_s(self) -> float:
        return self._cooldown_s

    def check(self, position: LatLon, path: Sequence[LatLon]) -> OffRouteCheck:
        """Measure *position* against *path* and arm the cooldown on trigger."""
        distance = min_distance_to_path_m(position, path)
        off_route = bool(path) and distance > self._threshold_m
        if not off_route:
            return OffRouteCheck(distance_m=distance, off_route=False, triggered=False)

        now = self._clock()
        if self._cooldown_until is not None and now < self._cooldown_until:
            return OffRouteCheck(distance_m=distance, off_route=True, triggered=False)

        if self._cooldown_s > 0:
            self._cooldown_until = now + self._cooldown_s
        return OffRouteCheck(distance_m=distance, off_route=True, triggered=True)

    def reset(self) -> None:
        self._cooldown_until = None
