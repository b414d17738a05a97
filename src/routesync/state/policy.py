"""Deterministic reconciliation policy.

Pure functions only: no I/O, no payload parsing.  The session manager
gathers the evidence and applies whatever these functions decide.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from routesync._constants import STATUS_ON_ROUTE
from routesync.models.route import RouteMetadata, RouteSegment, SegmentRole
from routesync.storage import PersistedSession


def is_newer_than_watermark(event_ts: datetime | None, watermark: datetime | None) -> bool:
    """Decide whether an event passes the per-vehicle watermark.

    Timestamps form a strict total order: an event equal to the watermark
    is a duplicate.  Events without a timestamp cannot be ordered and are
    let through; they never move the watermark.
    """
    if event_ts is None or watermark is None:
        return True
    return event_ts > watermark


class RestoreVerdict(StrEnum):
    NO_SESSION = "no_session"
    INVALID = "invalid"
    ACTIVE = "active"


@dataclass(frozen=True)
class RestoreResolution:
    """Outcome of merging the three restore sources of truth.

    ``INVALID`` means persisted state exists but must be wiped.
    """

    verdict: RestoreVerdict
    reason: str = ""
    route_id: str | None = None
    vehicle_id: str | None = None
    segment_index: int = 0
    on_route: bool = False

    @property
    def is_active(self) -> bool:
        return self.verdict == RestoreVerdict.ACTIVE


def resolve_restored_session(
    *,
    persisted: PersistedSession,
    metadata: RouteMetadata | None,
    current_user_id: str | None,
    driver_status: str | None,
) -> RestoreResolution:
    """Merge persisted state, the backend route record and the live driver status.

    Any evidence that the route is not ours or no longer running wins over
    the cached "active" signal.  ``metadata`` is ``None`` when the route
    fetch failed, which counts as such evidence.  ``driver_status``
    can only switch ``on_route`` off: the persisted flag is kept while the
    backend says the driver is ``ON_ROUTE``.
    """
    status_allows = driver_status == STATUS_ON_ROUTE

    if persisted.active_route_id is None:
        return RestoreResolution(verdict=RestoreVerdict.NO_SESSION, reason="nothing persisted")

    if metadata is None:
        return RestoreResolution(verdict=RestoreVerdict.INVALID, reason="route snapshot unavailable")

    if current_user_id is None or metadata.associated_user_id != current_user_id:
        return RestoreResolution(verdict=RestoreVerdict.INVALID, reason="route belongs to another user")

    if metadata.completed:
        return RestoreResolution(verdict=RestoreVerdict.INVALID, reason="route already completed")

    vehicle_id = persisted.vehicle_id or metadata.vehicle_id
    if persisted.current_segment_index is not None:
        index = persisted.current_segment_index
    else:
        index = metadata.current_segment_index or 0

    return RestoreResolution(
        verdict=RestoreVerdict.ACTIVE,
        route_id=persisted.active_route_id,
        vehicle_id=vehicle_id,
        segment_index=index,
        on_route=persisted.is_on_route and status_allows,
    )


def deliverable_order_ids(segments: Sequence[RouteSegment], index: int) -> tuple[str, ...]:
    """Orders of ``segments[index]`` that may be confirmed as delivered.

    An order qualifies only if a segment at a strictly smaller index ends
    at a ``Pickup`` stop and carries the same order id.
    """
    if not 0 <= index < len(segments):
        return ()
    picked_up: set[str] = set()
    for earlier in segments[:index]:
        if earlier.to_role == SegmentRole.PICKUP:
            picked_up.update(earlier.order_ids)
    return tuple(order_id for order_id in segments[index].order_ids if order_id in picked_up)
