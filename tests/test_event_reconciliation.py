from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from routesync.exceptions import RouteSyncAuthenticationError, RouteSyncTransportError
from routesync.models.notice import NoticeKind
from routesync.subscriber import SubscriptionState

WILDCARD = "vehicle/+/route-started"
T1 = "2026-03-01T10:00:00Z"
T2 = "2026-03-01T10:05:00Z"


def _rows(*ids: str) -> list[dict[str, Any]]:
    return [
        {
            "id": seg_id,
            "geometry": [[9.0, 45.0], [9.0, 45.001]],
            "toLabel": "Delivery",
            "toNodeIndex": f"RESCUE_{seg_id}",
            "orderIds": [],
        }
        for seg_id in ids
    ]


def _payload(route_id: str, ts: str | None = None, kind: str = "normal") -> bytes:
    body: dict[str, Any] = {"routeId": route_id, "kind": kind}
    if ts is not None:
        body["timestamp"] = ts
    return json.dumps(body).encode()


@pytest.fixture
def known_vehicle(store: Any) -> Any:
    store._data["vehicleId"] = "V1"
    return store


@pytest.mark.asyncio
async def test_retained_redelivery_of_same_event_is_a_noop(
    manager: Any, backend: Any, known_vehicle: Any, notices: list
) -> None:
    backend.on("GET", "/vehicle-routes/R1/realpath", _rows("S0", "S1"))
    topic = "vehicle/V1/route-started"

    assert await manager.handle_message(topic, _payload("R1", T1))
    snapshot = known_vehicle.snapshot()
    assert await manager.handle_message(topic, _payload("R1", T1), retained=True) is False

    assert known_vehicle.snapshot() == snapshot
    assert [n.kind for n in notices] == [NoticeKind.NEW_ROUTE]
    assert len(backend.called("GET", "/vehicle-routes/R1/realpath")) == 1


@pytest.mark.asyncio
async def test_new_route_is_persisted_and_announced(
    manager: Any, backend: Any, known_vehicle: Any, notices: list
) -> None:
    backend.on("GET", "/vehicle-routes/R1/realpath", _rows("S0", "S1"))

    assert await manager.handle_message("vehicle/V1/route-started", _payload("R1", T1))

    snapshot = known_vehicle.snapshot()
    assert snapshot["activeRouteId"] == "R1"
    assert snapshot["isOnRoute"] == "true"
    assert snapshot["lastEventTimestamp:V1"] == "2026-03-01T10:00:00+00:00"
    assert "currentSegmentIndex" not in snapshot
    session = manager.session
    assert session.is_active
    assert session.on_route
    assert session.current_segment_index == 0
    assert [s.id for s in session.segments] == ["S0", "S1"]
    assert notices[-1].message == "Route accepted: let's go!"
    # Virtual destinations are never looked up.
    assert not [c for c in backend.calls if c.path.startswith("/nodes/")]


@pytest.mark.asyncio
async def test_new_route_keeps_a_persisted_progress_pointer(
    manager: Any, backend: Any, known_vehicle: Any, notices: list
) -> None:
    known_vehicle._data["currentSegmentIndex"] = "1"
    backend.on("GET", "/vehicle-routes/R2/realpath", _rows("S0", "S1", "S2"))

    assert await manager.handle_message("vehicle/V1/route-started", _payload("R2", T1, kind="rescue"))

    assert manager.session.current_segment_index == 1
    assert notices[-1].message == "You have been assigned a rescue route."


@pytest.mark.asyncio
async def test_event_for_current_route_refreshes_segments(
    manager: Any, backend: Any, known_vehicle: Any, notices: list
) -> None:
    known_vehicle._data["currentSegmentIndex"] = "2"
    backend.on("GET", "/vehicle-routes/R1/realpath", _rows("S0", "S1", "S2"))
    await manager.handle_message("vehicle/V1/route-started", _payload("R1", T1))
    assert manager.session.current_segment_index == 2

    backend.on("GET", "/vehicle-routes/R1/realpath", _rows("S0", "S1", "S2", "S3"))
    assert await manager.handle_message("vehicle/V1/route-started", _payload("R1", T2, kind="rescue"))

    assert [s.id for s in manager.session.segments] == ["S0", "S1", "S2", "S3"]
    assert manager.session.current_segment_index == 2
    assert notices[-1].kind == NoticeKind.ROUTE_UPDATED
    assert notices[-1].message == "New rescue stops were added to your route."
    assert known_vehicle.snapshot()["lastEventTimestamp:V1"] == "2026-03-01T10:05:00+00:00"


@pytest.mark.asyncio
async def test_out_of_order_event_is_dropped(manager: Any, backend: Any, known_vehicle: Any) -> None:
    backend.on("GET", "/vehicle-routes/R2/realpath", _rows("S0"))
    assert await manager.handle_message("vehicle/V1/route-started", _payload("R2", T2))

    assert await manager.handle_message("vehicle/V1/route-started", _payload("R1", T1)) is False
    assert manager.session.active_route_id == "R2"


@pytest.mark.asyncio
async def test_event_without_timestamp_does_not_move_watermark(
    manager: Any, backend: Any, known_vehicle: Any
) -> None:
    backend.on("GET", "/vehicle-routes/R1/realpath", _rows("S0"))

    assert await manager.handle_message("vehicle/V1/route-started", _payload("R1"))

    assert "lastEventTimestamp:V1" not in known_vehicle.snapshot()


@pytest.mark.asyncio
async def test_malformed_messages_are_ignored(manager: Any, backend: Any) -> None:
    assert await manager.handle_message("vehicle/V1/route-started", b"{oops") is False
    assert await manager.handle_message("vehicle/V1/route-started", b'{"kind": "normal"}') is False
    assert await manager.handle_message("vehicle/V1/other", _payload("R1", T1)) is False
    assert backend.calls == []


@pytest.mark.asyncio
async def test_retained_event_without_active_route_needs_on_route_status(
    manager: Any, backend: Any, known_vehicle: Any
) -> None:
    backend.on("GET", "/users/user-1", {"userStatus": "AVAILABLE"})
    backend.on("GET", "/vehicle-routes/R1/realpath", _rows("S0"))

    assert await manager.handle_message("vehicle/V1/route-started", _payload("R1", T1), retained=True) is False
    assert "lastEventTimestamp:V1" not in known_vehicle.snapshot()
    assert not manager.session.is_active

    backend.on("GET", "/users/user-1", {"userStatus": "ON_ROUTE"})
    assert await manager.handle_message("vehicle/V1/route-started", _payload("R1", T1), retained=True)
    assert manager.session.active_route_id == "R1"


@pytest.mark.asyncio
async def test_retained_guard_failure_discards(manager: Any, backend: Any, known_vehicle: Any) -> None:
    backend.on("GET", "/users/user-1", RouteSyncTransportError("HTTP 502", status_code=502))

    assert await manager.handle_message("vehicle/V1/route-started", _payload("R1", T1), retained=True) is False
    assert "activeRouteId" not in known_vehicle.snapshot()


@pytest.mark.asyncio
async def test_wildcard_event_for_foreign_route_is_discarded(
    manager: Any, backend: Any, store: Any, channel: Any
) -> None:
    manager.start_subscription()
    assert manager.subscriber.state == SubscriptionState.SUBSCRIBED_WILDCARD
    backend.on("GET", "/vehicle-routes/R9", {"associatedUserId": "user-2", "vehicleId": "V2"})
    before = store.snapshot()

    assert await manager.handle_message("vehicle/V2/route-started", _payload("R9", T1)) is False

    assert manager.subscriber.state == SubscriptionState.SUBSCRIBED_WILDCARD
    assert channel.operations == [("subscribe", WILDCARD)]
    assert store.snapshot() == before


@pytest.mark.asyncio
async def test_wildcard_event_for_own_route_promotes_subscription(
    manager: Any, backend: Any, store: Any, channel: Any, notices: list
) -> None:
    manager.start_subscription()
    backend.on("GET", "/vehicle-routes/R9", {"associatedUserId": "user-1", "vehicleId": "V2"})
    backend.on("GET", "/vehicle-routes/R9/realpath", _rows("S0"))

    assert await manager.handle_message("vehicle/V2/route-started", _payload("R9", T1))

    assert manager.subscriber.state == SubscriptionState.SUBSCRIBED_SPECIFIC
    assert channel.topics == {"vehicle/V2/route-started"}
    snapshot = store.snapshot()
    assert snapshot["vehicleId"] == "V2"
    assert snapshot["activeRouteId"] == "R9"
    assert manager.session.vehicle_id == "V2"
    assert notices[-1].kind == NoticeKind.NEW_ROUTE


@pytest.mark.asyncio
async def test_refresh_failure_keeps_watermark_and_subscription(
    manager: Any, backend: Any, known_vehicle: Any, notices: list
) -> None:
    backend.on("GET", "/vehicle-routes/R1/realpath", _rows("S0"))
    await manager.handle_message("vehicle/V1/route-started", _payload("R1", T1))
    backend.on("GET", "/vehicle-routes/R1/realpath", RouteSyncTransportError("timeout"))

    assert await manager.handle_message("vehicle/V1/route-started", _payload("R1", T2)) is False

    assert known_vehicle.snapshot()["lastEventTimestamp:V1"] == "2026-03-01T10:05:00+00:00"
    assert [s.id for s in manager.session.segments] == ["S0"]
    assert [n.kind for n in notices] == [NoticeKind.NEW_ROUTE]


@pytest.mark.asyncio
async def test_wildcard_resolution_without_user_surfaces_auth(
    manager: Any, store: Any, notices: list
) -> None:
    store._data.pop("userId")
    manager.start_subscription()

    with pytest.raises(RouteSyncAuthenticationError):
        await manager.handle_message("vehicle/V2/route-started", _payload("R9", T1))

    assert notices[-1].kind == NoticeKind.AUTH_REQUIRED


@pytest.mark.asyncio
async def test_events_after_close_are_ignored(manager: Any, backend: Any, known_vehicle: Any) -> None:
    manager.start_subscription()
    manager.close()

    assert await manager.handle_message("vehicle/V1/route-started", _payload("R1", T1)) is False
    assert backend.calls == []


@pytest.mark.asyncio
async def test_wildcard_burst_never_adopts_a_foreign_route(
    manager: Any, backend: Any, store: Any, channel: Any
) -> None:
    manager.start_subscription()
    backend.on("GET", "/users/user-1", {"userStatus": "ON_ROUTE"})
    backend.on("GET", "/vehicle-routes/R1", {"associatedUserId": "user-1", "vehicleId": "V1"})
    backend.on("GET", "/vehicle-routes/R1/realpath", _rows("S0"))
    backend.on("GET", "/vehicle-routes/R9", {"associatedUserId": "user-2", "vehicleId": "V9"})
    backend.on("GET", "/vehicle-routes/R9/realpath", _rows("S9"))

    results = await asyncio.gather(
        manager.handle_message("vehicle/V1/route-started", _payload("R1", T1), retained=True),
        manager.handle_message("vehicle/V9/route-started", _payload("R9", T2), retained=True),
    )

    assert results == [True, False]
    assert manager.session.active_route_id == "R1"
    assert store.snapshot()["activeRouteId"] == "R1"
    assert channel.topics == {"vehicle/V1/route-started"}
    assert not backend.called("GET", "/vehicle-routes/R9/realpath")


@pytest.mark.asyncio
async def test_event_after_disconnect_is_checked_for_ownership(
    manager: Any, backend: Any, known_vehicle: Any
) -> None:
    await manager.restore()
    manager.start_subscription()
    assert manager.subscriber.state == SubscriptionState.SUBSCRIBED_SPECIFIC
    manager.on_channel_disconnected()
    assert manager.subscriber.state == SubscriptionState.UNSUBSCRIBED
    backend.on("GET", "/vehicle-routes/R9", {"associatedUserId": "user-2", "vehicleId": "V9"})

    assert await manager.handle_message("vehicle/V9/route-started", _payload("R9", T1)) is False

    assert not manager.session.is_active
    assert "activeRouteId" not in known_vehicle.snapshot()
    assert known_vehicle.snapshot()["vehicleId"] == "V1"


@pytest.mark.asyncio
async def test_own_route_on_another_vehicle_moves_the_subscription(
    manager: Any, backend: Any, known_vehicle: Any, channel: Any
) -> None:
    await manager.restore()
    manager.start_subscription()
    assert channel.topics == {"vehicle/V1/route-started"}
    backend.on("GET", "/vehicle-routes/R7", {"associatedUserId": "user-1", "vehicleId": "V7"})
    backend.on("GET", "/vehicle-routes/R7/realpath", _rows("S0"))

    assert await manager.handle_message("vehicle/V7/route-started", _payload("R7", T1))

    assert manager.session.vehicle_id == "V7"
    assert known_vehicle.snapshot()["vehicleId"] == "V7"
    assert channel.topics == {"vehicle/V7/route-started"}


@pytest.mark.asyncio
async def test_new_route_without_a_path_is_dropped(
    manager: Any, backend: Any, known_vehicle: Any, notices: list
) -> None:
    backend.on("GET", "/vehicle-routes/R1/realpath", [])

    assert await manager.handle_message("vehicle/V1/route-started", _payload("R1", T1)) is False

    snapshot = known_vehicle.snapshot()
    assert "activeRouteId" not in snapshot
    assert "lastEventTimestamp:V1" not in snapshot
    assert snapshot["isOnRoute"] == "false"
    assert snapshot["vehicleId"] == "V1"
    assert not manager.session.is_active
    assert manager.session.vehicle_id == "V1"
    assert notices[-1].kind == NoticeKind.SESSION_CLEARED
