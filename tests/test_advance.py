from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio

from routesync.exceptions import RouteSessionError, RouteSyncTransportError
from routesync.models.notice import NoticeKind
from routesync.models.session import AdvanceOutcome, RouteSession


def _row(seg_id: str, to_label: str, orders: list[str]) -> dict[str, Any]:
    return {
        "id": seg_id,
        "geometry": [[9.0, 45.0], [9.0, 45.001]],
        "toLabel": to_label,
        "toNodeIndex": f"N-{seg_id}",
        "orderIds": orders,
    }


ROWS = [
    _row("S0", "Pickup", ["O1", "O2"]),
    _row("S1", "Delivery", ["O1", "O3"]),
    _row("S2", "Depot", []),
]


@pytest_asyncio.fixture
async def active(manager: Any, backend: Any, store: Any) -> Any:
    store._data.update(
        {
            "activeRouteId": "R1",
            "vehicleId": "V1",
            "currentSegmentIndex": "0",
            "isOnRoute": "true",
            "lastEventTimestamp:V1": "2026-03-01T10:00:00+00:00",
        }
    )
    backend.on("GET", "/vehicle-routes/R1", {"associatedUserId": "user-1", "completed": False})
    backend.on("GET", "/users/user-1", {"userStatus": "ON_ROUTE"})
    backend.on("GET", "/vehicle-routes/R1/realpath", ROWS)
    for order_id in ("O1", "O2", "O3"):
        backend.on("PATCH", f"/orders/{order_id}/status", None)
        backend.on("PATCH", f"/orders/{order_id}/mark-delivered", None)
    backend.on("PATCH", "/vehicle-routes/R1/update-progress", None)
    await manager.restore()
    backend.calls.clear()
    return manager


@pytest.mark.asyncio
async def test_pickup_marks_orders_and_pushes_progress(active: Any, backend: Any, store: Any) -> None:
    assert await active.advance() == AdvanceOutcome.ADVANCED

    assert backend.paths() == [
        "PATCH /orders/O1/status",
        "PATCH /orders/O2/status",
        "PATCH /vehicle-routes/R1/update-progress",
    ]
    assert backend.calls[0].params == {"status": "PICKED_UP"}
    assert backend.calls[2].json_body == {"currentSegmentIndex": 1}
    assert active.session.current_segment_index == 1
    assert store.snapshot()["currentSegmentIndex"] == "1"


@pytest.mark.asyncio
async def test_delivery_only_confirms_orders_picked_up_earlier(active: Any, backend: Any) -> None:
    await active.advance()
    backend.calls.clear()

    assert await active.advance() == AdvanceOutcome.ADVANCED

    assert backend.called("PATCH", "/orders/O1/mark-delivered")
    assert not backend.called("PATCH", "/orders/O3/mark-delivered")


@pytest.mark.asyncio
async def test_failed_pickup_does_not_block_advancing(active: Any, backend: Any) -> None:
    backend.on("PATCH", "/orders/O1/status", RouteSyncTransportError("HTTP 500", status_code=500))

    assert await active.advance() == AdvanceOutcome.ADVANCED

    assert backend.called("PATCH", "/orders/O2/status")
    assert active.session.current_segment_index == 1


@pytest.mark.asyncio
async def test_failed_progress_push_still_advances_locally(active: Any, backend: Any, store: Any) -> None:
    backend.on("PATCH", "/vehicle-routes/R1/update-progress", RouteSyncTransportError("timeout"))

    assert await active.advance() == AdvanceOutcome.ADVANCED

    assert active.session.current_segment_index == 1
    assert store.snapshot()["currentSegmentIndex"] == "1"


@pytest.mark.asyncio
async def test_completing_last_segment_clears_session(
    active: Any, backend: Any, store: Any, notices: list
) -> None:
    backend.on("POST", "/routes/R1/complete", {"code": 200, "message": "Route completed"})
    await active.advance()
    await active.advance()

    assert await active.advance() == AdvanceOutcome.COMPLETED

    assert store.snapshot() == {"userId": "user-1", "authToken": "token-1"}
    assert active.session == RouteSession()
    assert notices[-1].kind == NoticeKind.ROUTE_COMPLETED


@pytest.mark.asyncio
async def test_rejected_completion_keeps_session(active: Any, backend: Any, store: Any, notices: list) -> None:
    backend.on("POST", "/routes/R1/complete", {"code": 409, "message": "Orders still open"})
    await active.advance()
    await active.advance()

    assert await active.advance() == AdvanceOutcome.COMPLETION_REJECTED

    assert active.session.is_active
    assert store.snapshot()["activeRouteId"] == "R1"
    assert notices[-1].kind == NoticeKind.ERROR
    assert notices[-1].message == "Orders still open"


@pytest.mark.asyncio
async def test_advance_without_session_raises(manager: Any) -> None:
    with pytest.raises(RouteSessionError):
        await manager.advance()


@pytest.mark.asyncio
async def test_confirmed_anomaly_clears_session(active: Any, backend: Any, store: Any, notices: list) -> None:
    backend.on("POST", "/routes/report-anomaly", {"code": 200})
    await active.on_position(45.0001, 9.0)

    assert await active.report_anomaly()

    body = backend.called("POST", "/routes/report-anomaly")[0].json_body
    assert body["userId"] == "user-1"
    assert body["vehicleId"] == "V1"
    assert body["activeRouteId"] == "R1"
    assert (body["anomalyLat"], body["anomalyLon"]) == (45.0001, 9.0)
    assert body["timestamp"].endswith("Z")
    assert store.snapshot() == {"userId": "user-1", "authToken": "token-1"}
    assert active.session == RouteSession()
    assert notices[-1].kind == NoticeKind.ANOMALY_REPORTED


@pytest.mark.asyncio
async def test_rejected_anomaly_keeps_session(active: Any, backend: Any, notices: list) -> None:
    backend.on("POST", "/routes/report-anomaly", {"code": 400, "message": "No rescue vehicle available"})

    assert await active.report_anomaly((45.0, 9.0)) is False

    assert active.session.is_active
    assert notices[-1].kind == NoticeKind.ERROR


@pytest.mark.asyncio
async def test_anomaly_needs_a_position(active: Any) -> None:
    with pytest.raises(RouteSessionError):
        await active.report_anomaly()
