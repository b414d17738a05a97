"""Order status endpoints."""

from __future__ import annotations

from routesync._api._common import path_id
from routesync._constants import ORDER_STATUS_PICKED_UP
from routesync._transport import Transport


async def mark_delivered(transport: Transport, order_id: str) -> None:
    await transport.request("PATCH", f"/orders/{path_id(order_id)}/mark-delivered")


async def mark_picked_up(transport: Transport, order_id: str) -> None:
    await transport.request(
        "PATCH",
        f"/orders/{path_id(order_id)}/status",
        params={"status": ORDER_STATUS_PICKED_UP},
    )
