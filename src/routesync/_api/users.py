"""Driver status endpoint of the position service."""

from __future__ import annotations

from routesync._api._common import path_id
from routesync._transport import Service, Transport
from routesync.ingestion.normalize import safe_str, unwrap


async def fetch_driver_status(transport: Transport, user_id: str) -> str | None:
    """Return the driver's ``userStatus`` (e.g. ``ON_ROUTE``), if reported."""
    body = await transport.request("GET", f"/users/{path_id(user_id)}", service=Service.POSITION)
    return safe_str(unwrap(body, "user").get("userStatus"))
