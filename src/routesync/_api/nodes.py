"""Node lookup endpoint.

Only real node ids reach this module; virtual start/rescue markers are
resolved from their labels at parse time.
"""

from __future__ import annotations

import logging

from routesync._api._common import path_id
from routesync._transport import Transport
from routesync.exceptions import RouteSyncTransportError
from routesync.ingestion.normalize import safe_str, unwrap

_logger = logging.getLogger(__name__)


async def fetch_node_name(transport: Transport, node_id: str) -> str:
    """Return the display name of *node_id*, or the id itself when unavailable."""
    endpoint = f"/nodes/{path_id(node_id)}"
    try:
        body = await transport.request("GET", endpoint)
    except RouteSyncTransportError:
        _logger.debug("Node lookup failed for node_id=%s", node_id, exc_info=True)
        return node_id
    return safe_str(unwrap(body, "node").get("name")) or node_id
