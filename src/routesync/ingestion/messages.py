"""Broker message ingestion.

Turns raw ``route-started`` publications into :class:`RouteChangeEvent`.
Anything unusable is dropped here, so a bad message can never break the
subscription.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from routesync._constants import ROUTE_STARTED_SUFFIX, TOPIC_PREFIX
from routesync.models.events import RouteChangeEvent

_logger = logging.getLogger(__name__)


def vehicle_from_topic(topic: str) -> str | None:
    """Return the vehicle id of a ``vehicle/<id>/route-started`` topic.

    ``None`` for other topic shapes and for the ``+`` wildcard segment.
    """
    if not topic.startswith(TOPIC_PREFIX) or not topic.endswith(ROUTE_STARTED_SUFFIX):
        return None
    middle = topic[len(TOPIC_PREFIX) : -len(ROUTE_STARTED_SUFFIX)]
    if not middle or "/" in middle or middle in {"+", "#"}:
        return None
    return middle


def parse_route_message(topic: str, payload: bytes | str, *, retained: bool = False) -> RouteChangeEvent | None:
    """Parse one broker message, or return ``None`` if it must be discarded."""
    vehicle_id = vehicle_from_topic(topic)
    if vehicle_id is None:
        _logger.debug("Discarding message on unexpected topic=%s", topic)
        return None

    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        parsed: Any = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError):
        _logger.debug("Discarding non-JSON payload on topic=%s", topic)
        return None

    if not isinstance(parsed, dict) or not parsed.get("routeId"):
        _logger.debug("Discarding payload without routeId on topic=%s", topic)
        return None

    try:
        return RouteChangeEvent.model_validate(
            {
                **parsed,
                "retained": retained,
                "vehicleId": vehicle_id,
                "topic": topic,
            }
        )
    except ValidationError:
        _logger.debug("Discarding malformed route event on topic=%s", topic, exc_info=True)
        return None
