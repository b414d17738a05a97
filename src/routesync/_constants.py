"""Internal constants shared across the library."""

DELIVERY_BASE_URL = "http://localhost:8087/api"
POSITION_BASE_URL = "http://localhost:8088/api"
MQTT_HOST = "localhost"
MQTT_WS_PORT = 9001

# ------------------------------------------------------------------
# Persisted session keys
# ------------------------------------------------------------------

KEY_ACTIVE_ROUTE_ID = "activeRouteId"
KEY_CURRENT_SEGMENT_INDEX = "currentSegmentIndex"
KEY_VEHICLE_ID = "vehicleId"
KEY_IS_ON_ROUTE = "isOnRoute"
KEY_WATERMARK_PREFIX = "lastEventTimestamp:"
KEY_AUTH_TOKEN = "authToken"
KEY_USER_ID = "userId"

SESSION_KEYS: tuple[str, ...] = (
    KEY_ACTIVE_ROUTE_ID,
    KEY_CURRENT_SEGMENT_INDEX,
    KEY_VEHICLE_ID,
    KEY_IS_ON_ROUTE,
)

# ------------------------------------------------------------------
# Publish/subscribe topics
# ------------------------------------------------------------------

TOPIC_PREFIX = "vehicle/"
ROUTE_STARTED_SUFFIX = "/route-started"
WILDCARD_ROUTE_TOPIC = "vehicle/+/route-started"


def route_started_topic(vehicle_id: str) -> str:
    return f"vehicle/{vehicle_id}/route-started"


def position_topic(vehicle_id: str) -> str:
    return f"vehicle/{vehicle_id}/position"


# ------------------------------------------------------------------
# Backend vocabulary
# ------------------------------------------------------------------

STATUS_ON_ROUTE = "ON_ROUTE"
STATUS_IN_TRANSIT = "IN_TRANSIT"
ORDER_STATUS_PICKED_UP = "PICKED_UP"
CODE_OK = 200

VIRTUAL_NODE_PREFIXES: tuple[str, ...] = ("START_", "RESCUE_")

EARTH_RADIUS_M = 6_371_000.0
