"""Topic subscription state for the route-change stream."""

from __future__ import annotations

import logging
from enum import StrEnum

from routesync._constants import WILDCARD_ROUTE_TOPIC, route_started_topic
from routesync._mqtt import RouteChannel

_logger = logging.getLogger(__name__)


class SubscriptionState(StrEnum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBED_WILDCARD = "subscribed_wildcard"
    SUBSCRIBED_SPECIFIC = "subscribed_specific"


class RouteEventSubscriber:
    """Track which ``route-started`` topic the client listens on.

    With a known vehicle the specific topic is used directly.  Otherwise
    the wildcard topic is used until a message resolves the vehicle, after
    which :meth:`promote` swaps to the specific topic.  Once specific, the
    subscriber stays there until the channel drops or :meth:`stop` is
    called.
    """

    def __init__(self, channel: RouteChannel) -> None:
        self._channel = channel
        self._state = SubscriptionState.UNSUBSCRIBED
        self._topic: str | None = None
        self._vehicle_id: str | None = None

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def topic(self) -> str | None:
        return self._topic

    @property
    def vehicle_id(self) -> str | None:
        return self._vehicle_id

    @property
    def is_wildcard(self) -> bool:
        return self._state == SubscriptionState.SUBSCRIBED_WILDCARD

    def start(self, vehicle_id: str | None) -> SubscriptionState:
        """Subscribe for *vehicle_id*, or to the wildcard when it is unknown."""
        if self._state != SubscriptionState.UNSUBSCRIBED:
            self.stop()
        if vehicle_id:
            self._subscribe_specific(vehicle_id)
        else:
            self._channel.subscribe(WILDCARD_ROUTE_TOPIC)
            self._topic = WILDCARD_ROUTE_TOPIC
            self._state = SubscriptionState.SUBSCRIBED_WILDCARD
            _logger.debug("Subscribed to wildcard route topic")
        return self._state

    def promote(self, vehicle_id: str) -> bool:
        """Swap the wildcard subscription for the vehicle-specific topic.

        Returns ``False`` (and does nothing) unless currently on the wildcard.
        """
        if self._state != SubscriptionState.SUBSCRIBED_WILDCARD:
            return False
        self._channel.unsubscribe(WILDCARD_ROUTE_TOPIC)
        self._subscribe_specific(vehicle_id)
        return True

    def _subscribe_specific(self, vehicle_id: str) -> None:
        topic = route_started_topic(vehicle_id)
        self._channel.subscribe(topic)
        self._topic = topic
        self._vehicle_id = vehicle_id
        self._state = SubscriptionState.SUBSCRIBED_SPECIFIC
        _logger.debug("Subscribed to route topic=%s", topic)

    def on_disconnect(self) -> None:
        """Forget the subscription after the channel dropped."""
        self._state = SubscriptionState.UNSUBSCRIBED
        self._topic = None

    def stop(self) -> None:
        topic = self._topic
        self._state = SubscriptionState.UNSUBSCRIBED
        self._topic = None
        if topic is not None:
            self._channel.unsubscribe(topic)
