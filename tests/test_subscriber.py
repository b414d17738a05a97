from __future__ import annotations

from typing import Any

from routesync.subscriber import RouteEventSubscriber, SubscriptionState

WILDCARD = "vehicle/+/route-started"


def test_known_vehicle_subscribes_specific_directly(channel: Any) -> None:
    subscriber = RouteEventSubscriber(channel)

    assert subscriber.start("V1") == SubscriptionState.SUBSCRIBED_SPECIFIC
    assert channel.operations == [("subscribe", "vehicle/V1/route-started")]
    assert subscriber.topic == "vehicle/V1/route-started"


def test_unknown_vehicle_uses_wildcard_then_promotes(channel: Any) -> None:
    subscriber = RouteEventSubscriber(channel)

    assert subscriber.start(None) == SubscriptionState.SUBSCRIBED_WILDCARD
    assert subscriber.is_wildcard
    assert subscriber.promote("V7")

    assert subscriber.state == SubscriptionState.SUBSCRIBED_SPECIFIC
    assert subscriber.vehicle_id == "V7"
    assert channel.operations == [
        ("subscribe", WILDCARD),
        ("unsubscribe", WILDCARD),
        ("subscribe", "vehicle/V7/route-started"),
    ]
    assert channel.topics == {"vehicle/V7/route-started"}


def test_promote_is_ignored_unless_on_wildcard(channel: Any) -> None:
    subscriber = RouteEventSubscriber(channel)
    assert not subscriber.promote("V1")
    subscriber.start("V1")
    assert not subscriber.promote("V2")
    assert subscriber.topic == "vehicle/V1/route-started"


def test_disconnect_returns_to_unsubscribed(channel: Any) -> None:
    subscriber = RouteEventSubscriber(channel)
    subscriber.start("V1")

    subscriber.on_disconnect()

    assert subscriber.state == SubscriptionState.UNSUBSCRIBED
    assert subscriber.topic is None


def test_stop_unsubscribes_current_topic(channel: Any) -> None:
    subscriber = RouteEventSubscriber(channel)
    subscriber.start(None)

    subscriber.stop()

    assert subscriber.state == SubscriptionState.UNSUBSCRIBED
    assert channel.topics == set()
    assert channel.operations[-1] == ("unsubscribe", WILDCARD)
