"""Internal MQTT runtime for the route-change stream."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from routesync.config import RouteSyncConfig


@dataclass(frozen=True)
class ChannelMessage:
    """One broker publication as seen by the asyncio side."""

    topic: str
    payload: bytes
    retained: bool = False


class RouteChannel(Protocol):
    """What the subscriber and the session manager need from a broker connection."""

    @property
    def is_connected(self) -> bool: ...

    def subscribe(self, topic: str) -> None: ...

    def unsubscribe(self, topic: str) -> None: ...

    def publish(self, topic: str, payload: Mapping[str, Any], *, qos: int = 1) -> None: ...


def build_client_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(6)}"


class RouteChannelRuntime:
    """Threaded paho-mqtt runtime that emits messages onto an asyncio loop.

    Topic subscriptions are remembered and re-issued on every (re)connect,
    so callers can subscribe before the broker has accepted the connection.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        config: RouteSyncConfig,
        on_message: Callable[[ChannelMessage], None],
        on_connection_change: Callable[[bool], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._config = config
        self._on_message = on_message
        self._on_connection_change = on_connection_change
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._connected = False
        self._topics: set[str] = set()
        self._topics_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def topics(self) -> frozenset[str]:
        with self._topics_lock:
            return frozenset(self._topics)

    def start(
        self,
        *,
        client_id: str | None = None,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        """Connect to the configured broker and start the network loop."""
        self.stop()
        cid = client_id or build_client_id(self._config.mqtt_client_id_prefix)
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s transport=%s client_id=%s",
            self._config.mqtt_host,
            self._config.mqtt_port,
            self._config.mqtt_transport,
            cid,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=cid,
            transport=self._config.mqtt_transport,
        )
        client.enable_logger(self._logger)
        if username:
            client.username_pw_set(username, password)
        if self._config.mqtt_tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            self._connected = True
            for topic in self.topics:
                self._logger.debug("MQTT subscribing topic=%s", topic)
                c.subscribe(topic, qos=1)
            self._notify_connection(True)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            message = ChannelMessage(topic=msg.topic, payload=bytes(msg.payload), retained=bool(msg.retain))
            self._logger.debug("Received PUBLISH topic=%s retained=%s", msg.topic, message.retained)
            self._loop.call_soon_threadsafe(self._on_message, message)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            was_connected = self._connected
            self._connected = False
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)
            if was_connected:
                self._notify_connection(False)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(self._config.mqtt_host, self._config.mqtt_port, keepalive=self._config.mqtt_keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def _notify_connection(self, connected: bool) -> None:
        if self._on_connection_change is not None:
            self._loop.call_soon_threadsafe(self._on_connection_change, connected)

    def subscribe(self, topic: str) -> None:
        with self._topics_lock:
            self._topics.add(topic)
        client = self._client
        if client is not None and self._connected:
            self._logger.debug("MQTT subscribing topic=%s", topic)
            client.subscribe(topic, qos=1)

    def unsubscribe(self, topic: str) -> None:
        with self._topics_lock:
            self._topics.discard(topic)
        client = self._client
        if client is not None and self._connected:
            self._logger.debug("MQTT unsubscribing topic=%s", topic)
            client.unsubscribe(topic)

    def publish(self, topic: str, payload: Mapping[str, Any], *, qos: int = 1) -> None:
        client = self._client
        if client is None or not self._connected:
            self._logger.debug("MQTT publish skipped, not connected topic=%s", topic)
            return
        client.publish(topic, json.dumps(dict(payload), separators=(",", ":")), qos=qos)

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._connected = False
        with self._topics_lock:
            self._topics.clear()

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
