"""High-level async client for a driver's route session."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import aiohttp

from routesync._constants import KEY_AUTH_TOKEN, KEY_USER_ID
from routesync._mqtt import ChannelMessage, RouteChannel, RouteChannelRuntime
from routesync._transport import HttpTransport, Transport
from routesync.admin import AdminLiveMonitor
from routesync.config import RouteSyncConfig
from routesync.exceptions import RouteSyncError
from routesync.geo import LatLon
from routesync.manager import NoticeCallback, RouteSessionManager
from routesync.models.session import AdvanceOutcome, RouteSession
from routesync.state.policy import RestoreResolution
from routesync.storage import MemorySessionStore, SessionStore
from routesync.subscriber import SubscriptionState

_logger = logging.getLogger(__name__)


class RouteSyncClient:
    """Async client for the route session of a signed-in driver.

    Usage::

        async with RouteSyncClient(config, store=JsonFileSessionStore(path)) as client:
            await client.set_credentials(user_id, token)
            await client.start()
            await client.on_position(lat, lon)
    """

    def __init__(
        self,
        config: RouteSyncConfig,
        *,
        store: SessionStore | None = None,
        session: aiohttp.ClientSession | None = None,
        on_notice: NoticeCallback | None = None,
        channel: RouteChannel | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self._store: SessionStore = store if store is not None else MemorySessionStore()
        self._external_session = session is not None
        self._http_session = session
        self._on_notice = on_notice
        self._external_channel = channel
        self._external_transport = transport
        self._transport: Transport | None = None
        self._runtime: RouteChannelRuntime | None = None
        self._manager: RouteSessionManager | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._heartbeat: asyncio.Task[None] | None = None
        self._message_tasks: set[asyncio.Task[bool]] = set()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RouteSyncClient:
        self._loop = asyncio.get_running_loop()
        if self._external_transport is not None:
            self._transport = self._external_transport
        else:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = HttpTransport(self._config, self._http_session, self._token)

        channel = self._external_channel
        if channel is None:
            self._runtime = RouteChannelRuntime(
                loop=self._loop,
                config=self._config,
                on_message=self._on_channel_message,
                on_connection_change=self._on_connection_change,
                logger=_logger,
            )
            channel = self._runtime

        self._manager = RouteSessionManager(
            config=self._config,
            transport=self._transport,
            store=self._store,
            channel=channel,
            on_notice=self._on_notice,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._manager is not None:
            self._manager.close()
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._heartbeat
            self._heartbeat = None
        for task in list(self._message_tasks):
            task.cancel()
        if self._message_tasks:
            await asyncio.gather(*self._message_tasks, return_exceptions=True)
        self._message_tasks.clear()
        await self._stop_runtime()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None
        self._manager = None
        self._loop = None

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def set_credentials(self, user_id: str, token: str) -> None:
        """Store the signed-in user and bearer token."""
        await self._store.set(KEY_USER_ID, user_id)
        await self._store.set(KEY_AUTH_TOKEN, token)

    async def _token(self) -> str | None:
        return await self._store.get(KEY_AUTH_TOKEN)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def _require_manager(self) -> RouteSessionManager:
        if self._manager is None:
            raise RouteSyncError("Client not initialized. Use 'async with RouteSyncClient(...) as client:'")
        return self._manager

    @property
    def manager(self) -> RouteSessionManager:
        return self._require_manager()

    @property
    def session(self) -> RouteSession:
        return self._require_manager().session

    async def start(self) -> RestoreResolution:
        """Restore the session, connect the stream and start the position heartbeat."""
        manager = self._require_manager()
        resolution = await manager.restore()
        if not resolution.is_active and self._config.bootstrap_active_route:
            await manager.bootstrap_from_server()
        await self._start_runtime()
        manager.start_subscription()
        if self._heartbeat is None:
            self._heartbeat = asyncio.create_task(self._heartbeat_loop())
        return resolution

    async def on_position(self, lat: float, lon: float) -> bool:
        return await self._require_manager().on_position(lat, lon)

    def is_near_destination(self) -> bool:
        return self._require_manager().is_near_destination()

    async def advance(self) -> AdvanceOutcome:
        return await self._require_manager().advance()

    async def report_anomaly(self, position: LatLon | None = None) -> bool:
        return await self._require_manager().report_anomaly(position)

    def admin_monitor(self) -> AdminLiveMonitor:
        """Live-map monitor sharing this client's transport."""
        if self._transport is None:
            raise RouteSyncError("Client not initialized. Use 'async with RouteSyncClient(...) as client:'")
        return AdminLiveMonitor(config=self._config, transport=self._transport)

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    async def _start_runtime(self) -> None:
        """Best-effort broker connection (failures must not break REST flow)."""
        runtime = self._runtime
        if runtime is None or runtime.is_running:
            return
        loop = self._loop or asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, runtime.start)
        except Exception:
            _logger.warning("MQTT startup failed", exc_info=True)

    async def _stop_runtime(self) -> None:
        runtime = self._runtime
        self._runtime = None
        if runtime is None:
            return
        loop = self._loop or asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, runtime.stop)
        except Exception:
            _logger.debug("MQTT runtime stop failed", exc_info=True)

    def _on_channel_message(self, message: ChannelMessage) -> None:
        """Schedule one broker message (called on the loop via call_soon_threadsafe)."""
        manager = self._manager
        if manager is None:
            return
        task = asyncio.create_task(manager.handle_message(message.topic, message.payload, retained=message.retained))
        self._message_tasks.add(task)
        task.add_done_callback(self._on_message_done)

    def _on_message_done(self, task: asyncio.Task[bool]) -> None:
        self._message_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Route message processing failed: %s", exc, exc_info=exc)

    def _on_connection_change(self, connected: bool) -> None:
        manager = self._manager
        if manager is None:
            return
        if not connected:
            manager.on_channel_disconnected()
        elif manager.subscriber.state == SubscriptionState.UNSUBSCRIBED:
            manager.start_subscription()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.position_publish_interval_s)
            manager = self._manager
            if manager is None:
                return
            try:
                manager.publish_position()
            except Exception:
                _logger.debug("Position publish failed", exc_info=True)
