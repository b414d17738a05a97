"""Route session manager.

Owns the single :class:`RouteSession` of a client and every rule that
mutates it: restore on start, route-change events from the stream,
off-route recalculation and progress confirmation.  All mutations run
under one ``asyncio.Lock`` so a position sample and a stream event never
interleave half-way through an update.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Iterator
from datetime import UTC, datetime

from pydantic import ValidationError

from routesync._api import orders as _orders_api
from routesync._api import routes as _routes_api
from routesync._api import users as _users_api
from routesync._constants import (
    KEY_ACTIVE_ROUTE_ID,
    KEY_CURRENT_SEGMENT_INDEX,
    KEY_IS_ON_ROUTE,
    KEY_USER_ID,
    KEY_VEHICLE_ID,
    SESSION_KEYS,
    STATUS_ON_ROUTE,
    position_topic,
)
from routesync._mqtt import RouteChannel
from routesync._transport import Transport
from routesync.config import RouteSyncConfig
from routesync.exceptions import (
    RouteSessionError,
    RouteSyncApiError,
    RouteSyncAuthenticationError,
    RouteSyncTransportError,
)
from routesync.geo import LatLon, distance_to_destination_m
from routesync.ingestion.messages import parse_route_message
from routesync.ingestion.normalize import parse_iso_timestamp, safe_str
from routesync.models.events import RouteChangeEvent
from routesync.models.notice import Notice, NoticeKind, new_route_notice, route_updated_notice
from routesync.models.route import RouteMetadata, RouteSegment, SegmentRole
from routesync.models.session import AdvanceOutcome, RouteSession, SessionState
from routesync.offroute import OffRouteDetector
from routesync.state.policy import (
    RestoreResolution,
    RestoreVerdict,
    deliverable_order_ids,
    is_newer_than_watermark,
    resolve_restored_session,
)
from routesync.storage import PersistedSession, SessionStore, watermark_key
from routesync.subscriber import RouteEventSubscriber, SubscriptionState

_logger = logging.getLogger(__name__)

NoticeCallback = Callable[[Notice], None]


def _iso_now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class RouteSessionManager:
    """Reconcile the persisted session, backend snapshots and the route stream.

    Parameters
    ----------
    config
        Client configuration (thresholds, cooldowns, radii).
    transport
        Backend transport; any :class:`routesync._transport.Transport`.
    store
        Persistent key-value store for session keys and watermarks.
    channel
        Broker connection used for subscriptions and position publishing.
    on_notice
        Called with every user-facing :class:`Notice`.
    clock
        Monotonic clock for the off-route cooldown.
    """

    def __init__(
        self,
        *,
        config: RouteSyncConfig,
        transport: Transport,
        store: SessionStore,
        channel: RouteChannel,
        on_notice: NoticeCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._transport = transport
        self._store = store
        self._channel = channel
        self._on_notice = on_notice
        self._subscriber = RouteEventSubscriber(channel)
        self._detector = OffRouteDetector(
            threshold_m=config.off_route_threshold_m,
            cooldown_s=config.driver_recalc_cooldown_s,
            clock=clock,
        )
        self._session = RouteSession()
        self._lock = asyncio.Lock()
        self._last_position: LatLon | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def session(self) -> RouteSession:
        return self._session

    @property
    def subscriber(self) -> RouteEventSubscriber:
        return self._subscriber

    @property
    def detector(self) -> OffRouteDetector:
        return self._detector

    @property
    def last_position(self) -> LatLon | None:
        return self._last_position

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _notify(self, notice: Notice) -> None:
        _logger.debug("Notice kind=%s title=%s", notice.kind, notice.title)
        if self._on_notice is None:
            return
        try:
            self._on_notice(notice)
        except Exception:
            _logger.debug("on_notice callback failed", exc_info=True)

    @contextlib.contextmanager
    def _surface_auth(self) -> Iterator[None]:
        try:
            yield
        except RouteSyncAuthenticationError as exc:
            self._notify(Notice(kind=NoticeKind.AUTH_REQUIRED, title="Sign in required", message=str(exc)))
            raise

    async def _require_user_id(self) -> str:
        user_id = safe_str(await self._store.get(KEY_USER_ID))
        if user_id is None:
            raise RouteSyncAuthenticationError("No user id stored; sign in first")
        return user_id

    async def _fetch_metadata(self, route_id: str) -> RouteMetadata | None:
        try:
            return await _routes_api.fetch_route_metadata(self._transport, route_id)
        except (RouteSyncTransportError, ValidationError):
            _logger.debug("Route metadata unavailable route_id=%s", route_id, exc_info=True)
            return None

    async def _fetch_driver_status(self, user_id: str) -> str | None:
        try:
            return await _users_api.fetch_driver_status(self._transport, user_id)
        except RouteSyncTransportError:
            _logger.debug("Driver status unavailable user_id=%s", user_id, exc_info=True)
            return None

    async def _clear_session(self) -> None:
        """Remove every persisted session key and reset the in-memory session."""
        keys = list(SESSION_KEYS)
        vehicle_id = self._session.vehicle_id or safe_str(await self._store.get(KEY_VEHICLE_ID))
        if vehicle_id:
            keys.append(watermark_key(vehicle_id))
        await self._store.remove_many(keys)
        self._session.reset()
        self._detector.reset()
        _logger.info("Route session cleared")

    async def _drop_route(self) -> None:
        """Forget the route and its progress but keep the vehicle assignment."""
        vehicle_id = self._session.vehicle_id or safe_str(await self._store.get(KEY_VEHICLE_ID))
        keys = [KEY_ACTIVE_ROUTE_ID, KEY_CURRENT_SEGMENT_INDEX]
        if vehicle_id:
            keys.append(watermark_key(vehicle_id))
            await self._store.set(KEY_VEHICLE_ID, vehicle_id)
        await self._store.remove_many(keys)
        await self._persist_on_route(False)
        self._session.reset()
        self._session.vehicle_id = vehicle_id
        self._detector.reset()
        _logger.info("Active route dropped vehicle_id=%s", vehicle_id)

    async def _persist_on_route(self, on_route: bool) -> None:
        await self._store.set(KEY_IS_ON_ROUTE, "true" if on_route else "false")

    async def _load_segments(self, route_id: str) -> list[RouteSegment] | None:
        """Segments of *route_id*, or ``None`` if the path is missing or empty."""
        try:
            segments = await _routes_api.load_segments(self._transport, route_id)
        except RouteSyncTransportError:
            _logger.warning("Segments unavailable for route_id=%s", route_id, exc_info=True)
            return None
        if not segments:
            _logger.warning("Route route_id=%s has no drivable segments", route_id)
            return None
        return segments

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(self) -> RestoreResolution:
        """Rebuild the session from the store, validated against the backend.

        Persisted state survives only if the backend still knows the route,
        it belongs to the signed-in user, it is not completed and its path
        can be loaded.  Driver status can only switch ``on_route`` off.
        """
        async with self._lock:
            with self._surface_auth():
                return await self._restore_locked()

    async def _restore_locked(self) -> RestoreResolution:
        persisted = await PersistedSession.load(self._store)
        if persisted.active_route_id is None:
            self._session.reset()
            # A stored vehicle assignment still selects the specific topic.
            self._session.vehicle_id = persisted.vehicle_id
            return resolve_restored_session(
                persisted=persisted, metadata=None, current_user_id=None, driver_status=None
            )

        user_id = await self._require_user_id()
        metadata = await self._fetch_metadata(persisted.active_route_id)
        driver_status = await self._fetch_driver_status(user_id)
        resolution = resolve_restored_session(
            persisted=persisted,
            metadata=metadata,
            current_user_id=user_id,
            driver_status=driver_status,
        )

        if resolution.verdict == RestoreVerdict.INVALID:
            _logger.info(
                "Discarding persisted route_id=%s: %s", persisted.active_route_id, resolution.reason
            )
            self._session.vehicle_id = persisted.vehicle_id
            await self._clear_session()
            self._notify(
                Notice(
                    kind=NoticeKind.SESSION_CLEARED,
                    title="Route no longer active",
                    message=f"The saved route was discarded: {resolution.reason}.",
                )
            )
            return resolution

        assert resolution.route_id is not None  # noqa: S101
        segments = await self._load_segments(resolution.route_id)
        if segments is None:
            self._session.vehicle_id = resolution.vehicle_id
            await self._drop_route()
            self._notify(
                Notice(
                    kind=NoticeKind.SESSION_CLEARED,
                    title="Route no longer active",
                    message="The saved route could not be loaded.",
                )
            )
            return RestoreResolution(
                verdict=RestoreVerdict.INVALID,
                reason="route path unavailable",
                vehicle_id=resolution.vehicle_id,
            )

        session = self._session
        session.state = SessionState.ACTIVE
        session.active_route_id = resolution.route_id
        session.vehicle_id = resolution.vehicle_id
        session.on_route = resolution.on_route
        if resolution.vehicle_id and persisted.vehicle_id is None:
            await self._store.set(KEY_VEHICLE_ID, resolution.vehicle_id)
        await self._persist_on_route(resolution.on_route)
        session.replace_segments(segments)
        session.set_index(resolution.segment_index)
        _logger.info(
            "Restored route_id=%s vehicle_id=%s index=%s on_route=%s",
            session.active_route_id,
            session.vehicle_id,
            session.current_segment_index,
            session.on_route,
        )
        return resolution

    async def bootstrap_from_server(self) -> bool:
        """Adopt the driver's active route as reported by the backend.

        Used when nothing could be restored locally.  Returns ``True`` when
        a route was adopted.
        """
        async with self._lock:
            with self._surface_auth():
                if self._session.is_active:
                    return False
                user_id = await self._require_user_id()
                try:
                    active = await _routes_api.fetch_active_route(self._transport, user_id)
                except RouteSyncTransportError:
                    _logger.warning("Active route lookup failed", exc_info=True)
                    return False
                if active is None:
                    return False
                segments = await self._load_segments(active.id)
                if segments is None:
                    return False

                await self._store.set(KEY_ACTIVE_ROUTE_ID, active.id)
                await self._store.set(KEY_CURRENT_SEGMENT_INDEX, str(active.current_segment_index))
                await self._persist_on_route(True)
                if active.vehicle_id:
                    await self._store.set(KEY_VEHICLE_ID, active.vehicle_id)
                    await self._store.remove(watermark_key(active.vehicle_id))

                session = self._session
                session.state = SessionState.ACTIVE
                session.active_route_id = active.id
                session.vehicle_id = active.vehicle_id
                session.on_route = True
                session.replace_segments(segments)
                session.set_index(active.current_segment_index)
                _logger.info("Adopted active route_id=%s from backend", active.id)
                return True

    # ------------------------------------------------------------------
    # Route-change stream
    # ------------------------------------------------------------------

    def start_subscription(self) -> None:
        """(Re)subscribe for the session's vehicle, or the wildcard when unknown."""
        if self._closed:
            return
        self._subscriber.start(self._session.vehicle_id)

    def on_channel_disconnected(self) -> None:
        self._subscriber.on_disconnect()

    async def handle_message(self, topic: str, payload: bytes | str, *, retained: bool = False) -> bool:
        """Parse and apply one broker message.  Malformed messages are dropped."""
        event = parse_route_message(topic, payload, retained=retained)
        if event is None:
            return False
        return await self.apply_event(event)

    async def apply_event(self, event: RouteChangeEvent) -> bool:
        """Apply a route-change event.  Returns ``True`` if it was accepted."""
        async with self._lock:
            if self._closed:
                return False
            with self._surface_auth():
                return await self._apply_event_locked(event)

    async def _owns_event(self, event: RouteChangeEvent) -> bool:
        """Whether *event* concerns the signed-in driver.

        Events on our own vehicle's topic are trusted.  Any other event is
        checked against the route's owner, whatever the subscription state;
        an owned route's vehicle becomes ours and the subscription follows it.
        """
        known = self._session.vehicle_id or safe_str(await self._store.get(KEY_VEHICLE_ID))
        if known is not None and event.vehicle_id == known:
            self._session.vehicle_id = known
            return True

        user_id = await self._require_user_id()
        metadata = await self._fetch_metadata(event.route_id)
        if metadata is None or metadata.associated_user_id != user_id:
            _logger.debug(
                "Ignoring event for foreign or unknown route_id=%s on vehicle_id=%s",
                event.route_id,
                event.vehicle_id,
            )
            return False

        vehicle_id = metadata.vehicle_id or event.vehicle_id
        if vehicle_id and vehicle_id != known:
            self._session.vehicle_id = vehicle_id
            await self._store.set(KEY_VEHICLE_ID, vehicle_id)
            if self._subscriber.is_wildcard:
                self._subscriber.promote(vehicle_id)
            elif self._subscriber.state == SubscriptionState.SUBSCRIBED_SPECIFIC:
                self._subscriber.start(vehicle_id)
        return True

    async def _passes_retained_guard(self) -> bool:
        user_id = safe_str(await self._store.get(KEY_USER_ID))
        if user_id is None:
            return False
        try:
            status = await _users_api.fetch_driver_status(self._transport, user_id)
        except RouteSyncTransportError:
            _logger.debug("Retained guard status check failed", exc_info=True)
            return False
        return status == STATUS_ON_ROUTE

    async def _apply_event_locked(self, event: RouteChangeEvent) -> bool:
        if not await self._owns_event(event):
            return False

        stored_active = safe_str(await self._store.get(KEY_ACTIVE_ROUTE_ID))
        if event.retained and stored_active is None and not await self._passes_retained_guard():
            _logger.debug("Ignoring retained route event route_id=%s: driver not on route", event.route_id)
            return False

        vehicle_id = event.vehicle_id or self._session.vehicle_id
        if vehicle_id is not None:
            key = watermark_key(vehicle_id)
            watermark = parse_iso_timestamp(await self._store.get(key))
            if not is_newer_than_watermark(event.timestamp, watermark):
                _logger.debug(
                    "Ignoring duplicate or out-of-order route event route_id=%s ts=%s watermark=%s",
                    event.route_id,
                    event.timestamp,
                    watermark,
                )
                return False
            if event.timestamp is not None:
                await self._store.set(key, event.timestamp.isoformat())

        current = stored_active or self._session.active_route_id
        if event.route_id == current:
            return await self._refresh_current_route(event)
        return await self._adopt_new_route(event)

    async def _refresh_current_route(self, event: RouteChangeEvent) -> bool:
        segments = await self._load_segments(event.route_id)
        if segments is None:
            return False
        self._session.replace_segments(segments)
        self._notify(route_updated_notice(event.is_rescue))
        return True

    async def _adopt_new_route(self, event: RouteChangeEvent) -> bool:
        session = self._session
        await self._store.set(KEY_ACTIVE_ROUTE_ID, event.route_id)
        await self._persist_on_route(True)
        session.state = SessionState.ACTIVE
        session.active_route_id = event.route_id
        session.on_route = True
        self._detector.reset()

        if session.vehicle_id is None:
            session.vehicle_id = safe_str(await self._store.get(KEY_VEHICLE_ID))
        if session.vehicle_id is None:
            metadata = await self._fetch_metadata(event.route_id)
            resolved = (metadata.vehicle_id if metadata else None) or event.vehicle_id
            if resolved:
                session.vehicle_id = resolved
                await self._store.set(KEY_VEHICLE_ID, resolved)

        segments = await self._load_segments(event.route_id)
        if segments is None:
            await self._drop_route()
            self._notify(
                Notice(
                    kind=NoticeKind.SESSION_CLEARED,
                    title="Route unavailable",
                    message="The new route could not be loaded.",
                )
            )
            return False
        session.replace_segments(segments)

        # A progress pointer persisted by a just-restored session survives.
        persisted = await PersistedSession.load(self._store)
        session.set_index(persisted.current_segment_index if persisted.current_segment_index is not None else 0)

        _logger.info("Adopted route_id=%s kind=%s", event.route_id, event.kind)
        self._notify(new_route_notice(event.is_rescue))
        return True

    # ------------------------------------------------------------------
    # Positions and off-route recalculation
    # ------------------------------------------------------------------

    async def on_position(self, lat: float, lon: float) -> bool:
        """Feed a live position sample.

        Returns ``True`` when it led to a recalculated segment being applied.
        """
        position = (lat, lon)
        async with self._lock:
            self._last_position = position
            session = self._session
            segment = session.current_segment
            if self._closed or not session.is_active or segment is None or session.active_route_id is None:
                return False
            check = self._detector.check(position, segment.geometry)
            if not check.triggered:
                return False
            route_id = session.active_route_id
            index = session.current_segment_index

        _logger.info(
            "Off route by %.0f m on route_id=%s segment_id=%s, requesting recalculation",
            check.distance_m,
            route_id,
            segment.id,
        )
        body = _routes_api.build_recalculation_body(
            route_id=route_id,
            current_lat=lat,
            current_lon=lon,
            segment_id=segment.id,
        )
        try:
            with self._surface_auth():
                updated = await _routes_api.recalculate_route(self._transport, body)
        except (RouteSyncTransportError, RouteSyncApiError):
            _logger.warning("Recalculation failed route_id=%s segment_id=%s", route_id, segment.id, exc_info=True)
            return False

        async with self._lock:
            session = self._session
            current = session.current_segment
            if (
                self._closed
                or not session.is_active
                or session.active_route_id != route_id
                or session.current_segment_index != index
                or current is None
                or current.id != segment.id
            ):
                _logger.debug("Dropping stale recalculation for route_id=%s segment_id=%s", route_id, segment.id)
                return False
            segments = list(session.segments)
            segments[index] = current.with_recalculation(updated)
            session.segments = segments
            return True

    def is_near_destination(self) -> bool:
        """Whether the last position is close enough to confirm arrival."""
        segment = self._session.current_segment
        if self._last_position is None or segment is None:
            return False
        return distance_to_destination_m(self._last_position, segment.geometry) <= self._config.arrival_radius_m

    def publish_position(self) -> bool:
        """Publish the last position on the vehicle's position topic.

        Returns ``False`` when there is nothing to publish or no connection.
        """
        session = self._session
        position = self._last_position
        if not session.is_active or session.vehicle_id is None or position is None:
            return False
        if not self._channel.is_connected:
            return False
        lat, lon = position
        self._channel.publish(
            position_topic(session.vehicle_id),
            {"lat": lat, "lon": lon, "timestamp": _iso_now()},
            qos=1,
        )
        return True

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def _mark_orders(self, segment: RouteSegment, order_ids: tuple[str, ...], *, delivered: bool) -> None:
        action = _orders_api.mark_delivered if delivered else _orders_api.mark_picked_up
        for order_id in order_ids:
            try:
                await action(self._transport, order_id)
            except RouteSyncTransportError:
                _logger.warning(
                    "Order update failed order_id=%s segment_id=%s delivered=%s",
                    order_id,
                    segment.id,
                    delivered,
                    exc_info=True,
                )

    async def advance(self) -> AdvanceOutcome:
        """Confirm arrival at the current segment's destination.

        Raises :class:`RouteSessionError` when no segment is active.
        """
        async with self._lock:
            with self._surface_auth():
                return await self._advance_locked()

    async def _advance_locked(self) -> AdvanceOutcome:
        session = self._session
        segment = session.current_segment
        if not session.is_active or segment is None or session.active_route_id is None:
            raise RouteSessionError("No active segment to confirm")
        route_id = session.active_route_id
        index = session.current_segment_index

        if segment.to_role == SegmentRole.PICKUP and segment.order_ids:
            await self._mark_orders(segment, segment.order_ids, delivered=False)
        elif segment.to_role == SegmentRole.DELIVERY:
            eligible = deliverable_order_ids(session.segments, index)
            skipped = set(segment.order_ids) - set(eligible)
            if skipped:
                _logger.warning("Not delivering orders without an earlier pickup: %s", sorted(skipped))
            await self._mark_orders(segment, eligible, delivered=True)

        if not session.is_last_segment:
            next_index = index + 1
            session.set_index(next_index)
            self._detector.reset()
            try:
                await _routes_api.update_progress(self._transport, route_id, next_index)
            except RouteSyncTransportError:
                _logger.warning("Progress push failed route_id=%s index=%s", route_id, next_index, exc_info=True)
            await self._store.set(KEY_CURRENT_SEGMENT_INDEX, str(next_index))
            return AdvanceOutcome.ADVANCED

        try:
            result = await _routes_api.complete_route(self._transport, route_id)
        except RouteSyncTransportError:
            _logger.warning("Route completion failed route_id=%s", route_id, exc_info=True)
            self._notify(Notice(kind=NoticeKind.ERROR, title="Error", message="Could not complete the route."))
            return AdvanceOutcome.COMPLETION_REJECTED

        if not result.ok:
            _logger.warning("Route completion rejected route_id=%s code=%s", route_id, result.code)
            self._notify(
                Notice(kind=NoticeKind.ERROR, title="Error", message=result.message or "Could not complete the route.")
            )
            return AdvanceOutcome.COMPLETION_REJECTED

        await self._clear_session()
        self._notify(
            Notice(kind=NoticeKind.ROUTE_COMPLETED, title="Route completed", message=result.message or "Well done!")
        )
        return AdvanceOutcome.COMPLETED

    async def report_anomaly(self, position: LatLon | None = None) -> bool:
        """Report a vehicle anomaly at *position* (default: the last sample).

        A confirmed report ends the session.  Returns ``True`` in that case.
        """
        async with self._lock:
            with self._surface_auth():
                session = self._session
                where = position or self._last_position
                vehicle_id = session.vehicle_id or safe_str(await self._store.get(KEY_VEHICLE_ID))
                if where is None or vehicle_id is None:
                    raise RouteSessionError("Anomaly report needs a known vehicle and position")
                user_id = await self._require_user_id()
                try:
                    result = await _routes_api.report_anomaly(
                        self._transport,
                        user_id=user_id,
                        vehicle_id=vehicle_id,
                        route_id=session.active_route_id,
                        lat=where[0],
                        lon=where[1],
                    )
                except RouteSyncTransportError:
                    _logger.warning("Anomaly report failed vehicle_id=%s", vehicle_id, exc_info=True)
                    self._notify(Notice(kind=NoticeKind.ERROR, title="Error", message="Could not report the anomaly."))
                    return False

                if not result.ok:
                    self._notify(
                        Notice(
                            kind=NoticeKind.ERROR,
                            title="Error",
                            message=result.message or "Could not report the anomaly.",
                        )
                    )
                    return False

                session.vehicle_id = vehicle_id
                await self._clear_session()
                self._notify(
                    Notice(
                        kind=NoticeKind.ANOMALY_REPORTED,
                        title="Anomaly reported",
                        message=result.message or "A rescue vehicle will take over your route.",
                    )
                )
                return True

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop listening.  Responses arriving afterwards are ignored."""
        self._closed = True
        self._subscriber.stop()
