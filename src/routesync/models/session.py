"""In-memory route session state owned by the session manager."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from routesync.models.route import RouteSegment


class SessionState(StrEnum):
    NO_SESSION = "no_session"
    ACTIVE = "active"


class AdvanceOutcome(StrEnum):
    """Result of confirming arrival at the current segment's destination."""

    ADVANCED = "advanced"
    COMPLETED = "completed"
    COMPLETION_REJECTED = "completion_rejected"


class RouteSession(BaseModel):
    """Mutable session state.

    Only :class:`routesync.manager.RouteSessionManager` mutates it.
    ``current_segment_index`` stays inside ``[0, len(segments) - 1]``
    whenever segments exist.
    """

    model_config = ConfigDict(extra="forbid")

    state: SessionState = SessionState.NO_SESSION
    active_route_id: str | None = None
    vehicle_id: str | None = None
    current_segment_index: int = 0
    segments: list[RouteSegment] = Field(default_factory=list)
    on_route: bool = False

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def current_segment(self) -> RouteSegment | None:
        if 0 <= self.current_segment_index < len(self.segments):
            return self.segments[self.current_segment_index]
        return None

    @property
    def is_last_segment(self) -> bool:
        return self.current_segment_index >= len(self.segments) - 1

    def replace_segments(self, segments: list[RouteSegment]) -> None:
        """Swap the whole segment sequence, clamping the index when it shrinks."""
        self.segments = list(segments)
        self.clamp_index()

    def set_index(self, index: int) -> None:
        self.current_segment_index = max(0, index)
        self.clamp_index()

    def clamp_index(self) -> None:
        if self.segments and self.current_segment_index >= len(self.segments):
            self.current_segment_index = len(self.segments) - 1

    def reset(self) -> None:
        """Return every field to its ``NO_SESSION`` value."""
        self.state = SessionState.NO_SESSION
        self.active_route_id = None
        self.vehicle_id = None
        self.current_segment_index = 0
        self.segments = []
        self.on_route = False
