"""Human-readable notices surfaced to the application."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class NoticeKind(StrEnum):
    ROUTE_UPDATED = "route_updated"
    NEW_ROUTE = "new_route"
    ROUTE_COMPLETED = "route_completed"
    SESSION_CLEARED = "session_cleared"
    ANOMALY_REPORTED = "anomaly_reported"
    AUTH_REQUIRED = "auth_required"
    ERROR = "error"


class Notice(BaseModel):
    """A message the UI should show.

    ``ROUTE_COMPLETED`` also tells the UI to leave the navigation screen
    for the order list.
    """

    model_config = ConfigDict(frozen=True)

    kind: NoticeKind
    title: str
    message: str = ""


def route_updated_notice(rescue: bool) -> Notice:
    message = (
        "New rescue stops were added to your route."
        if rescue
        else "Your route has been updated."
    )
    return Notice(kind=NoticeKind.ROUTE_UPDATED, title="Route updated", message=message)


def new_route_notice(rescue: bool) -> Notice:
    message = (
        "You have been assigned a rescue route."
        if rescue
        else "Route accepted: let's go!"
    )
    return Notice(kind=NoticeKind.NEW_ROUTE, title="New route", message=message)
