"""API routes package."""

from classhub.api.routes import (
    auth,
    items,
    messages,
    realtime,
    state,
    timetable,
    users,
)

__all__ = [
    "auth",
    "items",
    "messages",
    "realtime",
    "state",
    "timetable",
    "users",
]
