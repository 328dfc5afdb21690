"""Schemas for realtime change events and view events."""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from classhub.schemas.base import BaseSchema

ChangeKind = Literal["INSERT", "UPDATE", "DELETE"]


class RowChange(BaseModel):
    """
    Row-level change notification.

    new/old carry wire-shape (snake_case) rows; old holds at least the
    primary key on DELETE.
    """

    table: str
    event: ChangeKind
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)

    @property
    def record_id(self) -> str | None:
        row = self.old if self.event == "DELETE" else self.new
        value = row.get("id")
        return str(value) if value is not None else None


class TypingSignal(BaseSchema):
    """Ephemeral typing broadcast payload."""

    sender_id: str
    sender_name: str


class PresenceMeta(BaseSchema):
    """Heartbeat record each participant tracks on the presence channel."""

    user_id: str
    online_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ViewEvent(BaseModel):
    """State pushed from a session to its view."""

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
