"""Pydantic schemas for the group chat."""

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import Field

from classhub.db.models import MessageType
from classhub.schemas.base import BaseSchema


class Reaction(BaseSchema):
    """One user's emoji on a message."""

    user_id: str
    emoji: str = Field(..., min_length=1, max_length=16)


class ChatMessage(BaseSchema):
    """Chat message in the domain shape."""

    id: UUID
    sender_id: str
    content: str = ""
    kind: MessageType = MessageType.TEXT
    media_url: str | None = None
    file_name: str | None = None
    created_at: datetime
    reactions: list[Reaction] = Field(default_factory=list)


# Request schemas
class MessageCreateRequest(BaseSchema):
    """Request to post a message over REST. The id may be assigned by the client."""

    id: UUID = Field(default_factory=uuid4)
    content: str = Field("", max_length=10000)
    kind: MessageType = MessageType.TEXT
    media_url: str | None = None
    file_name: str | None = Field(None, max_length=255)


class ReactionToggleRequest(BaseSchema):
    """Request to toggle the caller's reaction."""

    emoji: str = Field(..., min_length=1, max_length=16)


# Response schemas
class MediaUploadResponse(BaseSchema):
    """Public URL of an uploaded chat attachment."""

    url: str
    kind: MessageType
    file_name: str
