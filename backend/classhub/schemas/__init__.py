"""Pydantic schemas for API request/response validation."""

from classhub.schemas.users import (
    Identity,
    IdentityUpdate,
    LoginRequest,
    RegisterRequest,
    RosterEntry,
)
from classhub.schemas.auth import TokenResponse
from classhub.schemas.academic import (
    AcademicItemBase,
    AcademicItemCreate,
    AcademicItemRead,
    ResourceSchema,
    Snapshot,
    Subject,
    TimetableEntrySchema,
)
from classhub.schemas.chat import (
    ChatMessage,
    MediaUploadResponse,
    MessageCreateRequest,
    Reaction,
    ReactionToggleRequest,
)

__all__ = [
    # Users
    "Identity",
    "IdentityUpdate",
    "LoginRequest",
    "RegisterRequest",
    "RosterEntry",
    # Auth
    "TokenResponse",
    # Academic
    "AcademicItemBase",
    "AcademicItemCreate",
    "AcademicItemRead",
    "ResourceSchema",
    "Snapshot",
    "Subject",
    "TimetableEntrySchema",
    # Chat
    "ChatMessage",
    "MediaUploadResponse",
    "MessageCreateRequest",
    "Reaction",
    "ReactionToggleRequest",
]
