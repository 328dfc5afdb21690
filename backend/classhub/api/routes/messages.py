"""Group chat routes for clients that are not on the realtime socket."""

import logging
from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, File, HTTPException, UploadFile, status

from classhub.api.deps import CurrentUser, DevUser, Gateway
from classhub.config import get_settings, sanitize_error
from classhub.db.models import MessageType
from classhub.errors import ConflictError, StorageError
from classhub.schemas.chat import (
    ChatMessage,
    MediaUploadResponse,
    MessageCreateRequest,
    Reaction,
    ReactionToggleRequest,
)

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/", response_model=list[ChatMessage])
async def list_messages(current_user: CurrentUser, gateway: Gateway, limit: int | None = None) -> list[ChatMessage]:
    """Most recent messages, oldest first."""
    limit = min(limit or settings.chat_history_limit, settings.chat_history_limit)
    return await gateway.fetch_messages(limit)


@router.post("/", response_model=ChatMessage, status_code=status.HTTP_201_CREATED)
async def post_message(data: MessageCreateRequest, current_user: CurrentUser, gateway: Gateway) -> ChatMessage:
    """Post a message as the current user. The id may be assigned by the client."""
    if not data.content and not data.media_url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is empty")
    message = ChatMessage(
        id=data.id,
        sender_id=str(current_user.id),  # From auth, never from the request
        content=data.content,
        kind=data.kind,
        media_url=data.media_url,
        file_name=data.file_name,
        created_at=datetime.now(timezone.utc),
    )
    try:
        return await gateway.insert_message(message)
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(message_id: UUID, current_user: CurrentUser, gateway: Gateway) -> None:
    """Delete a message. Only its sender or a developer may."""
    message = await gateway.get_message(message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    if message.sender_id != str(current_user.id) and not current_user.is_dev:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only delete your own messages",
        )
    await gateway.delete_message(message_id)


@router.post("/{message_id}/reactions", response_model=list[Reaction])
async def toggle_reaction(
    message_id: UUID,
    data: ReactionToggleRequest,
    current_user: CurrentUser,
    gateway: Gateway,
) -> list[Reaction]:
    """Toggle the caller's emoji on a message and return the resulting reactions."""
    reactions = await gateway.toggle_reaction(message_id, str(current_user.id), data.emoji)
    if reactions is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return reactions


@router.put("/{message_id}/reactions", response_model=list[Reaction])
async def replace_reactions(
    message_id: UUID,
    reactions: list[Reaction],
    current_user: DevUser,
    gateway: Gateway,
) -> list[Reaction]:
    """Overwrite a message's whole reaction collection (moderation). Developers only."""
    result = await gateway.replace_reactions(message_id, reactions)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    logger.info("Reactions on %s overwritten by %s", message_id, current_user.id)
    return result


@router.post("/media", response_model=MediaUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_media(
    current_user: CurrentUser,
    gateway: Gateway,
    file: UploadFile = File(...),
) -> MediaUploadResponse:
    """Upload an attachment; post the returned URL in a message afterwards."""
    content_type = file.content_type or "application/octet-stream"
    data = await file.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is empty")
    if len(data) > settings.max_media_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.max_media_size_bytes // (1024 * 1024)}MB upload limit",
        )

    try:
        url = await gateway.upload_media(data, file.filename, content_type)
    except StorageError as e:
        logger.error("Media upload by %s failed: %s", current_user.id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=sanitize_error(e, generic_message="Failed to upload file."),
        ) from e

    if content_type.startswith("image/"):
        kind = MessageType.IMAGE
    elif content_type.startswith("audio/"):
        kind = MessageType.AUDIO
    else:
        kind = MessageType.FILE
    return MediaUploadResponse(url=url, kind=kind, file_name=file.filename or "upload")
