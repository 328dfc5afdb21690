"""
Realtime socket for live views.

One HubSession per socket. View events are forwarded as
{"type": ..., "payload": ...}; the client sends commands of the same shape.
A revoked session closes the socket with code 4401.
"""

import asyncio
import base64
import binascii
import logging
from typing import Annotated

from fastapi import APIRouter, Cookie, WebSocket, WebSocketDisconnect

from classhub.api.deps import Assistant, Gateway, Realtime, resolve_identity
from classhub.config import get_settings
from classhub.engine import Attachment, HubSession, LocalSessionCache, PushMicrophone
from classhub.errors import ClassHubError, ConfigurationError
from classhub.views.navigation import resolve_view

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(tags=["realtime"])

CLOSE_UNAUTHORIZED = 4401
CLOSE_UNAVAILABLE = 1011


def _decode(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ClassHubError("Invalid base64 payload") from e


async def dispatch(session: HubSession, microphone: PushMicrophone, command: dict) -> bool:
    """
    Apply one client command to the session.

    Returns False when the socket should close afterwards.
    """
    kind = command.get("type")
    payload = command.get("payload") or {}
    chat = session.chat

    if kind == "typing":
        await chat.on_input_changed()
    elif kind == "send":
        attachment = None
        if payload.get("attachment"):
            raw = payload["attachment"]
            attachment = Attachment(
                data=_decode(raw.get("data", "")),
                filename=raw.get("filename") or "upload",
                content_type=raw.get("contentType") or "application/octet-stream",
            )
        await chat.send_message(payload.get("content", ""), attachment)
    elif kind == "delete":
        await chat.delete_message(payload["id"])
    elif kind == "react":
        await chat.toggle_reaction(payload["id"], payload["emoji"])
    elif kind == "visibility":
        chat.visible = bool(payload.get("visible", True))
    elif kind == "notifications":
        chat.notifications_enabled = bool(payload.get("enabled", False))
    elif kind == "navigate":
        identity = session.identity
        if identity is not None:
            session.controller.view = resolve_view(payload.get("view"), identity)
            session.events.emit("navigate", view=session.controller.view)
    elif kind == "refresh":
        await session.reconciler.refresh_full_state()
    elif kind == "record.start":
        await chat.start_recording()
    elif kind == "record.chunk":
        microphone.push(_decode(payload.get("data", "")))
    elif kind == "record.send":
        await chat.send_recording()
    elif kind == "record.cancel":
        await chat.cancel_recording()
    elif kind == "logout":
        await session.controller.logout()
        return False
    else:
        raise ClassHubError(f"Unknown command: {kind}")
    return True


async def _forward_events(websocket: WebSocket, session: HubSession) -> None:
    while True:
        event = await session.events.next()
        await websocket.send_json(event.model_dump(mode="json"))
        if event.type == "session.revoked":
            await websocket.close(code=CLOSE_UNAUTHORIZED, reason=event.payload.get("message", ""))
            return


async def _read_commands(websocket: WebSocket, session: HubSession, microphone: PushMicrophone) -> None:
    while True:
        command = await websocket.receive_json()
        if not isinstance(command, dict):
            continue
        try:
            keep_open = await dispatch(session, microphone, command)
        except ClassHubError as e:
            logger.info("Command %s rejected: %s", command.get("type"), e)
            session.events.emit("error", command=command.get("type"), message=str(e))
            continue
        except (KeyError, TypeError, ValueError) as e:
            session.events.emit("error", command=command.get("type"), message=f"Malformed command: {e}")
            continue
        if not keep_open:
            return


@router.websocket("/realtime")
async def realtime_socket(
    websocket: WebSocket,
    gateway: Gateway,
    realtime: Realtime,
    assistant: Assistant,
    token: str | None = None,
    access_token: Annotated[str | None, Cookie()] = None,
) -> None:
    raw_token = access_token or token
    try:
        identity = await resolve_identity(raw_token, gateway) if raw_token else None
    except ConfigurationError as e:
        logger.error("Realtime socket refused: %s", e)
        await websocket.close(code=CLOSE_UNAVAILABLE)
        return
    if identity is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return

    await websocket.accept()
    microphone = PushMicrophone()
    session = HubSession(
        gateway,
        realtime,
        assistant,
        LocalSessionCache(settings.session_store_dir, str(identity.id)),
        microphone=microphone,
    )
    writer = asyncio.create_task(_forward_events(websocket, session))
    reader = None
    try:
        if not await session.start(identity):
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)
            for event in session.events.drain_nowait():
                await websocket.send_json(event.model_dump(mode="json"))
            await websocket.close(code=CLOSE_UNAVAILABLE)
            return
        reader = asyncio.create_task(_read_commands(websocket, session, microphone))
        done, _ = await asyncio.wait({writer, reader}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                error = task.exception()
                if not isinstance(error, WebSocketDisconnect):
                    logger.error("Realtime socket for %s failed: %s", identity.id, error)
        if reader in done and not reader.cancelled() and reader.exception() is None:
            # Logged out: flush what the logout emitted, then close normally
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)
            for event in session.events.drain_nowait():
                await websocket.send_json(event.model_dump(mode="json"))
            await websocket.close()
    finally:
        tasks = [t for t in (writer, reader) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await session.close()
        logger.info("Realtime socket closed for %s", identity.id)
