"""
Group chat for one session.

The message list is updated from two directions: optimistic local writes
and the store's change stream. Inserts are idempotent by id, so the echo
of our own write is dropped; updates replace a message's reactions
wholesale; deletes are no-ops for ids already gone.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Coroutine
from uuid import UUID, uuid4

from classhub.config import get_settings
from classhub.db.models import MessageType
from classhub.engine.assistant_bot import ASSISTANT_NAME, ASSISTANT_SENDER_ID, AssistantBot
from classhub.engine.cache import LocalSessionCache
from classhub.engine.events import EventStream
from classhub.engine.identity import SessionController
from classhub.engine.recorder import MicrophoneDriver, RecorderState, VoiceRecorder
from classhub.engine.typing_tracker import TypingTracker
from classhub.errors import ChatWriteError, PermissionDenied, RecorderError
from classhub.realtime import RealtimeBroker, Subscription
from classhub.schemas.chat import ChatMessage, Reaction
from classhub.schemas.realtime import RowChange, TypingSignal
from classhub.schemas.users import Identity
from classhub.services.gateway import PersistenceGateway
from classhub.services.mapping import message_from_wire, reactions_from_wire

logger = logging.getLogger(__name__)
settings = get_settings()

MESSAGES_TABLE = "messages"
TYPING_CHANNEL = "chat-typing"
VOICE_CONTENT = "Voice Message"
VOICE_CONTENT_TYPE = "audio/webm"
UNKNOWN_SENDER = "Unknown"


@dataclass
class Attachment:
    data: bytes
    filename: str
    content_type: str

    @property
    def kind(self) -> MessageType:
        return MessageType.IMAGE if self.content_type.startswith("image/") else MessageType.FILE


def toggled(reactions: list[Reaction], user_id: str, emoji: str) -> list[Reaction]:
    """Reactions with (user_id, emoji) removed if present, appended otherwise."""
    if any(r.user_id == user_id and r.emoji == emoji for r in reactions):
        return [r for r in reactions if not (r.user_id == user_id and r.emoji == emoji)]
    return [*reactions, Reaction(user_id=user_id, emoji=emoji)]


class ChatEngine:
    """Message list, typing indicators, reactions and voice clips for one session."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        realtime: RealtimeBroker,
        session: SessionController,
        cache: LocalSessionCache,
        events: EventStream,
        bot: AssistantBot,
        *,
        microphone: MicrophoneDriver | None = None,
        history_limit: int | None = None,
        typing_expiry_seconds: float | None = None,
        min_clip_bytes: int | None = None,
    ):
        self.gateway = gateway
        self.realtime = realtime
        self.session = session
        self.cache = cache
        self.events = events
        self.bot = bot
        self.history_limit = history_limit or settings.chat_history_limit

        self.messages: list[ChatMessage] = []
        self.visible = True
        self.notifications_enabled = False
        self.typing = TypingTracker(
            typing_expiry_seconds if typing_expiry_seconds is not None else settings.typing_expiry_seconds,
            on_change=lambda names: self.events.emit("typing", names=names),
        )
        self.recorder = (
            VoiceRecorder(
                microphone,
                min_clip_bytes=min_clip_bytes if min_clip_bytes is not None else settings.min_voice_clip_bytes,
                on_tick=lambda seconds: self.events.emit("recording", state="recording", seconds=seconds),
            )
            if microphone is not None
            else None
        )

        bot.on_reply = self._echo
        bot.on_reply_failed = self._drop

        self._changes: Subscription | None = None
        self._typing_channel: Subscription | None = None
        self._tasks: set[asyncio.Task] = set()
        self.is_open = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def open(self) -> None:
        if self.is_open:
            return
        self.is_open = True
        self._changes = await self.realtime.subscribe_changes(MESSAGES_TABLE, self._on_change)
        self._typing_channel = await self.realtime.subscribe_broadcast(TYPING_CHANNEL, self.on_typing_signal)
        await self.load_recent_messages()

    async def close(self) -> None:
        self.is_open = False
        for subscription in (self._changes, self._typing_channel):
            if subscription is not None:
                await subscription.unsubscribe()
        self._changes = None
        self._typing_channel = None
        self.typing.close()
        self.bot.close()
        if self.recorder is not None:
            await self.recorder.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self.messages = []

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_background(self) -> None:
        """Wait for background work (assistant replies) started so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # MESSAGE LIST
    # =========================================================================

    def _index(self, message_id) -> int | None:
        key = str(message_id)
        for i, message in enumerate(self.messages):
            if str(message.id) == key:
                return i
        return None

    def find(self, message_id) -> ChatMessage | None:
        index = self._index(message_id)
        return self.messages[index] if index is not None else None

    def _emit_messages(self) -> None:
        self.events.emit("messages", messages=[m.to_view() for m in self.messages])

    def _append(self, message: ChatMessage) -> bool:
        if self._index(message.id) is not None:
            return False
        self.messages.append(message)
        return True

    def _echo(self, message: ChatMessage) -> None:
        if self._append(message):
            self._emit_messages()

    def _drop(self, message_id: UUID) -> None:
        index = self._index(message_id)
        if index is not None:
            del self.messages[index]
            self._emit_messages()

    def _set_reactions(self, message_id, reactions: list[Reaction]) -> None:
        index = self._index(message_id)
        if index is not None:
            self.messages[index] = self.messages[index].model_copy(update={"reactions": reactions})
            self._emit_messages()

    async def load_recent_messages(self, limit: int | None = None) -> list[ChatMessage]:
        try:
            recent = await self.gateway.fetch_messages(limit or self.history_limit)
        except Exception as e:
            logger.warning("Failed to load messages: %s", e)
            self.events.emit("sync.warning", message=f"Failed to load messages: {e}")
            return self.messages
        # Keep optimistic entries the fetch did not see yet
        known = {str(m.id) for m in recent}
        pending = [m for m in self.messages if str(m.id) not in known]
        self.messages = recent + pending
        self._emit_messages()
        return self.messages

    async def _on_change(self, change: RowChange) -> None:
        if change.event == "INSERT":
            self.on_message_inserted(change.new)
        elif change.event == "UPDATE":
            self.on_message_updated(change.new)
        elif change.event == "DELETE":
            self.on_message_deleted(change.old)

    def on_message_inserted(self, row: dict) -> bool:
        message = message_from_wire(row)
        if not self._append(message):
            return False
        self.typing.clear(message.sender_id)
        self._emit_messages()
        self._maybe_notify(message)
        return True

    def on_message_updated(self, row: dict) -> None:
        self._set_reactions(row["id"], reactions_from_wire(row.get("reactions")))

    def on_message_deleted(self, row: dict) -> None:
        self._drop(row.get("id"))

    def _maybe_notify(self, message: ChatMessage) -> None:
        me = self.session.cell.id
        if self.visible or not self.notifications_enabled or message.sender_id == me:
            return
        body = message.content if message.kind == MessageType.TEXT else f"[{message.kind.value}]"
        self.events.emit("notification", title=self.display_name(message.sender_id), body=body)

    def display_name(self, user_id: str) -> str:
        if user_id == ASSISTANT_SENDER_ID:
            return ASSISTANT_NAME
        user = self.cache.load_state().find_user(user_id)
        return user.name if user else UNKNOWN_SENDER

    # =========================================================================
    # WRITES
    # =========================================================================

    def _require_identity(self) -> Identity:
        identity = self.session.current
        if identity is None:
            raise PermissionDenied("Not logged in")
        return identity

    async def send_message(self, content: str, attachment: Attachment | None = None) -> ChatMessage | None:
        """
        Post a message, uploading the attachment first.

        Returns None when there is nothing to send.

        Raises:
            ChatWriteError: If the upload or insert failed (the optimistic
                copy is rolled back)
        """
        me = self._require_identity()
        content = content.strip()
        if not content and attachment is None:
            return None

        kind, media_url, file_name = MessageType.TEXT, None, None
        if attachment is not None:
            kind, file_name = attachment.kind, attachment.filename
            try:
                media_url = await self.gateway.upload_media(
                    attachment.data, attachment.filename, attachment.content_type
                )
            except Exception as e:
                logger.warning("Attachment upload failed: %s", e)
                raise ChatWriteError("Failed to upload attachment") from e

        message = ChatMessage(
            id=uuid4(),
            sender_id=str(me.id),
            content=content,
            kind=kind,
            media_url=media_url,
            file_name=file_name,
            created_at=datetime.now(timezone.utc),
        )
        await self._post(message)

        if kind == MessageType.TEXT and self.bot.mentions(content):
            self._spawn(self.bot.handle_trigger(content, me))
        return message

    async def _post(self, message: ChatMessage) -> None:
        self._echo(message)
        try:
            await self.gateway.insert_message(message)
        except Exception as e:
            logger.warning("Failed to send message %s: %s", message.id, e)
            self._drop(message.id)
            raise ChatWriteError("Error sending message") from e

    async def delete_message(self, message_id) -> bool:
        """
        Delete a message. Only its sender or a DEV may.

        Returns False when the message is no longer in the list.
        """
        me = self._require_identity()
        index = self._index(message_id)
        if index is None:
            return False
        message = self.messages[index]
        if message.sender_id != str(me.id) and not me.is_dev:
            raise PermissionDenied("Only the sender can delete this message")

        self._drop(message.id)
        try:
            await self.gateway.delete_message(message.id)
        except Exception as e:
            logger.warning("Failed to delete message %s: %s", message.id, e)
            if self._index(message.id) is None:
                self.messages.insert(min(index, len(self.messages)), message)
                self._emit_messages()
            raise ChatWriteError("Error deleting message") from e
        return True

    async def toggle_reaction(self, message_id, emoji: str) -> list[Reaction] | None:
        me = self._require_identity()
        message = self.find(message_id)
        if message is None:
            return None
        previous = list(message.reactions)
        optimistic = toggled(previous, str(me.id), emoji)
        self._set_reactions(message.id, optimistic)
        try:
            reactions = await self.gateway.toggle_reaction(message.id, str(me.id), emoji)
        except Exception as e:
            logger.warning("Failed to toggle reaction on %s: %s", message.id, e)
            if self._still(message.id, optimistic):
                self._set_reactions(message.id, previous)
            raise ChatWriteError("Error updating reaction") from e
        if reactions is None:
            self._drop(message.id)
            return None
        # A change notification applied meanwhile is at least as new as this result
        if self._still(message.id, optimistic):
            self._set_reactions(message.id, reactions)
        return reactions

    def _still(self, message_id, reactions: list[Reaction]) -> bool:
        message = self.find(message_id)
        return message is not None and message.reactions == reactions

    # =========================================================================
    # TYPING
    # =========================================================================

    async def on_input_changed(self) -> None:
        me = self.session.current
        if me is None:
            return
        signal = TypingSignal(sender_id=str(me.id), sender_name=me.name)
        self.realtime.broadcast(TYPING_CHANNEL, signal.to_view(), exclude=self._typing_channel)

    async def on_typing_signal(self, payload: dict) -> None:
        signal = TypingSignal.model_validate(payload)
        if signal.sender_id == self.session.cell.id:
            return
        self.typing.mark(signal.sender_id, signal.sender_name)

    # =========================================================================
    # VOICE
    # =========================================================================

    def _require_recorder(self) -> VoiceRecorder:
        if self.recorder is None:
            raise RecorderError("No microphone available")
        return self.recorder

    async def start_recording(self) -> None:
        self._require_identity()
        await self._require_recorder().start()
        self.events.emit("recording", state=RecorderState.RECORDING.value, seconds=0)

    async def cancel_recording(self) -> None:
        recorder = self._require_recorder()
        await recorder.cancel()
        self.events.emit("recording", state=recorder.state.value, seconds=0)

    async def send_recording(self) -> ChatMessage:
        """
        Stop recording, upload the clip and post it as an audio message.

        Raises:
            ClipTooShort: If the clip is under the minimum size
            ChatWriteError: If the upload or insert failed
        """
        me = self._require_identity()
        recorder = self._require_recorder()
        try:
            clip = await recorder.finish()
        finally:
            self.events.emit("recording", state=recorder.state.value, seconds=recorder.elapsed_seconds)
        try:
            try:
                url = await self.gateway.upload_media(clip, "voice.webm", VOICE_CONTENT_TYPE)
            except Exception as e:
                logger.warning("Voice clip upload failed: %s", e)
                raise ChatWriteError("Failed to upload voice message") from e
            message = ChatMessage(
                id=uuid4(),
                sender_id=str(me.id),
                content=VOICE_CONTENT,
                kind=MessageType.AUDIO,
                media_url=url,
                created_at=datetime.now(timezone.utc),
            )
            await self._post(message)
            return message
        finally:
            recorder.reset()
            self.events.emit("recording", state=recorder.state.value, seconds=0)
