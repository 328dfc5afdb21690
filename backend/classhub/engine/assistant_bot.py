"""The @zay assistant as seen from one chat session."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID, uuid4

from classhub.config import get_settings
from classhub.db.models import MessageType
from classhub.engine.cache import LocalSessionCache
from classhub.engine.events import EventStream
from classhub.schemas.chat import ChatMessage
from classhub.schemas.users import Identity
from classhub.services.assistant import AssistantService, build_context
from classhub.services.gateway import PersistenceGateway

logger = logging.getLogger(__name__)
settings = get_settings()

ASSISTANT_SENDER_ID = "zay-assistant"
ASSISTANT_NAME = "Zay"


class AssistantBot:
    """
    Answers chat messages that mention the assistant.

    The reply gets its id here, is echoed locally through on_reply and then
    written with the same id, so the store's own insert notification is
    dropped as a duplicate.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        service: AssistantService,
        cache: LocalSessionCache,
        events: EventStream,
        *,
        on_reply: Callable[[ChatMessage], None] | None = None,
        on_reply_failed: Callable[[UUID], None] | None = None,
        mention: str | None = None,
        cooldown_seconds: float | None = None,
        safety_timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.service = service
        self.cache = cache
        self.events = events
        self.on_reply = on_reply
        self.on_reply_failed = on_reply_failed
        self.mention = (mention or settings.assistant_mention).lower()
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.assistant_cooldown_seconds
        )
        self.safety_timeout_seconds = (
            safety_timeout_seconds
            if safety_timeout_seconds is not None
            else settings.assistant_safety_timeout_seconds
        )
        self._clock = clock
        self._last_trigger: float | None = None
        self._safety: asyncio.TimerHandle | None = None
        self.composing = False

    def mentions(self, text: str) -> bool:
        return self.mention in text.lower()

    def _set_composing(self, composing: bool) -> None:
        if self._safety is not None:
            self._safety.cancel()
            self._safety = None
        if composing:
            loop = asyncio.get_running_loop()
            self._safety = loop.call_later(self.safety_timeout_seconds, self._set_composing, False)
        if composing != self.composing:
            self.composing = composing
            self.events.emit("assistant.typing", active=composing)

    async def handle_trigger(self, query: str, requester: Identity | None) -> ChatMessage | None:
        """
        Ask the assistant and post its reply.

        Returns the posted reply, or None when the trigger fell inside the
        cooldown window or the completion failed.
        """
        now = self._clock()
        if self._last_trigger is not None and now - self._last_trigger < self.cooldown_seconds:
            logger.info("Assistant trigger ignored, cooldown active")
            return None
        self._last_trigger = now

        self._set_composing(True)
        try:
            context = build_context(self.cache.load_state(), requester.name if requester else None)
            text = await self.service.complete(query, context)
        except Exception as e:
            logger.warning("Assistant completion failed: %s", e)
            self._set_composing(False)
            if requester is not None and requester.is_dev:
                self.events.emit("assistant.diagnostic", message=f"DEBUG_ERROR: {e}")
            return None

        self._set_composing(False)
        reply = ChatMessage(
            id=uuid4(),
            sender_id=ASSISTANT_SENDER_ID,
            content=text,
            kind=MessageType.TEXT,
            created_at=datetime.now(timezone.utc),
        )
        if self.on_reply is not None:
            self.on_reply(reply)
        try:
            await self.gateway.insert_message(reply)
        except Exception:
            logger.exception("Failed to persist assistant reply %s", reply.id)
            if self.on_reply_failed is not None:
                self.on_reply_failed(reply.id)
            return None
        return reply

    def close(self) -> None:
        if self._safety is not None:
            self._safety.cancel()
            self._safety = None
        self.composing = False
