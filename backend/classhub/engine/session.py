"""One open view: identity, reconciliation and chat wired to a single event stream."""

import logging

from classhub.config import get_settings
from classhub.engine.assistant_bot import AssistantBot
from classhub.engine.cache import LocalSessionCache
from classhub.engine.chat import ChatEngine
from classhub.engine.events import EventStream
from classhub.engine.identity import SessionController
from classhub.engine.reconciler import RealtimeReconciler
from classhub.engine.recorder import MicrophoneDriver
from classhub.errors import ConfigurationError
from classhub.realtime import RealtimeBroker
from classhub.schemas.users import Identity
from classhub.services.assistant import AssistantService
from classhub.services.gateway import PersistenceGateway

logger = logging.getLogger(__name__)
settings = get_settings()


class HubSession:
    """
    Composition root for a connected view.

    Startup order: restore the identity, pull the full state, then open
    realtime subscriptions for that identity. Chat is open exactly while
    someone is logged in.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        realtime: RealtimeBroker,
        assistant: AssistantService,
        cache: LocalSessionCache,
        *,
        microphone: MicrophoneDriver | None = None,
        events: EventStream | None = None,
        dev_secret: str | None = None,
        connect_attempts: int | None = None,
        backoff_base: float | None = None,
        cooldown_seconds: float | None = None,
        safety_timeout_seconds: float | None = None,
        typing_expiry_seconds: float | None = None,
        min_clip_bytes: int | None = None,
    ):
        self.gateway = gateway
        self.events = events or EventStream()
        self.cache = cache
        self.controller = SessionController(
            gateway, cache, self.events, dev_secret=dev_secret
        )
        self.reconciler = RealtimeReconciler(
            gateway,
            realtime,
            self.controller,
            cache,
            self.events,
            connect_attempts=connect_attempts,
            backoff_base=backoff_base,
        )
        self.bot = AssistantBot(
            gateway,
            assistant,
            cache,
            self.events,
            cooldown_seconds=cooldown_seconds,
            safety_timeout_seconds=safety_timeout_seconds,
        )
        self.chat = ChatEngine(
            gateway,
            realtime,
            self.controller,
            cache,
            self.events,
            self.bot,
            microphone=microphone,
            typing_expiry_seconds=typing_expiry_seconds,
            min_clip_bytes=min_clip_bytes,
        )
        self.started = False

    @property
    def identity(self) -> Identity | None:
        return self.controller.current

    async def start(self, identity: Identity | None = None) -> bool:
        """
        Bring the session up.

        Returns False when the backend is unconfigured or the first pull
        fails with a configuration error; the session then shows only that
        error and opens no subscriptions.
        """
        if not self.gateway.is_configured():
            error = ConfigurationError("Backend is not configured")
            logger.error("%s", error)
            self.events.emit("config.error", message=str(error))
            return False

        if identity is not None:
            await self.controller.adopt(identity)
        else:
            await self.controller.restore()

        await self.reconciler.refresh_full_state()
        if self.reconciler.config_error is not None:
            return False
        self.controller.cell.add_listener(self._on_identity_switched)
        self.started = True
        await self.reconciler.activate()
        if self.controller.current is not None:
            await self.chat.open()
        return True

    async def _on_identity_switched(self, old: Identity | None, new: Identity | None) -> None:
        await self.chat.close()
        if new is not None:
            await self.chat.open()

    async def close(self) -> None:
        if self.started:
            self.controller.cell.remove_listener(self._on_identity_switched)
            self.started = False
        await self.chat.close()
        await self.reconciler.deactivate()
