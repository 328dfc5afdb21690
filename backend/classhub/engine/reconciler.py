"""
Realtime reconciliation of the local session against the shared store.

Keeps three things honest while a session is open: the cached snapshot
(full resync on every identity-table change), the current identity
(remote deletion evicts, remote role change is adopted) and the set of
online members (presence channel).
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum

from classhub.config import get_settings
from classhub.engine.cache import LocalSessionCache
from classhub.engine.events import EventStream
from classhub.engine.identity import ACCESS_REVOKED, ACCOUNT_REMOVED, SessionController
from classhub.errors import ConfigurationError, classify_sync_error
from classhub.realtime import PresenceEvent, PresenceMember, RealtimeBroker, Subscription
from classhub.schemas.academic import Snapshot
from classhub.schemas.realtime import PresenceMeta, RowChange
from classhub.schemas.users import Identity
from classhub.services.gateway import PersistenceGateway
from classhub.services.mapping import identity_from_wire

logger = logging.getLogger(__name__)
settings = get_settings()

USERS_TABLE = "users"
PRESENCE_CHANNEL = "online-users"


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    SUBSCRIBED = "SUBSCRIBED"


class RealtimeReconciler:
    """Full-state refresh, identity change handling and presence for one session."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        realtime: RealtimeBroker,
        session: SessionController,
        cache: LocalSessionCache,
        events: EventStream,
        *,
        connect_attempts: int | None = None,
        backoff_base: float | None = None,
    ):
        self.gateway = gateway
        self.realtime = realtime
        self.session = session
        self.cache = cache
        self.events = events
        self.connect_attempts = max(1, connect_attempts or settings.realtime_connect_attempts)
        self.backoff_base = (
            backoff_base if backoff_base is not None else settings.realtime_backoff_base_seconds
        )

        self.state = ConnectionState.DISCONNECTED
        self.snapshot: Snapshot = cache.load_state()
        self.online_user_ids: set[str] = set()
        self.config_error: str | None = None

        self._changes: Subscription | None = None
        self._presence: PresenceMember | None = None
        self._active = False

    # =========================================================================
    # FULL STATE
    # =========================================================================

    async def refresh_full_state(self) -> Snapshot | None:
        """
        Pull the whole snapshot, cache it and reconcile the current identity.

        Returns the snapshot, or None when the fetch failed.
        """
        if not self.gateway.is_configured():
            self._report_failure(ConfigurationError("Backend is not configured"))
            return None

        epoch = self.session.cell.epoch
        try:
            snapshot = await self.gateway.fetch_full_state()
        except Exception as e:
            self._report_failure(classify_sync_error(e))
            return None

        if self.session.cell.epoch != epoch:
            # Fetched for an identity that is no longer active; pull again for the current one
            logger.info("Discarding snapshot fetched before an identity switch")
            return await self.refresh_full_state()

        self.config_error = None
        self.snapshot = snapshot
        self.cache.save_state(snapshot)
        self.events.emit("state", snapshot=snapshot.to_view())
        if snapshot.warnings:
            logger.warning("Partial sync, failed tables: %s", ", ".join(snapshot.warnings))
            self.events.emit(
                "sync.warning",
                message=f"Some data could not be loaded: {', '.join(snapshot.warnings)}",
            )

        current = self.session.current
        if current is None:
            return snapshot
        if USERS_TABLE in snapshot.warnings:
            # An empty roster from a failed read says nothing about the account
            return snapshot

        remote = snapshot.find_user(current.id)
        if remote is None:
            await self.session.force_logout(ACCOUNT_REMOVED)
            return snapshot
        if remote.role != current.role:
            logger.info("Role of %s changed remotely to %s", current.id, remote.role.value)
            await self.session.replace(remote)
        return snapshot

    def _report_failure(self, error: Exception) -> None:
        if isinstance(error, ConfigurationError):
            logger.error("Backend configuration error: %s", error)
            self.config_error = str(error)
            self.events.emit("config.error", message=str(error))
        else:
            logger.warning("State sync failed: %s", error)
            self.events.emit("sync.warning", message=str(error))

    # =========================================================================
    # IDENTITY CHANGES
    # =========================================================================

    async def on_identity_change(self, change: RowChange) -> None:
        current = self.session.current
        if current is not None and change.record_id == str(current.id):
            if change.event == "DELETE":
                await self.session.force_logout(ACCESS_REVOKED)
                return
            if change.event == "UPDATE":
                remote = identity_from_wire(change.new)
                merged = current.model_copy(
                    update={
                        "role": remote.role,
                        "name": remote.name,
                        "student_number": remote.student_number,
                    }
                )
                profile_changed = (
                    merged.name != current.name or merged.student_number != current.student_number
                )
                await self.session.replace(merged)
                self.events.emit(
                    "identity.updated",
                    identity=merged.to_view(),
                    profileChanged=profile_changed,
                )

        await self.refresh_full_state()

    # =========================================================================
    # PRESENCE
    # =========================================================================

    async def on_presence(self, event: PresenceEvent) -> None:
        if event.kind == "sync":
            self.on_presence_sync(event.state)
        elif event.kind == "join":
            self.on_presence_join(event.key)
        elif event.kind == "leave":
            self.on_presence_leave(event.key)

    def on_presence_sync(self, state: dict[str, list[dict]]) -> None:
        online = set()
        for key, metas in state.items():
            for meta in metas:
                online.add(str(meta.get("userId") or key))
        self.online_user_ids = online
        self._emit_presence()

    def on_presence_join(self, key: str | None) -> None:
        if key:
            self.online_user_ids.add(str(key))
        self._emit_presence()

    def on_presence_leave(self, key: str | None) -> None:
        if key:
            self.online_user_ids.discard(str(key))
        self._emit_presence()

    def _emit_presence(self) -> None:
        self.events.emit("presence", onlineUserIds=sorted(self.online_user_ids))

    def is_online(self, user_id) -> bool:
        return str(user_id) in self.online_user_ids

    # =========================================================================
    # SUBSCRIPTION LIFECYCLE
    # =========================================================================

    async def activate(self) -> bool:
        """Follow identity changes from now on and connect for the current one."""
        if not self._active:
            self._active = True
            self.session.cell.add_listener(self._on_identity_switched)
        return await self.connect()

    async def deactivate(self) -> None:
        if self._active:
            self._active = False
            self.session.cell.remove_listener(self._on_identity_switched)
        await self.teardown()

    async def _on_identity_switched(self, old: Identity | None, new: Identity | None) -> None:
        await self.teardown()
        if new is not None:
            await self.connect()

    async def connect(self) -> bool:
        """
        Open the identity change stream and join presence.

        Setup is retried with exponential backoff. After the last attempt the
        session stays usable without realtime updates.
        """
        identity = self.session.current
        if identity is None:
            return False
        epoch = self.session.cell.epoch
        self.state = ConnectionState.CONNECTING

        for attempt in range(self.connect_attempts):
            try:
                await self._open(identity)
                self.state = ConnectionState.SUBSCRIBED
                logger.info("Realtime subscribed for %s", identity.id)
                return True
            except Exception as e:
                await self.teardown()
                if attempt == self.connect_attempts - 1:
                    logger.error(
                        "Realtime setup failed after %d attempts, continuing without live updates: %s",
                        self.connect_attempts, e,
                    )
                    self.events.emit("realtime.degraded", message=str(e))
                    return False
                delay = self.backoff_base * (2 ** attempt)
                logger.warning(
                    "Realtime setup failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1, self.connect_attempts, delay, e,
                )
                self.state = ConnectionState.CONNECTING
                await asyncio.sleep(delay)
                if self.session.cell.epoch != epoch:
                    # Identity changed while waiting; its own connect takes over
                    return False
        return False

    async def _open(self, identity: Identity) -> None:
        self._changes = await self.realtime.subscribe_changes(USERS_TABLE, self.on_identity_change)
        self._presence = await self.realtime.join_presence(PRESENCE_CHANNEL, self.on_presence)
        meta = PresenceMeta(user_id=str(identity.id), online_at=datetime.now(timezone.utc))
        await self._presence.track(str(identity.id), meta.to_view())

    async def teardown(self) -> None:
        changes, presence = self._changes, self._presence
        self._changes = None
        self._presence = None
        if changes is not None:
            await changes.unsubscribe()
        if presence is not None:
            await presence.leave()
        self.online_user_ids = set()
        self.state = ConnectionState.DISCONNECTED
