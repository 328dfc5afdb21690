"""Realtime reconciliation: full resync, remote identity changes and presence."""

import asyncio

from conftest import FakeAssistant, build_session_factory, event_types, register
from classhub.db.models import UserRole
from classhub.engine import (
    ConnectionState,
    EventStream,
    HubSession,
    LocalSessionCache,
    RealtimeReconciler,
    SessionController,
)
from classhub.engine.identity import ACCESS_REVOKED, ACCOUNT_REMOVED
from classhub.engine.reconciler import PRESENCE_CHANNEL
from classhub.realtime import RealtimeBroker
from classhub.schemas.realtime import RowChange
from classhub.schemas.users import IdentityUpdate
from classhub.services.gateway import PersistenceGateway


class GatedGateway(PersistenceGateway):
    """Holds a fetched snapshot until the test opens the gate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fetched = asyncio.Event()
        self.gate = asyncio.Event()

    async def fetch_full_state(self):
        snapshot = await super().fetch_full_state()
        self.fetched.set()
        await self.gate.wait()
        return snapshot


class FailingGateway(PersistenceGateway):
    def __init__(self, *args, error: Exception, **kwargs):
        super().__init__(*args, **kwargs)
        self.error = error

    async def fetch_full_state(self):
        raise self.error


class FlakyBroker(RealtimeBroker):
    """Refuses the first `failures` change subscriptions."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def subscribe_changes(self, table, handler):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("realtime endpoint unreachable")
        return await super().subscribe_changes(table, handler)


def _silent_gateway(db_path, storage) -> PersistenceGateway:
    """Writes to the same database without notifying anyone."""
    return PersistenceGateway(build_session_factory(db_path), RealtimeBroker(), storage)


async def test_start_pulls_state_and_tracks_presence(gateway, make_session):
    alice = await register(gateway, "Alice")

    session = await make_session(alice)

    assert session.reconciler.state == ConnectionState.SUBSCRIBED
    assert session.reconciler.is_online(alice.id)
    types = event_types(session.events)
    assert types.index("state") < types.index("messages")
    assert "presence" in types
    assert [u.id for u in session.cache.load_state().users] == [alice.id]


async def test_remote_deletion_forces_logout(gateway, broker, make_session):
    alice = await register(gateway, "Alice")
    session = await make_session(alice)
    session.events.drain_nowait()

    await gateway.delete_user(alice.id)
    await broker.drain()

    assert session.identity is None
    assert session.cache.load_user() is None
    assert session.reconciler.state == ConnectionState.DISCONNECTED
    assert str(alice.id) not in broker.presence_state(PRESENCE_CHANNEL)
    revoked = [e for e in session.events.drain_nowait() if e.type == "session.revoked"]
    assert [e.payload["message"] for e in revoked] == [ACCESS_REVOKED]


async def test_remote_role_change_is_adopted(gateway, broker, make_session):
    alice = await register(gateway, "Alice")
    session = await make_session(alice)
    session.events.drain_nowait()

    await gateway.update_user(alice.id, IdentityUpdate(role=UserRole.ADMIN))
    await broker.drain()

    assert session.identity.role == UserRole.ADMIN
    assert session.controller.is_admin
    assert session.cache.load_user().role == UserRole.ADMIN
    updated = [e for e in session.events.drain_nowait() if e.type == "identity.updated"]
    assert updated[0].payload["profileChanged"] is False


async def test_profile_change_is_flagged(gateway, broker, make_session):
    alice = await register(gateway, "Alice")
    session = await make_session(alice)
    session.events.drain_nowait()

    await gateway.update_user(alice.id, IdentityUpdate(name="Alice B."))
    await broker.drain()

    assert session.identity.name == "Alice B."
    updated = [e for e in session.events.drain_nowait() if e.type == "identity.updated"]
    assert updated[0].payload["profileChanged"] is True


async def test_other_members_changes_trigger_resync(gateway, broker, make_session):
    alice = await register(gateway, "Alice")
    session = await make_session(alice)

    bob = await register(gateway, "Bob")
    await broker.drain()

    assert session.identity.id == alice.id
    assert {u.id for u in session.reconciler.snapshot.users} == {alice.id, bob.id}


async def test_refresh_evicts_account_deleted_without_notification(gateway, make_session, db_path, storage):
    alice = await register(gateway, "Alice")
    session = await make_session(alice)
    session.events.drain_nowait()

    await _silent_gateway(db_path, storage).delete_user(alice.id)
    await session.reconciler.refresh_full_state()

    assert session.identity is None
    revoked = [e for e in session.events.drain_nowait() if e.type == "session.revoked"]
    assert [e.payload["message"] for e in revoked] == [ACCOUNT_REMOVED]


async def test_refresh_adopts_role_changed_without_notification(gateway, make_session, db_path, storage):
    alice = await register(gateway, "Alice")
    session = await make_session(alice)

    await _silent_gateway(db_path, storage).update_user(alice.id, IdentityUpdate(role=UserRole.DEV))
    await session.reconciler.refresh_full_state()

    assert session.controller.is_dev


async def test_stale_refresh_cannot_evict_the_next_identity(db_path, broker, storage, tmp_path):
    gated = GatedGateway(build_session_factory(db_path), broker, storage)
    alice = await register(gated, "Alice")
    events = EventStream()
    cache = LocalSessionCache(tmp_path, "tab")
    controller = SessionController(gated, cache, events)
    reconciler = RealtimeReconciler(gated, broker, controller, cache, events, backoff_base=0)
    await controller.adopt(alice)

    refresh = asyncio.create_task(reconciler.refresh_full_state())
    await gated.fetched.wait()
    # The snapshot in flight predates Bob
    bob = await register(gated, "Bob")
    await controller.logout()
    assert await controller.login(bob.email)
    gated.gate.set()
    await refresh

    assert controller.current.id == bob.id
    types = event_types(events)
    assert "session.revoked" not in types
    # Only the snapshot pulled for Bob is published
    assert types.count("state") == 1
    assert {u.id for u in reconciler.snapshot.users} == {alice.id, bob.id}
    assert {u.id for u in cache.load_state().users} == {alice.id, bob.id}


async def test_deletion_notice_beats_refresh_in_flight(db_path, broker, storage, tmp_path):
    gated = GatedGateway(build_session_factory(db_path), broker, storage)
    alice = await register(gated, "Alice")
    events = EventStream()
    cache = LocalSessionCache(tmp_path, "tab")
    controller = SessionController(gated, cache, events)
    reconciler = RealtimeReconciler(gated, broker, controller, cache, events, backoff_base=0)
    await controller.adopt(alice)

    # The snapshot in flight still lists Alice, with a new role
    await _silent_gateway(db_path, storage).update_user(alice.id, IdentityUpdate(role=UserRole.ADMIN))
    refresh = asyncio.create_task(reconciler.refresh_full_state())
    await gated.fetched.wait()
    await _silent_gateway(db_path, storage).delete_user(alice.id)
    await reconciler.on_identity_change(RowChange(table="users", event="DELETE", old={"id": str(alice.id)}))
    gated.gate.set()
    await refresh

    assert controller.current is None
    assert cache.load_user() is None
    types = event_types(events)
    assert types.count("session.revoked") == 1
    assert "identity.updated" not in types


async def test_unconfigured_backend_only_reports_configuration(db_path, broker, storage):
    unconfigured = PersistenceGateway(build_session_factory(db_path), broker, storage, configured=False)
    session = HubSession(unconfigured, broker, FakeAssistant(), LocalSessionCache(db_path.parent, "x"))

    assert await session.start() is False
    assert event_types(session.events) == ["config.error"]


async def test_credential_failure_is_a_configuration_error(db_path, broker, storage, tmp_path):
    failing = FailingGateway(
        build_session_factory(db_path), broker, storage, error=RuntimeError("Invalid API key provided")
    )
    events = EventStream()
    cache = LocalSessionCache(tmp_path, "tab")
    reconciler = RealtimeReconciler(failing, broker, SessionController(failing, cache, events), cache, events)

    assert await reconciler.refresh_full_state() is None
    assert reconciler.config_error == "Invalid API key provided"
    assert event_types(events) == ["config.error"]


async def test_transient_failure_is_a_sync_warning(db_path, broker, storage, tmp_path):
    failing = FailingGateway(build_session_factory(db_path), broker, storage, error=TimeoutError("read timed out"))
    events = EventStream()
    cache = LocalSessionCache(tmp_path, "tab")
    reconciler = RealtimeReconciler(failing, broker, SessionController(failing, cache, events), cache, events)

    assert await reconciler.refresh_full_state() is None
    assert reconciler.config_error is None
    assert event_types(events) == ["sync.warning"]


async def test_presence_handlers(gateway, broker, tmp_path):
    events = EventStream()
    cache = LocalSessionCache(tmp_path, "tab")
    reconciler = RealtimeReconciler(gateway, broker, SessionController(gateway, cache, events), cache, events)

    reconciler.on_presence_sync({"u1": [{"userId": "u1"}], "u2": [{"userId": "u2"}]})
    reconciler.on_presence_join("u3")
    reconciler.on_presence_leave("u1")
    reconciler.on_presence_leave("nobody")

    assert reconciler.online_user_ids == {"u2", "u3"}
    presence = [e for e in events.drain_nowait() if e.type == "presence"]
    assert presence[-1].payload["onlineUserIds"] == ["u2", "u3"]


async def test_delete_notification_for_someone_else_only_resyncs(gateway, make_session):
    alice = await register(gateway, "Alice")
    session = await make_session(alice)

    await session.reconciler.on_identity_change(RowChange(table="users", event="DELETE", old={"id": "someone-else"}))

    assert session.identity.id == alice.id


async def test_setup_is_retried_with_backoff(gateway, tmp_path):
    flaky = FlakyBroker(failures=2)
    alice = await register(gateway, "Alice")
    events = EventStream()
    cache = LocalSessionCache(tmp_path, "tab")
    controller = SessionController(gateway, cache, events)
    reconciler = RealtimeReconciler(gateway, flaky, controller, cache, events, connect_attempts=3, backoff_base=0)
    await controller.adopt(alice)

    assert await reconciler.connect()
    assert flaky.attempts == 3
    assert reconciler.state == ConnectionState.SUBSCRIBED
    await reconciler.teardown()
    await flaky.close()


async def test_setup_gives_up_into_degraded_mode(gateway, tmp_path):
    flaky = FlakyBroker(failures=10)
    alice = await register(gateway, "Alice")
    events = EventStream()
    cache = LocalSessionCache(tmp_path, "tab")
    controller = SessionController(gateway, cache, events)
    reconciler = RealtimeReconciler(gateway, flaky, controller, cache, events, connect_attempts=2, backoff_base=0)
    await controller.adopt(alice)

    assert not await reconciler.connect()
    assert reconciler.state == ConnectionState.DISCONNECTED
    assert "realtime.degraded" in event_types(events)
    await flaky.close()


async def test_identity_switch_reopens_subscriptions(gateway, broker, make_session):
    alice = await register(gateway, "Alice")
    bob = await register(gateway, "Bob")
    session = await make_session(alice)

    await session.controller.logout()
    await broker.drain()
    assert session.reconciler.state == ConnectionState.DISCONNECTED
    assert broker.presence_state(PRESENCE_CHANNEL) == {}
    assert not session.chat.is_open

    assert await session.controller.login(bob.email)
    await broker.drain()
    assert session.reconciler.state == ConnectionState.SUBSCRIBED
    assert set(broker.presence_state(PRESENCE_CHANNEL)) == {str(bob.id)}
    assert session.chat.is_open


async def test_configuration_error_on_first_pull_stops_startup(db_path, broker, storage, tmp_path):
    failing = FailingGateway(
        build_session_factory(db_path),
        broker,
        storage,
        error=RuntimeError('password authentication failed for user "classhub"'),
    )
    alice = await register(_silent_gateway(db_path, storage), "Alice")
    session = HubSession(failing, broker, FakeAssistant(), LocalSessionCache(tmp_path, "tab"), backoff_base=0)

    assert await session.start(alice) is False

    assert not session.chat.is_open
    assert session.reconciler.state == ConnectionState.DISCONNECTED
    assert broker.presence_state(PRESENCE_CHANNEL) == {}
    assert "config.error" in event_types(session.events)
    await session.close()
