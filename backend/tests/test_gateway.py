"""Persistence gateway against a temporary SQLite database."""

import asyncio
from datetime import datetime, timezone
from uuid import uuid4

import pytest

import classhub.services.gateway as gateway_impl
from conftest import build_session_factory, register
from classhub.db.models import UserRole
from classhub.errors import ConfigurationError, ConflictError, SyncWarning, classify_sync_error
from classhub.schemas.academic import AcademicItemBase, AcademicItemCreate, ResourceSchema, TimetableEntrySchema
from classhub.schemas.chat import ChatMessage, Reaction
from classhub.schemas.realtime import RowChange
from classhub.schemas.users import IdentityUpdate
from classhub.services.gateway import PersistenceGateway
from classhub.subjects import SUBJECTS


def _message(sender_id: str, content: str = "hello") -> ChatMessage:
    return ChatMessage(id=uuid4(), sender_id=sender_id, content=content, created_at=datetime.now(timezone.utc))


async def _collect(broker, table: str) -> list[RowChange]:
    seen: list[RowChange] = []

    async def handler(change: RowChange):
        seen.append(change)

    await broker.subscribe_changes(table, handler)
    return seen


async def test_full_state_includes_constant_subjects(gateway: PersistenceGateway):
    user = await register(gateway, "Amina")

    snapshot = await gateway.fetch_full_state()

    assert [u.id for u in snapshot.users] == [user.id]
    assert [s.id for s in snapshot.subjects] == [s.id for s in SUBJECTS]
    assert snapshot.items == []
    assert snapshot.warnings == []


async def test_full_state_tolerates_one_failing_table(gateway: PersistenceGateway, monkeypatch):
    await register(gateway, "Amina")

    async def broken(db):
        raise RuntimeError("relation timetable does not exist")

    monkeypatch.setattr(gateway_impl, "_select_timetable", broken)
    snapshot = await gateway.fetch_full_state()

    assert snapshot.warnings == ["timetable"]
    assert snapshot.timetable == []
    assert len(snapshot.users) == 1


async def test_unconfigured_gateway_raises_configuration_error(db_path, broker, storage):
    unconfigured = PersistenceGateway(build_session_factory(db_path), broker, storage, configured=False)

    assert not unconfigured.is_configured()
    with pytest.raises(ConfigurationError):
        await unconfigured.fetch_full_state()


def test_sync_errors_are_classified_by_message():
    assert isinstance(classify_sync_error(Exception("Invalid API key")), ConfigurationError)
    assert isinstance(classify_sync_error(Exception("password authentication failed for user")), ConfigurationError)
    assert isinstance(classify_sync_error(Exception("HTTP 401 Unauthorized")), ConfigurationError)
    assert isinstance(classify_sync_error(Exception("connection reset by peer")), SyncWarning)


async def test_register_rejects_duplicate_email_case_insensitively(gateway: PersistenceGateway):
    user = await register(gateway, "Amina")
    duplicate = user.model_copy(update={"id": uuid4(), "email": user.email.upper()})

    with pytest.raises(ConflictError):
        await gateway.register_user(duplicate)
    assert (await gateway.get_user_by_email(user.email.upper())).id == user.id


async def test_update_and_delete_user_publish_changes(gateway: PersistenceGateway, broker):
    user = await register(gateway, "Amina")
    seen = await _collect(broker, "users")

    updated = await gateway.update_user(user.id, IdentityUpdate(role=UserRole.ADMIN))
    assert updated.role == UserRole.ADMIN
    assert updated.name == "Amina"
    assert await gateway.delete_user(user.id)
    assert not await gateway.delete_user(user.id)
    await broker.drain()

    assert [(c.event, c.record_id) for c in seen] == [("UPDATE", str(user.id)), ("DELETE", str(user.id))]
    assert seen[0].new["role"] == "ADMIN"


async def test_update_item_replaces_resources(gateway: PersistenceGateway):
    item = await gateway.create_item(
        AcademicItemCreate(
            title="Math exam",
            subject_id="math",
            type="exam",
            date="2026-11-02",
            time="08:30",
            resources=[
                ResourceSchema(title="Chapter 3", url="https://example.test/ch3"),
                ResourceSchema(title="Old exam", url="https://example.test/old"),
            ],
        )
    )
    kept = item.resources[0]

    updated = await gateway.update_item(
        item.id,
        AcademicItemBase(
            title="Math exam (moved)",
            subject_id="math",
            type="exam",
            date="2026-11-03",
            resources=[
                ResourceSchema(id=kept.id, title="Chapter 3 and 4", url=kept.url),
                ResourceSchema(title="Formula sheet", url="https://example.test/formulas"),
            ],
        ),
    )

    assert updated.date == "2026-11-03"
    assert sorted(r.title for r in updated.resources) == ["Chapter 3 and 4", "Formula sheet"]
    fetched = await gateway.get_item(item.id)
    assert sorted(r.title for r in fetched.resources) == ["Chapter 3 and 4", "Formula sheet"]

    assert await gateway.delete_item(item.id)
    assert await gateway.get_item(item.id) is None


async def test_replace_timetable_is_replace_all(gateway: PersistenceGateway):
    first = [
        TimetableEntrySchema(day=0, start_hour=8, end_hour=10, subject_id="math"),
        TimetableEntrySchema(day=1, start_hour=10, end_hour=12, subject_id="physics"),
    ]
    await gateway.replace_timetable(first)
    second = [first[0], TimetableEntrySchema(day=2, start_hour=14, end_hour=16, subject_id="french")]

    result = await gateway.replace_timetable(second)

    assert {e.subject_id for e in result} == {"math", "french"}
    assert {e.subject_id for e in await gateway.list_timetable()} == {"math", "french"}


async def test_messages_keep_client_assigned_ids(gateway: PersistenceGateway):
    message = _message("user-1")

    stored = await gateway.insert_message(message)

    assert stored.id == message.id
    with pytest.raises(ConflictError):
        await gateway.insert_message(message)
    assert [m.id for m in await gateway.fetch_messages()] == [message.id]


async def test_fetch_messages_returns_latest_oldest_first(gateway: PersistenceGateway):
    ids = []
    for n in range(5):
        ids.append((await gateway.insert_message(_message("user-1", f"m{n}"))).id)

    recent = await gateway.fetch_messages(limit=3)

    assert [m.id for m in recent] == ids[2:]


async def test_toggle_reaction_is_symmetric(gateway: PersistenceGateway, broker):
    message = await gateway.insert_message(_message("user-1"))
    seen = await _collect(broker, "messages")

    added = await gateway.toggle_reaction(message.id, "user-2", "👍")
    removed = await gateway.toggle_reaction(message.id, "user-2", "👍")
    await broker.drain()

    assert added == [Reaction(user_id="user-2", emoji="👍")]
    assert removed == []
    assert [c.event for c in seen] == ["UPDATE", "UPDATE"]
    assert seen[-1].new["reactions"] == []


async def test_reaction_toggles_on_different_emojis_both_survive(gateway: PersistenceGateway):
    message = await gateway.insert_message(_message("user-1"))

    await asyncio.gather(
        gateway.toggle_reaction(message.id, "user-2", "👍"),
        gateway.toggle_reaction(message.id, "user-3", "❤️"),
    )

    stored = await gateway.get_message(message.id)
    assert {(r.user_id, r.emoji) for r in stored.reactions} == {("user-2", "👍"), ("user-3", "❤️")}


async def test_toggle_reaction_on_missing_message(gateway: PersistenceGateway):
    assert await gateway.toggle_reaction(uuid4(), "user-2", "👍") is None


async def test_delete_message_removes_reactions(gateway: PersistenceGateway):
    message = await gateway.insert_message(_message("user-1"))
    await gateway.toggle_reaction(message.id, "user-2", "👍")

    assert await gateway.delete_message(message.id)
    assert await gateway.get_message(message.id) is None
    assert await gateway.toggle_reaction(message.id, "user-2", "👍") is None


async def test_upload_media_goes_through_storage(gateway: PersistenceGateway, storage):
    url = await gateway.upload_media(b"\x89PNG", "photo.png", "image/png")

    assert url.startswith("https://media.test/")
    assert storage.uploads == [(b"\x89PNG", "photo.png", "image/png")]


async def test_replace_reactions_overwrites_and_dedupes(gateway: PersistenceGateway):
    message = await gateway.insert_message(_message("u1"))
    await gateway.toggle_reaction(message.id, "u1", "👍")

    reactions = await gateway.replace_reactions(
        message.id,
        [Reaction(user_id="u2", emoji="🎉"), Reaction(user_id="u2", emoji="🎉"), Reaction(user_id="u3", emoji="👍")],
    )

    assert [(r.user_id, r.emoji) for r in reactions] == [("u2", "🎉"), ("u3", "👍")]
    assert await gateway.replace_reactions(uuid4(), []) is None
