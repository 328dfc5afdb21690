"""Local session cache."""

from datetime import datetime, timezone
from uuid import uuid4

from classhub.engine import LocalSessionCache
from classhub.schemas.academic import Snapshot
from classhub.schemas.users import Identity


def _identity() -> Identity:
    return Identity(id=uuid4(), email="amina@example.com", name="Amina", created_at=datetime.now(timezone.utc))


def test_user_slot_round_trip(tmp_path):
    cache = LocalSessionCache(tmp_path, "tab-1")
    identity = _identity()

    cache.save_user(identity)

    assert LocalSessionCache(tmp_path, "tab-1").load_user() == identity
    cache.clear_user()
    assert cache.load_user() is None


def test_malformed_user_slot_loads_as_empty(tmp_path):
    cache = LocalSessionCache(tmp_path, "tab-1")
    cache.directory.mkdir(parents=True)
    (cache.directory / "current_user.json").write_text("{not json", encoding="utf-8")

    assert cache.load_user() is None


def test_empty_state_has_subjects(tmp_path):
    snapshot = LocalSessionCache(tmp_path, "fresh").load_state()

    assert snapshot.users == []
    assert any(s.id == "math" for s in snapshot.subjects)


def test_saved_state_drops_fetch_warnings(tmp_path):
    cache = LocalSessionCache(tmp_path, "tab-1")
    cache.save_state(Snapshot(users=[_identity()], warnings=["timetable"]))

    reloaded = LocalSessionCache(tmp_path, "tab-1").load_state()

    assert len(reloaded.users) == 1
    assert reloaded.warnings == []


def test_write_failures_are_swallowed(tmp_path):
    blocker = tmp_path / "blocked"
    blocker.write_text("a file where the directory should be", encoding="utf-8")
    cache = LocalSessionCache(blocker, "tab-1")

    cache.save_user(_identity())

    assert cache.load_user() is None


def test_namespace_is_sanitised(tmp_path):
    cache = LocalSessionCache(tmp_path, "../../escape")

    assert cache.directory.parent == tmp_path
