"""Pytest configuration and fixtures."""

import asyncio
import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Settings are read at import time; the signing key has no default
os.environ.setdefault("JWT_SECRET_KEY", "test-signing-key")

from classhub.api.deps import create_access_token, get_assistant, get_gateway, get_realtime
from classhub.db import models  # noqa: F401 - Import models to register them
from classhub.db.base import Base
from classhub.db.models import UserRole
from classhub.engine import EventStream, HubSession, LocalSessionCache
from classhub.engine.identity import new_identity
from classhub.errors import AssistantUnavailable, StorageError
from classhub.main import app
from classhub.realtime import RealtimeBroker
from classhub.schemas.users import Identity
from classhub.services.gateway import PersistenceGateway


# =============================================================================
# FAKES
# =============================================================================


class FakeStorage:
    """Object storage stand-in that keeps uploads in memory."""

    def __init__(self):
        self.uploads: list[tuple[bytes, str | None, str]] = []
        self.fail = False

    async def upload(self, data: bytes, filename: str | None, content_type: str) -> str:
        if self.fail:
            raise StorageError("upload refused")
        self.uploads.append((data, filename, content_type))
        return f"https://media.test/uploads/{len(self.uploads)}"


class FakeAssistant:
    """Completion service returning canned replies."""

    def __init__(self, reply: str = "Your next exam is on Monday."):
        self.reply = reply
        self.error: Exception | None = None
        self.hang: asyncio.Event | None = None
        self.calls: list[tuple[str, str]] = []

    @property
    def configured(self) -> bool:
        return True

    async def complete(self, query: str, context: str) -> str:
        self.calls.append((query, context))
        if self.hang is not None:
            await self.hang.wait()
        if self.error is not None:
            raise self.error
        return self.reply


class FakeMicrophone:
    """Microphone driver fed by the test; stop() flushes a trailing chunk."""

    def __init__(self, trailing: bytes = b""):
        self.trailing = trailing
        self.sink = None
        self.deny = False
        self.fail_stop = False
        self.stopped = 0

    async def start(self, on_data) -> None:
        if self.deny:
            raise PermissionError("microphone blocked")
        self.sink = on_data

    async def stop(self) -> None:
        self.stopped += 1
        if self.fail_stop:
            self.sink = None
            raise OSError("device disconnected")
        if self.sink is not None and self.trailing:
            self.sink(self.trailing)
        self.sink = None

    def speak(self, chunk: bytes) -> None:
        self.sink(chunk)


# =============================================================================
# DATABASE
# =============================================================================


def create_schema(db_path: Path) -> None:
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()


def build_session_factory(db_path: Path) -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "classhub.db"
    create_schema(path)
    return path


@pytest.fixture
async def broker() -> AsyncGenerator[RealtimeBroker, None]:
    realtime = RealtimeBroker()
    yield realtime
    await realtime.close()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def assistant() -> FakeAssistant:
    return FakeAssistant()


@pytest.fixture
def gateway(db_path: Path, broker: RealtimeBroker, storage: FakeStorage) -> PersistenceGateway:
    return PersistenceGateway(build_session_factory(db_path), broker, storage)


@pytest.fixture
def cache(tmp_path: Path) -> LocalSessionCache:
    return LocalSessionCache(tmp_path / "sessions", "test")


@pytest.fixture
def events() -> EventStream:
    return EventStream()


# =============================================================================
# IDENTITIES AND SESSIONS
# =============================================================================


async def register(
    gateway: PersistenceGateway,
    name: str,
    role: UserRole = UserRole.STUDENT,
) -> Identity:
    identity = new_identity(name, f"{name.lower().replace(' ', '.')}@example.com", None, None)
    return await gateway.register_user(identity.model_copy(update={"role": role}))


def event_types(events: EventStream) -> list[str]:
    return [e.type for e in events.drain_nowait()]


@pytest.fixture
async def make_session(gateway, broker, assistant, tmp_path):
    """Factory for started HubSessions; every session is closed after the test."""
    sessions: list[HubSession] = []

    async def factory(identity: Identity | None = None, **options) -> HubSession:
        options.setdefault("backoff_base", 0)
        options.setdefault("cooldown_seconds", 0)
        namespace = str(identity.id) if identity else f"anon-{len(sessions)}"
        session = HubSession(
            gateway,
            broker,
            assistant,
            LocalSessionCache(tmp_path / "sessions", namespace),
            **options,
        )
        sessions.append(session)
        await session.start(identity)
        await broker.drain()
        return session

    yield factory
    for session in sessions:
        await session.close()


# =============================================================================
# HTTP
# =============================================================================


def auth_headers(identity: Identity) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(identity.id)}"}


@pytest.fixture
async def client(gateway, broker, assistant) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints against the test gateway."""
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_realtime] = lambda: broker
    app.dependency_overrides[get_assistant] = lambda: assistant
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
