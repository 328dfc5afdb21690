"""Current-identity cell and the session/auth controller."""

import logging
import random
from datetime import datetime, timezone
from typing import Awaitable, Callable
from uuid import uuid4

from classhub.config import get_settings
from classhub.db.models import UserRole
from classhub.engine.cache import LocalSessionCache
from classhub.engine.events import EventStream
from classhub.errors import ConflictError
from classhub.schemas.users import Identity
from classhub.services.gateway import PersistenceGateway

logger = logging.getLogger(__name__)
settings = get_settings()

IdentityListener = Callable[[Identity | None, Identity | None], Awaitable[None]]

ACCESS_REVOKED = "Your access has been revoked by an administrator."
ACCOUNT_REMOVED = "Your account no longer exists."


def new_identity(name: str, email: str, secret: str | None, dev_secret: str | None) -> Identity:
    """A fresh registration; the developer secret grants DEV."""
    role = UserRole.DEV if dev_secret and secret == dev_secret else UserRole.STUDENT
    return Identity(
        id=uuid4(),
        email=email.strip().lower(),
        name=name.strip(),
        role=role,
        student_number=f"STU-{random.randint(100, 999)}",
        created_at=datetime.now(timezone.utc),
    )


class IdentityCell:
    """
    The one mutable slot holding the current identity.

    Handlers read it at call time rather than capturing a value, so a
    subscription opened for one identity never acts on a stale copy.
    `epoch` moves whenever the identity id changes; listeners run after
    every id change.
    """

    def __init__(self):
        self._value: Identity | None = None
        self.epoch = 0
        self._listeners: list[IdentityListener] = []

    def get(self) -> Identity | None:
        return self._value

    @property
    def id(self) -> str | None:
        return str(self._value.id) if self._value else None

    def add_listener(self, listener: IdentityListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: IdentityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def set(self, identity: Identity | None) -> None:
        old = self._value
        self._value = identity
        old_id = str(old.id) if old else None
        new_id = str(identity.id) if identity else None
        if old_id == new_id:
            return
        self.epoch += 1
        for listener in list(self._listeners):
            await listener(old, identity)


class SessionController:
    """Login, registration, logout and role checks for one session."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        cache: LocalSessionCache,
        events: EventStream,
        *,
        dev_secret: str | None = None,
    ):
        self.gateway = gateway
        self.cache = cache
        self.events = events
        self.cell = IdentityCell()
        self.dev_secret = dev_secret if dev_secret is not None else settings.dev_registration_secret
        self.view = "login"

    @property
    def current(self) -> Identity | None:
        return self.cell.get()

    @property
    def is_admin(self) -> bool:
        return self.current is not None and self.current.is_admin

    @property
    def is_dev(self) -> bool:
        return self.current is not None and self.current.is_dev

    def _navigate(self, view: str) -> None:
        self.view = view
        self.events.emit("navigate", view=view)

    async def restore(self) -> Identity | None:
        """Load the remembered identity, if any."""
        identity = self.cache.load_user()
        if identity is not None:
            await self.cell.set(identity)
            self._navigate("overview")
        return identity

    async def adopt(self, identity: Identity) -> None:
        """Make an already-authenticated identity current and remember it."""
        await self.cell.set(identity)
        self.cache.save_user(identity)
        self._navigate("overview")

    async def replace(self, identity: Identity) -> None:
        """Swap in a newer copy of the current identity (role or profile change)."""
        await self.cell.set(identity)
        self.cache.save_user(identity)
        self.events.emit("identity", identity=identity.to_view())

    async def login(self, email: str) -> bool:
        identity = await self.gateway.get_user_by_email(email)
        if identity is None:
            logger.info("Login rejected for unknown email")
            return False
        await self.adopt(identity)
        return True

    async def register(self, name: str, email: str, secret: str | None = None) -> bool:
        identity = new_identity(name, email, secret, self.dev_secret)
        try:
            identity = await self.gateway.register_user(identity)
        except ConflictError as e:
            logger.info("Registration rejected: %s", e)
            return False
        await self.adopt(identity)
        return True

    async def logout(self) -> None:
        self.cache.clear_user()
        await self.cell.set(None)
        self._navigate("login")

    async def force_logout(self, reason: str) -> None:
        """End the session because the account changed remotely."""
        if self.current is None:
            return
        logger.warning("Forcing logout of %s: %s", self.cell.id, reason)
        await self.logout()
        self.events.emit("session.revoked", message=reason)
