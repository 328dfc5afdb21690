"""
Persistence gateway.

Typed CRUD over the Postgres tables. Every committed write is followed by a
row-change notification on the realtime broker, so live sessions observe
writes made by anyone (REST callers, other sessions, admin tooling).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import AsyncIterator, TypeVar
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from classhub.db.models import (
    AcademicItem,
    Message,
    MessageReaction,
    Resource,
    TimetableEntry,
    User,
)
from classhub.errors import ConfigurationError, ConflictError
from classhub.realtime.broker import RealtimeBroker
from classhub.schemas.academic import (
    AcademicItemBase,
    AcademicItemCreate,
    AcademicItemRead,
    Snapshot,
    TimetableEntrySchema,
)
from classhub.schemas.chat import ChatMessage, Reaction
from classhub.schemas.realtime import RowChange
from classhub.schemas.users import Identity, IdentityUpdate
from classhub.services.mapping import (
    identity_from_row,
    identity_to_wire,
    item_from_row,
    item_to_wire,
    message_from_row,
    message_to_wire,
    timetable_from_row,
    timetable_to_wire,
)
from classhub.services.storage import MediaStorage
from classhub.subjects import SUBJECTS

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _select_users(db: AsyncSession) -> list[Identity]:
    result = await db.execute(select(User).order_by(User.created_at, User.name))
    return [identity_from_row(u) for u in result.scalars()]


async def _select_items(db: AsyncSession) -> list[AcademicItemRead]:
    result = await db.execute(select(AcademicItem).order_by(AcademicItem.date, AcademicItem.time))
    return [item_from_row(i) for i in result.scalars()]


async def _select_timetable(db: AsyncSession) -> list[TimetableEntrySchema]:
    result = await db.execute(select(TimetableEntry).order_by(TimetableEntry.day, TimetableEntry.start_hour))
    return [timetable_from_row(e) for e in result.scalars()]


class PersistenceGateway:
    """Backend client wrapper used by routes and session engines."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        realtime: RealtimeBroker,
        storage: MediaStorage,
        *,
        configured: bool = True,
    ):
        self._sessions = session_factory
        self._realtime = realtime
        self._storage = storage
        self._configured = configured

    def is_configured(self) -> bool:
        return self._configured

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if not self._configured:
            raise ConfigurationError("Backend credential is missing. Set DATABASE_URL_OVERRIDE or POSTGRES_PASSWORD.")
        async with self._sessions() as db:
            try:
                yield db
            except Exception:
                await db.rollback()
                raise

    def _publish(self, table: str, event: str, *, new: dict | None = None, old: dict | None = None) -> None:
        self._realtime.publish_change(RowChange(table=table, event=event, new=new or {}, old=old or {}))

    # =========================================================================
    # FULL STATE
    # =========================================================================

    async def _load_table(self, loader: Callable[[AsyncSession], Awaitable[list[T]]]) -> list[T]:
        async with self._session() as db:
            return await loader(db)

    async def fetch_full_state(self) -> Snapshot:
        """
        Pull users, items and timetable.

        Tables are fetched independently so one failing table does not kill
        the whole load: it is logged, left empty and listed in warnings. If
        every table fails the first error is raised for classification.
        """
        loaders = {"users": _select_users, "academic_items": _select_items, "timetable": _select_timetable}
        results = await asyncio.gather(
            *(self._load_table(loader) for loader in loaders.values()),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, BaseException)]
        if len(errors) == len(results):
            raise errors[0]

        collections: dict[str, list] = {}
        warnings: list[str] = []
        for name, result in zip(loaders, results):
            if isinstance(result, BaseException):
                logger.warning("Error fetching '%s': %s", name, result)
                warnings.append(name)
                collections[name] = []
            else:
                collections[name] = result

        return Snapshot(
            users=collections["users"],
            subjects=SUBJECTS,
            items=collections["academic_items"],
            timetable=collections["timetable"],
            warnings=warnings,
        )

    # =========================================================================
    # USERS
    # =========================================================================

    async def list_users(self) -> list[Identity]:
        return await self._load_table(_select_users)

    async def get_user(self, user_id: UUID) -> Identity | None:
        async with self._session() as db:
            user = await db.get(User, user_id)
            return identity_from_row(user) if user else None

    async def get_user_by_email(self, email: str) -> Identity | None:
        async with self._session() as db:
            result = await db.execute(select(User).where(User.email == email.strip().lower()))
            user = result.scalar_one_or_none()
            return identity_from_row(user) if user else None

    async def register_user(self, identity: Identity) -> Identity:
        """
        Insert a new identity.

        Raises:
            ConflictError: If the email (case-folded) or id is already taken
        """
        email = identity.email.lower()
        async with self._session() as db:
            result = await db.execute(select(User.id).where(User.email == email))
            if result.scalar_one_or_none() is not None:
                raise ConflictError(f"An account already exists for {email}")

            user = User(
                id=identity.id,
                email=email,
                name=identity.name,
                role=identity.role.value,
                student_number=identity.student_number,
                created_at=identity.created_at,
            )
            db.add(user)
            try:
                await db.commit()
            except IntegrityError as e:
                raise ConflictError(f"An account already exists for {email}") from e
            wire = identity_to_wire(user)

        self._publish("users", "INSERT", new=wire)
        return identity_from_row(user)

    async def update_user(self, user_id: UUID, changes: IdentityUpdate) -> Identity | None:
        """Update role, name or student number. Returns None when the user is gone."""
        async with self._session() as db:
            user = await db.get(User, user_id)
            if user is None:
                return None
            old = identity_to_wire(user)
            for key, value in changes.model_dump(exclude_unset=True).items():
                if value is None:
                    continue
                setattr(user, key, value.value if key == "role" else value)
            await db.commit()
            new = identity_to_wire(user)

        self._publish("users", "UPDATE", new=new, old=old)
        return identity_from_row(user)

    async def delete_user(self, user_id: UUID) -> bool:
        async with self._session() as db:
            user = await db.get(User, user_id)
            if user is None:
                return False
            old = identity_to_wire(user)
            await db.delete(user)
            await db.commit()

        self._publish("users", "DELETE", old=old)
        return True

    # =========================================================================
    # ACADEMIC ITEMS
    # =========================================================================

    async def list_items(self) -> list[AcademicItemRead]:
        return await self._load_table(_select_items)

    async def get_item(self, item_id: UUID) -> AcademicItemRead | None:
        async with self._session() as db:
            item = await db.get(AcademicItem, item_id)
            return item_from_row(item) if item else None

    @staticmethod
    def _resources_for(item_id: UUID, data: AcademicItemBase) -> list[Resource]:
        return [
            Resource(id=r.id, item_id=item_id, title=r.title, type=r.type, url=r.url)
            for r in data.resources
        ]

    @staticmethod
    def _merge_resources(item: AcademicItem, data: AcademicItemBase) -> None:
        """Make item.resources match data.resources, updating rows that keep their id."""
        existing = {r.id: r for r in item.resources}
        merged = []
        for incoming in data.resources:
            resource = existing.get(incoming.id)
            if resource is None:
                resource = Resource(id=incoming.id, item_id=item.id)
            resource.title = incoming.title
            resource.type = incoming.type
            resource.url = incoming.url
            merged.append(resource)
        # delete-orphan removes whatever is no longer listed
        item.resources = merged

    async def create_item(self, data: AcademicItemCreate) -> AcademicItemRead:
        async with self._session() as db:
            item = AcademicItem(
                id=data.id,
                title=data.title,
                subject_id=data.subject_id,
                type=data.type,
                date=data.date,
                time=data.time,
                location=data.location,
                notes=data.notes,
                resources=self._resources_for(data.id, data),
            )
            db.add(item)
            try:
                await db.commit()
            except IntegrityError as e:
                raise ConflictError(f"Academic item {data.id} already exists") from e
            wire = item_to_wire(item)
            read = item_from_row(item)

        self._publish("academic_items", "INSERT", new=wire)
        return read

    async def update_item(self, item_id: UUID, data: AcademicItemBase) -> AcademicItemRead | None:
        """Update an item; its resources are replaced wholesale."""
        async with self._session() as db:
            item = await db.get(AcademicItem, item_id)
            if item is None:
                return None
            old = item_to_wire(item)
            for key, value in data.model_dump(exclude={"id", "resources"}).items():
                setattr(item, key, value)
            self._merge_resources(item, data)
            await db.commit()
            wire = item_to_wire(item)
            read = item_from_row(item)

        self._publish("academic_items", "UPDATE", new=wire, old=old)
        return read

    async def delete_item(self, item_id: UUID) -> bool:
        async with self._session() as db:
            item = await db.get(AcademicItem, item_id)
            if item is None:
                return False
            old = item_to_wire(item)
            await db.delete(item)
            await db.commit()

        self._publish("academic_items", "DELETE", old=old)
        return True

    # =========================================================================
    # TIMETABLE
    # =========================================================================

    async def list_timetable(self) -> list[TimetableEntrySchema]:
        return await self._load_table(_select_timetable)

    async def replace_timetable(self, entries: list[TimetableEntrySchema]) -> list[TimetableEntrySchema]:
        """Replace every timetable entry with the given list."""
        async with self._session() as db:
            result = await db.execute(select(TimetableEntry))
            existing = list(result.scalars())
            previous = [timetable_to_wire(e) for e in existing]
            for entry in existing:
                await db.delete(entry)
            # Flush deletes first so re-submitted ids can be inserted again
            await db.flush()
            rows = [TimetableEntry(**entry.model_dump()) for entry in entries]
            db.add_all(rows)
            await db.commit()
            current = [timetable_to_wire(r) for r in rows]

        for old in previous:
            self._publish("timetable", "DELETE", old=old)
        for new in current:
            self._publish("timetable", "INSERT", new=new)
        return [timetable_from_row(r) for r in rows]

    # =========================================================================
    # CHAT MESSAGES
    # =========================================================================

    async def fetch_messages(self, limit: int = 100) -> list[ChatMessage]:
        """Most recent messages, oldest first."""
        async with self._session() as db:
            result = await db.execute(
                select(Message).order_by(Message.created_at.desc()).limit(limit)
            )
            messages = list(result.scalars())
        messages.reverse()
        return [message_from_row(m) for m in messages]

    async def get_message(self, message_id: UUID) -> ChatMessage | None:
        async with self._session() as db:
            message = await db.get(Message, message_id)
            return message_from_row(message) if message else None

    async def insert_message(self, message: ChatMessage) -> ChatMessage:
        """
        Persist a message, keeping its (possibly client-assigned) id.

        Raises:
            ConflictError: If a message with this id already exists
        """
        async with self._session() as db:
            row = Message(
                id=message.id,
                user_id=message.sender_id,
                content=message.content,
                type=message.kind.value,
                media_url=message.media_url,
                file_name=message.file_name,
                created_at=message.created_at,
                reactions=[],
            )
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as e:
                raise ConflictError(f"Message {message.id} already exists") from e
            wire = message_to_wire(row)

        self._publish("messages", "INSERT", new=wire)
        return message_from_row(row)

    async def delete_message(self, message_id: UUID) -> bool:
        async with self._session() as db:
            message = await db.get(Message, message_id)
            if message is None:
                return False
            old = message_to_wire(message)
            await db.delete(message)
            await db.commit()

        self._publish("messages", "DELETE", old=old)
        return True

    async def _reactions(self, db: AsyncSession, message_id: UUID) -> list[Reaction]:
        result = await db.execute(
            select(MessageReaction)
            .where(MessageReaction.message_id == message_id)
            .order_by(MessageReaction.id)
        )
        return [Reaction(user_id=r.user_id, emoji=r.emoji) for r in result.scalars()]

    async def _publish_reactions(self, db: AsyncSession, message_id: UUID) -> list[Reaction]:
        message = await db.get(Message, message_id, populate_existing=True)
        reactions = await self._reactions(db, message_id)
        wire = message_to_wire(message)
        wire["reactions"] = [{"user_id": r.user_id, "emoji": r.emoji} for r in reactions]
        self._publish("messages", "UPDATE", new=wire)
        return reactions

    async def toggle_reaction(self, message_id: UUID, user_id: str, emoji: str) -> list[Reaction] | None:
        """
        Add the (user, emoji) reaction if absent, remove it if present.

        A single-row write, so concurrent toggles of different emojis never
        discard each other. Returns the resulting collection, or None when
        the message is gone.
        """
        async with self._session() as db:
            if await db.get(Message, message_id) is None:
                return None
            result = await db.execute(
                select(MessageReaction).where(
                    MessageReaction.message_id == message_id,
                    MessageReaction.user_id == user_id,
                    MessageReaction.emoji == emoji,
                )
            )
            existing = result.scalar_one_or_none()
            if existing is not None:
                await db.delete(existing)
            else:
                db.add(MessageReaction(message_id=message_id, user_id=user_id, emoji=emoji))
            try:
                await db.commit()
            except IntegrityError:
                # A concurrent toggle inserted the same row first; keep it
                await db.rollback()
                logger.info("Reaction %s by %s on %s already recorded", emoji, user_id, message_id)
            return await self._publish_reactions(db, message_id)

    async def replace_reactions(self, message_id: UUID, reactions: list[Reaction]) -> list[Reaction] | None:
        """Overwrite the whole reaction collection of a message."""
        async with self._session() as db:
            if await db.get(Message, message_id) is None:
                return None
            await db.execute(delete(MessageReaction).where(MessageReaction.message_id == message_id))
            seen: set[tuple[str, str]] = set()
            for reaction in reactions:
                if (reaction.user_id, reaction.emoji) in seen:
                    continue
                seen.add((reaction.user_id, reaction.emoji))
                db.add(MessageReaction(message_id=message_id, user_id=reaction.user_id, emoji=reaction.emoji))
            await db.commit()
            return await self._publish_reactions(db, message_id)

    # =========================================================================
    # MEDIA
    # =========================================================================

    async def upload_media(self, data: bytes, filename: str | None, content_type: str) -> str:
        """Upload a blob to object storage and return its public URL."""
        return await self._storage.upload(data, filename, content_type)
