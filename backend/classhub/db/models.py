"""
SQLAlchemy 2.0 Models for ClassHub.

Uses modern declarative syntax with Mapped[] type annotations.
Column names are the wire shape (snake_case); schemas map them to the
camelCase domain shape.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from classhub.db.base import Base


# =============================================================================
# ENUMS
# =============================================================================


class UserRole(str, PyEnum):
    """Role of a class member."""

    STUDENT = "STUDENT"
    ADMIN = "ADMIN"
    DEV = "DEV"


class MessageType(str, PyEnum):
    """Kind of chat message payload."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"


# =============================================================================
# MODELS
# =============================================================================


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    Class member account.

    Email is stored case-folded so lookups are case-insensitive.
    Deleting a row evicts every live session of that user.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.STUDENT.value)
    student_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class AcademicItem(Base):
    """Exam, homework or event on the class calendar."""

    __tablename__ = "academic_items"
    __table_args__ = (Index("idx_academic_items_date", "date"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False, default="homework")
    date: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)  # HH:MM
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    resources: Mapped[list["Resource"]] = relationship(
        "Resource",
        back_populates="item",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class Resource(Base):
    """Link or file attached to an academic item."""

    __tablename__ = "resources"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    item_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("academic_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False, default="link")
    url: Mapped[str] = mapped_column(Text, nullable=False)

    # Relationships
    item: Mapped["AcademicItem"] = relationship("AcademicItem", back_populates="resources")


class TimetableEntry(Base):
    """Recurring weekly class slot."""

    __tablename__ = "timetable"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    day: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Monday
    start_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    end_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    subject_id: Mapped[str] = mapped_column(String(50), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    room: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)


class Message(Base):
    """
    Group chat message.

    user_id is a plain string, not a foreign key: bot-authored messages
    carry the reserved assistant sender id. The id may be assigned by the
    client so an optimistic echo and the durable row share it.
    """

    __tablename__ = "messages"
    __table_args__ = (Index("idx_messages_created_at", "created_at"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(10), nullable=False, default=MessageType.TEXT.value)
    media_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    reactions: Mapped[list["MessageReaction"]] = relationship(
        "MessageReaction",
        back_populates="message",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MessageReaction.id",
    )


class MessageReaction(Base):
    """One (user, emoji) reaction on a message; toggles are single-row writes."""

    __tablename__ = "message_reactions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="unique_message_reaction"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    emoji: Mapped[str] = mapped_column(String(16), nullable=False)

    # Relationships
    message: Mapped["Message"] = relationship("Message", back_populates="reactions")
