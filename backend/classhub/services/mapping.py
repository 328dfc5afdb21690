"""Mapping between wire rows (snake_case columns) and domain records."""

from datetime import datetime

from classhub.db.models import AcademicItem, Message, Resource, TimetableEntry, User
from classhub.schemas.academic import AcademicItemRead, TimetableEntrySchema
from classhub.schemas.chat import ChatMessage, Reaction
from classhub.schemas.users import Identity


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def identity_to_wire(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "student_number": user.student_number,
        "created_at": _iso(user.created_at),
    }


def identity_from_wire(row: dict) -> Identity:
    return Identity.model_validate(row)


def identity_from_row(user: User) -> Identity:
    return Identity.model_validate(user)


def resource_to_wire(resource: Resource) -> dict:
    return {
        "id": str(resource.id),
        "item_id": str(resource.item_id),
        "title": resource.title,
        "type": resource.type,
        "url": resource.url,
    }


def item_to_wire(item: AcademicItem) -> dict:
    return {
        "id": str(item.id),
        "title": item.title,
        "subject_id": item.subject_id,
        "type": item.type,
        "date": item.date,
        "time": item.time,
        "location": item.location,
        "notes": item.notes,
        "resources": [resource_to_wire(r) for r in item.resources],
    }


def item_from_row(item: AcademicItem) -> AcademicItemRead:
    return AcademicItemRead.model_validate(item)


def timetable_to_wire(entry: TimetableEntry) -> dict:
    return {
        "id": str(entry.id),
        "day": entry.day,
        "start_hour": entry.start_hour,
        "end_hour": entry.end_hour,
        "subject_id": entry.subject_id,
        "color": entry.color,
        "room": entry.room,
    }


def timetable_from_row(entry: TimetableEntry) -> TimetableEntrySchema:
    return TimetableEntrySchema.model_validate(entry)


def message_to_wire(message: Message) -> dict:
    return {
        "id": str(message.id),
        "user_id": message.user_id,
        "content": message.content,
        "type": message.type,
        "media_url": message.media_url,
        "file_name": message.file_name,
        "created_at": _iso(message.created_at),
        "reactions": [{"user_id": r.user_id, "emoji": r.emoji} for r in message.reactions],
    }


def message_from_wire(row: dict) -> ChatMessage:
    """Build a ChatMessage from a wire row; user_id is the sender, type the kind."""
    return ChatMessage(
        id=row["id"],
        sender_id=str(row["user_id"]),
        content=row.get("content") or "",
        kind=row.get("type") or "text",
        media_url=row.get("media_url"),
        file_name=row.get("file_name"),
        created_at=row["created_at"],
        reactions=reactions_from_wire(row.get("reactions")),
    )


def reactions_from_wire(rows: list[dict] | None) -> list[Reaction]:
    return [Reaction(user_id=str(r["user_id"]), emoji=r["emoji"]) for r in rows or []]


def message_from_row(message: Message) -> ChatMessage:
    return message_from_wire(message_to_wire(message))
