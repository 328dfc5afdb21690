"""Calendar, timetable and subject schemas."""

from uuid import UUID, uuid4

from pydantic import Field, field_validator, model_validator

from classhub.schemas.base import BaseSchema
from classhub.schemas.users import Identity


class Subject(BaseSchema):
    """Subject taught to the class. Shipped as constants, never persisted."""

    id: str
    name: str
    color: str


class ResourceSchema(BaseSchema):
    """Link or file attached to an academic item."""

    id: UUID = Field(default_factory=uuid4)
    title: str = Field(..., min_length=1, max_length=255)
    type: str = Field("link", max_length=30)
    url: str = Field(..., min_length=1)


class AcademicItemBase(BaseSchema):
    """Base academic item fields."""

    title: str = Field(..., min_length=1, max_length=255)
    subject_id: str = Field(..., min_length=1, max_length=50)
    type: str = Field("homework", max_length=30)
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: str | None = Field(None, pattern=r"^\d{2}:\d{2}$")
    location: str | None = Field(None, max_length=255)
    notes: str | None = None
    resources: list[ResourceSchema] = Field(default_factory=list)

    @field_validator("resources", mode="before")
    @classmethod
    def ensure_list(cls, v):
        """Treat a missing resource collection as empty."""
        if v is None:
            return []
        return v


class AcademicItemCreate(AcademicItemBase):
    """Schema for creating an academic item. The id may be chosen by the caller."""

    id: UUID = Field(default_factory=uuid4)


class AcademicItemRead(AcademicItemBase):
    """Schema for reading an academic item."""

    id: UUID


class TimetableEntrySchema(BaseSchema):
    """Recurring weekly slot."""

    id: UUID = Field(default_factory=uuid4)
    day: int = Field(..., ge=0, le=6)
    start_hour: int = Field(..., ge=0, le=23)
    end_hour: int = Field(..., ge=1, le=24)
    subject_id: str = Field(..., min_length=1, max_length=50)
    color: str | None = Field(None, max_length=30)
    room: str | None = Field(None, max_length=50)

    @model_validator(mode="after")
    def check_hours(self):
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be after start_hour")
        return self


class Snapshot(BaseSchema):
    """
    Full remote state pulled by a refresh.

    warnings lists the tables that failed to load; their collections are
    empty rather than aborting the whole pull.
    """

    users: list[Identity] = Field(default_factory=list)
    subjects: list[Subject] = Field(default_factory=list)
    items: list[AcademicItemRead] = Field(default_factory=list)
    timetable: list[TimetableEntrySchema] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def find_user(self, user_id) -> Identity | None:
        """Look up an identity by id."""
        for user in self.users:
            if str(user.id) == str(user_id):
                return user
        return None
