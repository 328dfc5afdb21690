"""Identity schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import EmailStr, Field

from classhub.db.models import UserRole
from classhub.schemas.base import BaseSchema


class Identity(BaseSchema):
    """A class member as seen by sessions and views."""

    id: UUID
    email: str
    name: str
    role: UserRole = UserRole.STUDENT
    student_number: str | None = None
    created_at: datetime

    @property
    def is_dev(self) -> bool:
        return self.role == UserRole.DEV

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.DEV)


class RegisterRequest(BaseSchema):
    """Self-registration. A matching developer secret grants the DEV role."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    secret: str | None = None


class LoginRequest(BaseSchema):
    """Email-only login."""

    email: EmailStr


class IdentityUpdate(BaseSchema):
    """Mutable identity fields. All optional."""

    role: UserRole | None = None
    name: str | None = Field(None, min_length=1, max_length=255)
    student_number: str | None = Field(None, max_length=20)


class RosterEntry(Identity):
    """Identity plus live presence, for the class list."""

    online: bool = False
