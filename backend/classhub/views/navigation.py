"""Role-gated navigation between the hub's views."""

from dataclasses import dataclass

from classhub.db.models import UserRole
from classhub.schemas.users import Identity

DEFAULT_VIEW = "overview"

_EVERYONE = frozenset(UserRole)
_STAFF = frozenset({UserRole.ADMIN, UserRole.DEV})


@dataclass(frozen=True)
class NavItem:
    id: str
    label: str
    roles: frozenset[UserRole] = _EVERYONE

    def allows(self, role: UserRole) -> bool:
        return role in self.roles


NAVIGATION: list[NavItem] = [
    NavItem("overview", "Overview"),
    NavItem("calendar", "Calendar"),
    NavItem("timetable", "Timetable"),
    NavItem("subjects", "Subjects"),
    NavItem("classlist", "Class List"),
    NavItem("chat", "Chat"),
    NavItem("admin", "Admin", _STAFF),
    NavItem("dev", "Developer", frozenset({UserRole.DEV})),
]


def views_for(identity: Identity) -> list[NavItem]:
    return [item for item in NAVIGATION if item.allows(identity.role)]


def resolve_view(requested: str | None, identity: Identity) -> str:
    """The requested view if this role may open it, otherwise the overview."""
    for item in views_for(identity):
        if item.id == requested:
            return item.id
    return DEFAULT_VIEW
