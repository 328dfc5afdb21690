"""Class list and member administration routes."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from classhub.api.deps import AdminUser, CurrentUser, Gateway, Realtime
from classhub.db.models import UserRole
from classhub.engine.reconciler import PRESENCE_CHANNEL
from classhub.realtime import RealtimeBroker
from classhub.schemas.users import Identity, IdentityUpdate, RosterEntry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _online_ids(realtime: RealtimeBroker) -> set[str]:
    online = set()
    for key, metas in realtime.presence_state(PRESENCE_CHANNEL).items():
        for meta in metas:
            online.add(str(meta.get("userId") or key))
    return online


def _matches(identity: Identity, search: str) -> bool:
    needle = search.strip().lower()
    return needle in identity.name.lower() or needle in (identity.student_number or "").lower()


@router.get("/", response_model=list[RosterEntry])
async def list_users(
    current_user: CurrentUser,
    gateway: Gateway,
    realtime: Realtime,
    search: str | None = None,
) -> list[RosterEntry]:
    """Every member, filtered by name or student number, with an online flag."""
    users = await gateway.list_users()
    if search:
        users = [u for u in users if _matches(u, search)]
    online = _online_ids(realtime)
    return [RosterEntry(**u.model_dump(), online=str(u.id) in online) for u in users]


@router.patch("/{user_id}", response_model=Identity)
async def update_user(
    user_id: UUID,
    data: IdentityUpdate,
    current_user: CurrentUser,
    gateway: Gateway,
) -> Identity:
    """
    Update a member.

    Role changes are DEV only. Name and student number may be edited by the
    member themself or by staff.
    """
    if data.role is not None and not current_user.is_dev:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only developers can change roles")
    if user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")

    updated = await gateway.update_user(user_id, data)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    logger.info("User %s updated by %s", user_id, current_user.id)
    return updated


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: UUID, current_user: AdminUser, gateway: Gateway) -> None:
    """Remove a member. Developer accounts cannot be removed this way."""
    target = await gateway.get_user(user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if target.role == UserRole.DEV:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Developer accounts cannot be deleted")
    await gateway.delete_user(user_id)
    logger.info("User %s deleted by %s", user_id, current_user.id)
