"""Weekly timetable routes."""

from fastapi import APIRouter

from classhub.api.deps import AdminUser, CurrentUser, Gateway
from classhub.schemas.academic import TimetableEntrySchema

router = APIRouter(prefix="/timetable", tags=["timetable"])


@router.get("/", response_model=list[TimetableEntrySchema])
async def get_timetable(current_user: CurrentUser, gateway: Gateway) -> list[TimetableEntrySchema]:
    return await gateway.list_timetable()


@router.put("/", response_model=list[TimetableEntrySchema])
async def replace_timetable(
    entries: list[TimetableEntrySchema],
    current_user: AdminUser,
    gateway: Gateway,
) -> list[TimetableEntrySchema]:
    """Replace the whole timetable with the submitted entries."""
    return await gateway.replace_timetable(entries)
