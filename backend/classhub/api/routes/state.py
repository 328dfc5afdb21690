"""Full-state snapshot, subjects and navigation."""

from fastapi import APIRouter, HTTPException, status

from classhub.api.deps import CurrentUser, Gateway
from classhub.config import sanitize_error
from classhub.errors import ConfigurationError, classify_sync_error
from classhub.schemas.academic import Snapshot, Subject
from classhub.subjects import SUBJECTS
from classhub.views.navigation import resolve_view, views_for

router = APIRouter(tags=["state"])


@router.get("/state", response_model=Snapshot)
async def get_state(current_user: CurrentUser, gateway: Gateway) -> Snapshot:
    """
    Everything a view needs to render: users, subjects, items, timetable.

    Tables that failed to load come back empty and are named in warnings.
    """
    try:
        return await gateway.fetch_full_state()
    except Exception as e:
        error = classify_sync_error(e)
        if isinstance(error, ConfigurationError):
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error)) from e
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=sanitize_error(error, generic_message="Failed to load state."),
        ) from e


@router.get("/subjects", response_model=list[Subject])
async def list_subjects() -> list[Subject]:
    return SUBJECTS


@router.get("/navigation")
async def get_navigation(current_user: CurrentUser, view: str | None = None) -> dict:
    """Views this role may open, and which one a requested view resolves to."""
    return {
        "views": [{"id": item.id, "label": item.label} for item in views_for(current_user)],
        "current": resolve_view(view, current_user),
    }
