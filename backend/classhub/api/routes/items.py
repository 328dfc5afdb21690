"""Academic item (exam, homework, event) routes. Writes are staff only."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from classhub.api.deps import AdminUser, CurrentUser, Gateway
from classhub.errors import ConflictError
from classhub.schemas.academic import AcademicItemBase, AcademicItemCreate, AcademicItemRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/items", tags=["items"])


@router.get("/", response_model=list[AcademicItemRead])
async def list_items(
    current_user: CurrentUser,
    gateway: Gateway,
    subject_id: str | None = None,
) -> list[AcademicItemRead]:
    """List items ordered by date, optionally for one subject."""
    items = await gateway.list_items()
    if subject_id:
        items = [i for i in items if i.subject_id == subject_id]
    return items


@router.post("/", response_model=AcademicItemRead, status_code=status.HTTP_201_CREATED)
async def create_item(data: AcademicItemCreate, current_user: AdminUser, gateway: Gateway) -> AcademicItemRead:
    try:
        item = await gateway.create_item(data)
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    logger.info("Item %s created by %s", item.id, current_user.id)
    return item


@router.get("/{item_id}", response_model=AcademicItemRead)
async def get_item(item_id: UUID, current_user: CurrentUser, gateway: Gateway) -> AcademicItemRead:
    item = await gateway.get_item(item_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return item


@router.put("/{item_id}", response_model=AcademicItemRead)
async def update_item(
    item_id: UUID,
    data: AcademicItemBase,
    current_user: AdminUser,
    gateway: Gateway,
) -> AcademicItemRead:
    """Replace an item's fields; its resources are replaced wholesale."""
    item = await gateway.update_item(item_id, data)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return item


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(item_id: UUID, current_user: AdminUser, gateway: Gateway) -> None:
    if not await gateway.delete_item(item_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
