import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cafeteria.database import get_db
from cafeteria.deps import get_caller
from cafeteria.models.menu_item import MenuCategory
from cafeteria.schemas.menu_item import MenuItemCreate, MenuItemResponse, MenuItemUpdate
from cafeteria.services import catalog
from cafeteria.services.authorization import Caller

router = APIRouter()


@router.get("", response_model=list[MenuItemResponse])
async def list_menu(
    category: MenuCategory | None = None,
    q: str | None = Query(default=None, max_length=100),
    db: AsyncSession = Depends(get_db),
) -> list[MenuItemResponse]:
    items = await catalog.list_available_menu_items(db, category=category, search=q)
    return [MenuItemResponse.model_validate(item) for item in items]


@router.get("/{menu_item_id}", response_model=MenuItemResponse)
async def get_menu_item(
    menu_item_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> MenuItemResponse:
    return MenuItemResponse.model_validate(await catalog.get_menu_item(db, menu_item_id))


@router.post("", response_model=MenuItemResponse, status_code=status.HTTP_201_CREATED)
async def create_menu_item(
    body: MenuItemCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> MenuItemResponse:
    return MenuItemResponse.model_validate(await catalog.create_menu_item(db, caller, body))


@router.patch("/{menu_item_id}", response_model=MenuItemResponse)
async def update_menu_item(
    menu_item_id: uuid.UUID,
    body: MenuItemUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> MenuItemResponse:
    menu_item = await catalog.update_menu_item(db, caller, menu_item_id, body)
    return MenuItemResponse.model_validate(menu_item)
