import logging
import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from cafeteria.database import get_db
from cafeteria.deps import get_caller
from cafeteria.schemas.cart import CartItemAdd, CartItemResponse, CartQuantityUpdate, CartResponse
from cafeteria.services import cart_service
from cafeteria.services.authorization import Caller

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=CartResponse)
async def get_cart(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> CartResponse:
    return await cart_service.get_cart(db, caller)


@router.post("/items", response_model=CartItemResponse, status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    body: CartItemAdd,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> CartItemResponse:
    entry = await cart_service.add_item(db, caller, body.menu_item_id)
    return cart_service.build_item_response(entry)


@router.patch("/items/{entry_id}", response_model=CartItemResponse)
async def update_cart_quantity(
    entry_id: uuid.UUID,
    body: CartQuantityUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> CartItemResponse:
    entry = await cart_service.set_quantity(db, caller, entry_id, body.quantity)
    return cart_service.build_item_response(entry)


@router.delete("/items/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_from_cart(
    entry_id: uuid.UUID,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await cart_service.remove_item(db, caller, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
