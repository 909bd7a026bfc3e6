import uuid

from pydantic import BaseModel

from cafeteria.schemas.money import Money


class CartItemAdd(BaseModel):
    menu_item_id: uuid.UUID


class CartQuantityUpdate(BaseModel):
    # Range is checked by the cart service so the error kind stays stable.
    quantity: int


class CartItemResponse(BaseModel):
    id: uuid.UUID
    menu_item_id: uuid.UUID
    menu_item_name: str
    unit_price: Money
    is_available: bool
    quantity: int
    line_total: Money


class CartTotals(BaseModel):
    subtotal: Money
    tax: Money
    total: Money


class CartResponse(BaseModel):
    items: list[CartItemResponse]
    totals: CartTotals
