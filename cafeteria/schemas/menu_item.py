import uuid
from decimal import Decimal

from pydantic import BaseModel, Field

from cafeteria.models.menu_item import MenuCategory
from cafeteria.schemas.money import Money


class MenuItemResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None
    price: Money
    category: MenuCategory
    is_vegetarian: bool
    image_url: str | None
    is_available: bool

    model_config = {"from_attributes": True}


class MenuItemCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    category: MenuCategory
    is_vegetarian: bool = True
    image_url: str | None = None
    is_available: bool = True


class MenuItemUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    price: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    category: MenuCategory | None = None
    is_vegetarian: bool | None = None
    image_url: str | None = None
    is_available: bool | None = None
