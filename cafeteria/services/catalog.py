import logging
import uuid
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cafeteria.errors import InvalidArgumentError, NotFoundError
from cafeteria.models.menu_item import MenuCategory, MenuItem
from cafeteria.schemas.menu_item import MenuItemCreate, MenuItemUpdate
from cafeteria.services.authorization import Caller, ensure_admin

logger = logging.getLogger(__name__)

# Columns a partial update may change but never clear.
_REQUIRED_FIELDS = frozenset({"name", "price", "category", "is_vegetarian", "is_available"})

_MENU_SEED = [
    {
        "name": "Chicken Biryani",
        "description": "Aromatic basmati rice cooked with tender chicken, spices, and herbs",
        "price": Decimal("120"),
        "category": MenuCategory.MAIN_COURSE,
        "is_vegetarian": False,
    },
    {
        "name": "Paneer Butter Masala",
        "description": "Cottage cheese cubes in rich tomato-based creamy gravy",
        "price": Decimal("100"),
        "category": MenuCategory.MAIN_COURSE,
        "is_vegetarian": True,
    },
    {
        "name": "Veg Sandwich",
        "description": "Fresh vegetables with cheese and mint chutney in grilled bread",
        "price": Decimal("60"),
        "category": MenuCategory.BREAKFAST,
        "is_vegetarian": True,
    },
    {
        "name": "Pizza Margherita",
        "description": "Classic Italian pizza with mozzarella cheese, tomatoes, and basil",
        "price": Decimal("150"),
        "category": MenuCategory.FAST_FOOD,
        "is_vegetarian": True,
    },
    {
        "name": "Chicken Burger",
        "description": "Juicy grilled chicken patty with lettuce, tomato, and special sauce",
        "price": Decimal("110"),
        "category": MenuCategory.FAST_FOOD,
        "is_vegetarian": False,
    },
    {
        "name": "Pasta Alfredo",
        "description": "Creamy fettuccine pasta with parmesan cheese and herbs",
        "price": Decimal("130"),
        "category": MenuCategory.MAIN_COURSE,
        "is_vegetarian": True,
    },
    {
        "name": "Chocolate Cake",
        "description": "Rich and moist chocolate cake with chocolate ganache",
        "price": Decimal("80"),
        "category": MenuCategory.DESSERT,
        "is_vegetarian": True,
    },
    {
        "name": "Thali Special",
        "description": "Complete Indian meal with dal, vegetables, roti, rice, and dessert",
        "price": Decimal("140"),
        "category": MenuCategory.MAIN_COURSE,
        "is_vegetarian": True,
    },
]


async def seed_menu_items(db: AsyncSession) -> int:
    """Populate menu_items if the table is empty. Returns the number of rows added."""
    result = await db.execute(select(MenuItem).limit(1))
    if result.scalars().first() is not None:
        return 0
    for item_data in _MENU_SEED:
        db.add(MenuItem(**item_data))
    await db.commit()
    logger.info("Seeded %d menu items", len(_MENU_SEED))
    return len(_MENU_SEED)


async def get_menu_item(db: AsyncSession, menu_item_id: uuid.UUID) -> MenuItem:
    menu_item = await db.get(MenuItem, menu_item_id)
    if menu_item is None:
        raise NotFoundError(f"Menu item {menu_item_id} not found")
    return menu_item


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def list_available_menu_items(
    db: AsyncSession,
    category: MenuCategory | None = None,
    search: str | None = None,
) -> list[MenuItem]:
    stmt = select(MenuItem).where(MenuItem.is_available.is_(True))
    if category is not None:
        stmt = stmt.where(MenuItem.category == category)
    if search:
        pattern = f"%{_escape_like(search.strip().lower())}%"
        stmt = stmt.where(
            or_(
                func.lower(MenuItem.name).like(pattern, escape="\\"),
                func.lower(MenuItem.description).like(pattern, escape="\\"),
            )
        )
    result = await db.execute(stmt.order_by(MenuItem.category, MenuItem.name))
    return list(result.scalars().all())


async def count_menu_items(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(MenuItem))
    return result.scalar_one()


async def create_menu_item(db: AsyncSession, caller: Caller, data: MenuItemCreate) -> MenuItem:
    ensure_admin(caller)
    menu_item = MenuItem(**data.model_dump(), created_by=caller.id)
    db.add(menu_item)
    await db.commit()
    logger.info(
        "Menu item created",
        extra={"menu_item_id": str(menu_item.id), "admin_id": str(caller.id)},
    )
    return menu_item


async def update_menu_item(
    db: AsyncSession,
    caller: Caller,
    menu_item_id: uuid.UUID,
    data: MenuItemUpdate,
) -> MenuItem:
    """Apply a partial update. Existing order items keep their price snapshot."""
    ensure_admin(caller)
    menu_item = await get_menu_item(db, menu_item_id)
    changes = data.model_dump(exclude_unset=True)
    cleared = sorted(field for field in _REQUIRED_FIELDS if field in changes and changes[field] is None)
    if cleared:
        raise InvalidArgumentError(f"Fields cannot be null: {', '.join(cleared)}")
    for field, value in changes.items():
        setattr(menu_item, field, value)
    await db.commit()
    logger.info(
        "Menu item updated",
        extra={
            "menu_item_id": str(menu_item_id),
            "admin_id": str(caller.id),
            "fields": sorted(changes),
        },
    )
    return menu_item
