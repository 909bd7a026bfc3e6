import logging
import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cafeteria.config import settings
from cafeteria.database import utcnow
from cafeteria.errors import InvalidArgumentError, NotFoundError
from cafeteria.models.cart import CartItem
from cafeteria.models.menu_item import MenuItem
from cafeteria.models.order import OrderItem
from cafeteria.schemas.cart import CartItemResponse, CartResponse, CartTotals
from cafeteria.services.authorization import Caller, ensure_owner, ensure_student
from cafeteria.services.pricing import PricedLine, compute_totals

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_item_response(entry: CartItem) -> CartItemResponse:
    menu_item = entry.menu_item
    return CartItemResponse(
        id=entry.id,
        menu_item_id=entry.menu_item_id,
        menu_item_name=menu_item.name,
        unit_price=menu_item.price,
        is_available=menu_item.is_available,
        quantity=entry.quantity,
        line_total=menu_item.price * entry.quantity,
    )


def build_cart_response(entries: list[CartItem]) -> CartResponse:
    totals = compute_totals(
        (PricedLine(unit_price=e.menu_item.price, quantity=e.quantity) for e in entries),
        settings.tax_rate,
    )
    return CartResponse(
        items=[build_item_response(e) for e in entries],
        totals=CartTotals(subtotal=totals.subtotal, tax=totals.tax, total=totals.total),
    )


async def _fetch_entry(db: AsyncSession, entry_id: uuid.UUID) -> CartItem | None:
    result = await db.execute(
        select(CartItem)
        .where(CartItem.id == entry_id)
        .options(selectinload(CartItem.menu_item))
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _get_owned_entry(db: AsyncSession, caller: Caller, entry_id: uuid.UUID) -> CartItem:
    entry = await _fetch_entry(db, entry_id)
    if entry is None:
        raise NotFoundError(f"Cart entry {entry_id} not found")
    ensure_owner(caller, entry.student_id)
    return entry


def _upsert_increment(dialect_name: str, student_id: uuid.UUID, menu_item_id: uuid.UUID):
    try:
        insert = _UPSERT_DIALECTS[dialect_name]
    except KeyError:
        raise RuntimeError(f"Cart upsert is not supported on dialect {dialect_name!r}")

    now = utcnow()
    stmt = insert(CartItem).values(
        id=uuid.uuid4(),
        student_id=student_id,
        menu_item_id=menu_item_id,
        quantity=1,
        created_at=now,
        updated_at=now,
    )
    return stmt.on_conflict_do_update(
        index_elements=[CartItem.student_id, CartItem.menu_item_id],
        set_={"quantity": CartItem.quantity + 1, "updated_at": now},
    ).returning(CartItem.id)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def list_entries(db: AsyncSession, student_id: uuid.UUID) -> list[CartItem]:
    result = await db.execute(
        select(CartItem)
        .where(CartItem.student_id == student_id)
        .options(selectinload(CartItem.menu_item))
        .order_by(CartItem.created_at, CartItem.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def purge_stale_entries(db: AsyncSession, student_id: uuid.UUID) -> int:
    """
    Delete entries that an earlier checkout already turned into order items
    but could not clear. Entries touched after that checkout are kept.
    """
    consumed = (
        select(OrderItem.id)
        .where(OrderItem.cart_item_id == CartItem.id, OrderItem.created_at >= CartItem.updated_at)
        .exists()
    )
    result = await db.execute(
        delete(CartItem)
        .where(CartItem.student_id == student_id, consumed)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info(
            "Purged stale cart entries",
            extra={"student_id": str(student_id), "entry_count": result.rowcount},
        )
    return result.rowcount


async def get_cart(db: AsyncSession, caller: Caller) -> CartResponse:
    if await purge_stale_entries(db, caller.id):
        await db.commit()
    return build_cart_response(await list_entries(db, caller.id))


async def add_item(db: AsyncSession, caller: Caller, menu_item_id: uuid.UUID) -> CartItem:
    """Add one unit of a menu item, creating the entry on first add."""
    ensure_student(caller)

    menu_item = await db.get(MenuItem, menu_item_id, populate_existing=True)
    if menu_item is None or not menu_item.is_available:
        raise NotFoundError(f"Menu item {menu_item_id} not found or unavailable")

    await purge_stale_entries(db, caller.id)

    # Single statement: concurrent adds for the same pair never lose an increment.
    stmt = _upsert_increment(db.get_bind().dialect.name, caller.id, menu_item_id)
    entry_id = (await db.execute(stmt)).scalar_one()
    await db.commit()

    entry = await _fetch_entry(db, entry_id)
    logger.info(
        "Cart item added",
        extra={
            "student_id": str(caller.id),
            "menu_item_id": str(menu_item_id),
            "quantity": entry.quantity,
        },
    )
    return entry


async def set_quantity(
    db: AsyncSession,
    caller: Caller,
    entry_id: uuid.UUID,
    quantity: int,
) -> CartItem:
    if quantity < 1:
        raise InvalidArgumentError("Quantity must be at least 1; remove the item instead")

    await _get_owned_entry(db, caller, entry_id)

    result = await db.execute(
        update(CartItem)
        .where(CartItem.id == entry_id, CartItem.student_id == caller.id)
        .values(quantity=quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise NotFoundError(f"Cart entry {entry_id} not found")
    await db.commit()

    logger.info(
        "Cart quantity updated",
        extra={"student_id": str(caller.id), "entry_id": str(entry_id), "quantity": quantity},
    )
    return await _fetch_entry(db, entry_id)


async def remove_item(db: AsyncSession, caller: Caller, entry_id: uuid.UUID) -> None:
    await _get_owned_entry(db, caller, entry_id)

    await db.execute(
        delete(CartItem)
        .where(CartItem.id == entry_id, CartItem.student_id == caller.id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info(
        "Cart item removed",
        extra={"student_id": str(caller.id), "entry_id": str(entry_id)},
    )
