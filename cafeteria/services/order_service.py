import logging
import secrets
import uuid
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cafeteria.config import settings
from cafeteria.database import utcnow
from cafeteria.errors import (
    CafeteriaError,
    ConflictError,
    EmptyCartError,
    InvalidArgumentError,
    NotFoundError,
    OrderCreationFailedError,
)
from cafeteria.metrics import CART_CLEAR_FAILURES, CHECKOUT_FAILURES, ORDERS_PLACED, STATUS_TRANSITIONS
from cafeteria.models.cart import CartItem
from cafeteria.models.order import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from cafeteria.schemas.order import OrderItemResponse, OrderResponse, OrderStatsResponse
from cafeteria.services import cart_service, catalog
from cafeteria.services.authorization import (
    Caller,
    can_view_order,
    ensure_admin,
    ensure_student,
    scope_orders,
)
from cafeteria.services.events import ORDER_PLACED_TOPIC, ORDER_STATUS_CHANGED_TOPIC, EventPublisher
from cafeteria.services.order_state import ACTIVE_STATUSES, allowed_transitions, ensure_transition
from cafeteria.services.pricing import PricedLine, compute_totals
from shared.events import OrderItemEvent, OrderPlacedEvent, OrderStatusChangedEvent

logger = logging.getLogger(__name__)

_STATUS_ORDER = list(OrderStatus)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_order_number(attempt: int = 1, now: datetime | None = None) -> str:
    """ORD-<last 6 digits of epoch millis>; retries add a random suffix."""
    millis = int((now or utcnow()).timestamp() * 1000)
    number = f"ORD-{millis % 1_000_000:06d}"
    if attempt > 1:
        number = f"{number}-{secrets.token_hex(2).upper()}"
    return number


def build_response(order: Order) -> OrderResponse:
    items = [
        OrderItemResponse(
            id=item.id,
            menu_item_id=item.menu_item_id,
            menu_item_name=item.menu_item.name if item.menu_item else "Unknown",
            is_vegetarian=item.menu_item.is_vegetarian if item.menu_item else False,
            quantity=item.quantity,
            price_at_order=item.price_at_order,
            subtotal=item.subtotal,
        )
        for item in order.items
    ]

    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        student_id=order.student_id,
        status=order.status,
        subtotal=order.subtotal,
        tax=order.tax,
        total=order.total,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        notes=order.notes,
        created_at=order.created_at,
        updated_at=order.updated_at,
        completed_at=order.completed_at,
        items=items,
        allowed_transitions=sorted(allowed_transitions(order.status), key=_STATUS_ORDER.index),
    )


def _order_query():
    return select(Order).options(selectinload(Order.items).selectinload(OrderItem.menu_item))


async def _fetch_order(db: AsyncSession, order_id: uuid.UUID) -> Order | None:
    result = await db.execute(
        _order_query().where(Order.id == order_id).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _lock_cart(db: AsyncSession, student_id: uuid.UUID) -> list[CartItem]:
    result = await db.execute(
        select(CartItem)
        .where(CartItem.student_id == student_id)
        .options(selectinload(CartItem.menu_item))
        .order_by(CartItem.created_at, CartItem.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def _is_order_number_collision(exc: IntegrityError) -> bool:
    # PostgreSQL names the constraint orders_order_number_key; SQLite names the column.
    return "order_number" in str(exc.orig)


async def _assign_order_number(db: AsyncSession, order: Order) -> None:
    """Insert ``order`` under a fresh order number, retrying on collisions."""
    max_attempts = settings.order_number_max_attempts
    for attempt in range(1, max_attempts + 1):
        candidate = generate_order_number(attempt)
        taken = await db.scalar(select(Order.id).where(Order.order_number == candidate))
        if taken is not None:
            logger.info(
                "Order number %s already taken (attempt %d/%d)",
                candidate,
                attempt,
                max_attempts,
            )
            continue

        order.order_number = candidate
        try:
            async with db.begin_nested():
                db.add(order)
                await db.flush()
        except IntegrityError as exc:
            if not _is_order_number_collision(exc):
                raise
            # Lost a race for the same number between the check and the insert.
            logger.info(
                "Order number %s collided on insert (attempt %d/%d)",
                candidate,
                attempt,
                max_attempts,
            )
            continue
        return

    raise ConflictError(f"Could not allocate a unique order number after {max_attempts} attempts")


def _build_order_items(order: Order, entries: list[CartItem]) -> list[OrderItem]:
    return [
        OrderItem(
            order_id=order.id,
            menu_item_id=entry.menu_item_id,
            cart_item_id=entry.id,
            quantity=entry.quantity,
            price_at_order=entry.menu_item.price,
            subtotal=entry.menu_item.price * entry.quantity,
        )
        for entry in entries
    ]


async def _delete_cart_rows(db: AsyncSession, student_id: uuid.UUID, entry_ids: list[uuid.UUID]) -> int:
    result = await db.execute(
        delete(CartItem)
        .where(CartItem.student_id == student_id, CartItem.id.in_(entry_ids))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def _clear_cart(db: AsyncSession, student_id: uuid.UUID, entry_ids: list[uuid.UUID]) -> int | None:
    """
    Delete the checked-out cart rows. Returns the number of rows removed,
    or None when the delete itself failed (the order still stands).
    """
    try:
        async with db.begin_nested():
            return await _delete_cart_rows(db, student_id, entry_ids)
    except SQLAlchemyError as exc:
        CART_CLEAR_FAILURES.inc()
        logger.warning(
            "Cart clear failed after order was written; stale entries remain",
            extra={"student_id": str(student_id), "entry_count": len(entry_ids), "error": str(exc)},
        )
        return None


async def _place_order(
    db: AsyncSession,
    caller: Caller,
    payment_method: PaymentMethod,
    notes: str | None,
) -> Order:
    # 1. Snapshot the cart with live prices
    await cart_service.purge_stale_entries(db, caller.id)
    entries = await _lock_cart(db, caller.id)
    if not entries:
        raise EmptyCartError("Your cart is empty")

    unavailable = sorted(e.menu_item.name for e in entries if not e.menu_item.is_available)
    if unavailable:
        raise InvalidArgumentError(f"No longer available: {', '.join(unavailable)}")

    # 2. Calculate totals
    totals = compute_totals(
        (PricedLine(unit_price=e.menu_item.price, quantity=e.quantity) for e in entries),
        settings.tax_rate,
    )

    # 3. Persist order + items; payment capture is treated as pre-authorised
    order = Order(
        student_id=caller.id,
        status=OrderStatus.PENDING,
        subtotal=totals.subtotal,
        tax=totals.tax,
        total=totals.total,
        payment_method=payment_method,
        payment_status=PaymentStatus.COMPLETED,
        notes=notes,
    )
    try:
        await _assign_order_number(db, order)
        db.add_all(_build_order_items(order, entries))
        await db.flush()
    except SQLAlchemyError as exc:
        logger.error(
            "Order write failed, rolling back",
            extra={"student_id": str(caller.id), "error": str(exc)},
        )
        await db.rollback()
        raise OrderCreationFailedError("Failed to create order") from exc

    # 4. Claim the snapshotted cart rows
    entry_ids = [e.id for e in entries]
    cleared = await _clear_cart(db, caller.id, entry_ids)
    if cleared is not None and cleared < len(entry_ids):
        # Another checkout consumed these rows first.
        raise EmptyCartError("Your cart was already checked out")

    await db.commit()

    logger.info(
        "Order placed",
        extra={
            "order_id": str(order.id),
            "order_number": order.order_number,
            "student_id": str(caller.id),
            "amount": float(totals.total),
            "item_count": len(entries),
        },
    )
    return order


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def checkout(
    db: AsyncSession,
    caller: Caller,
    publisher: EventPublisher,
    payment_method: PaymentMethod = PaymentMethod.UPI,
    notes: str | None = None,
    request_id: str = "unknown",
) -> Order:
    """Turn the caller's cart into a pending order and empty the cart."""
    ensure_student(caller)
    try:
        order = await _place_order(db, caller, payment_method, notes)
    except CafeteriaError as exc:
        await db.rollback()
        CHECKOUT_FAILURES.labels(exc.kind).inc()
        logger.info(
            "Checkout rejected",
            extra={"student_id": str(caller.id), "kind": exc.kind, "request_id": request_id},
        )
        raise

    ORDERS_PLACED.labels(payment_method.value).inc()
    order = await _fetch_order(db, order.id)

    event = OrderPlacedEvent(
        correlation_id=request_id,
        order_id=order.id,
        order_number=order.order_number,
        student_id=order.student_id,
        subtotal=order.subtotal,
        tax=order.tax,
        total=order.total,
        payment_method=order.payment_method.value,
        items=[
            OrderItemEvent(
                menu_item_id=item.menu_item_id,
                quantity=item.quantity,
                price_at_order=item.price_at_order,
                subtotal=item.subtotal,
            )
            for item in order.items
        ],
    )
    await publisher.publish(ORDER_PLACED_TOPIC, str(order.id), event)
    return order


async def get_order(db: AsyncSession, caller: Caller, order_id: uuid.UUID) -> Order:
    order = await _fetch_order(db, order_id)
    # Orders of other students are reported as missing, not forbidden.
    if order is None or not can_view_order(caller, order):
        raise NotFoundError(f"Order {order_id} not found")
    return order


async def list_orders(
    db: AsyncSession,
    caller: Caller,
    status: OrderStatus | None = None,
) -> list[Order]:
    stmt = scope_orders(_order_query(), caller)
    if status is not None:
        stmt = stmt.where(Order.status == status)
    result = await db.execute(
        stmt.order_by(Order.created_at.desc(), Order.id).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def compare_and_set_status(
    db: AsyncSession,
    order_id: uuid.UUID,
    expected: OrderStatus,
    target: OrderStatus,
) -> bool:
    """Write ``target`` only if the persisted status is still ``expected``."""
    now = utcnow()
    values = {"status": target, "updated_at": now}
    if target == OrderStatus.COMPLETED:
        values["completed_at"] = now
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def update_status(
    db: AsyncSession,
    caller: Caller,
    order_id: uuid.UUID,
    new_status: OrderStatus,
    publisher: EventPublisher,
    request_id: str = "unknown",
) -> Order:
    ensure_admin(caller)

    order = await _fetch_order(db, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")

    current = order.status
    ensure_transition(current, new_status)

    if not await compare_and_set_status(db, order_id, current, new_status):
        await db.rollback()
        raise ConflictError(f"Order {order.order_number} changed status concurrently; reload and retry")
    await db.commit()

    STATUS_TRANSITIONS.labels(new_status.value).inc()
    logger.info(
        "Order status updated",
        extra={
            "order_id": str(order_id),
            "from_status": current.value,
            "to_status": new_status.value,
            "admin_id": str(caller.id),
            "request_id": request_id,
        },
    )

    order = await _fetch_order(db, order_id)
    event = OrderStatusChangedEvent(
        correlation_id=request_id,
        order_id=order.id,
        order_number=order.order_number,
        student_id=order.student_id,
        from_status=current.value,
        to_status=new_status.value,
        changed_by=caller.id,
    )
    await publisher.publish(ORDER_STATUS_CHANGED_TOPIC, str(order.id), event)
    return order


async def order_stats(db: AsyncSession, caller: Caller) -> OrderStatsResponse:
    ensure_admin(caller)
    total_orders = await db.scalar(select(func.count()).select_from(Order))
    active_orders = await db.scalar(
        select(func.count()).select_from(Order).where(Order.status.in_(ACTIVE_STATUSES))
    )
    revenue = await db.scalar(
        select(func.coalesce(func.sum(Order.total), 0)).where(Order.status != OrderStatus.CANCELLED)
    )
    return OrderStatsResponse(
        total_orders=total_orders,
        active_orders=active_orders,
        total_revenue=revenue,
        menu_items=await catalog.count_menu_items(db),
    )
