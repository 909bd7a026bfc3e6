import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from cafeteria.errors import (
    ConflictError,
    EmptyCartError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    OrderCreationFailedError,
    PermissionDeniedError,
)
from cafeteria.models.order import OrderStatus, PaymentMethod, PaymentStatus
from cafeteria.schemas.menu_item import MenuItemUpdate
from cafeteria.services import cart_service, catalog, order_service
from cafeteria.services.events import ORDER_PLACED_TOPIC, ORDER_STATUS_CHANGED_TOPIC
from cafeteria.services.pricing import Totals
from tests.factories import cart_quantities, count_orders, fill_cart, make_menu_item


async def _stocked_cart(db, caller):
    sandwich = await make_menu_item(db, name="Veg Sandwich", price="100")
    pizza = await make_menu_item(db, name="Pizza Margherita", price="150", is_vegetarian=False)
    await fill_cart(db, caller, (sandwich, 2), (pizza, 1))
    return sandwich, pizza


async def _advance(db, admin, publisher, order_id, *statuses):
    order = None
    for status in statuses:
        order = await order_service.update_status(db, admin, order_id, status, publisher)
    return order


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


async def test_checkout_creates_pending_order_and_empties_cart(db, student, publisher):
    sandwich, pizza = await _stocked_cart(db, student)

    order = await order_service.checkout(
        db, student, publisher, payment_method=PaymentMethod.CARD, notes="No onions", request_id="req-1"
    )

    assert order.order_number.startswith("ORD-")
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.COMPLETED
    assert order.payment_method == PaymentMethod.CARD
    assert order.notes == "No onions"
    assert order.subtotal == Decimal("350")
    assert order.tax == Decimal("17.5")
    assert order.total == Decimal("367.5")

    by_item = {item.menu_item_id: item for item in order.items}
    assert by_item[sandwich.id].quantity == 2
    assert by_item[sandwich.id].price_at_order == Decimal("100")
    assert by_item[sandwich.id].subtotal == Decimal("200")
    assert by_item[pizza.id].quantity == 1

    assert await cart_quantities(db, student) == {}

    assert publisher.topics() == [ORDER_PLACED_TOPIC]
    _topic, key, event = publisher.events[0]
    assert key == str(order.id)
    assert event.correlation_id == "req-1"
    assert event.total == Decimal("367.5")
    assert len(event.items) == 2


async def test_checkout_totals_are_consistent(db, student, publisher):
    await _stocked_cart(db, student)

    order = await order_service.checkout(db, student, publisher)

    assert order.total == order.subtotal + order.tax
    assert order.subtotal == sum(item.subtotal for item in order.items)


async def test_checkout_response_rounds_money_and_lists_transitions(db, student, publisher):
    await _stocked_cart(db, student)
    order = await order_service.checkout(db, student, publisher)

    payload = order_service.build_response(order).model_dump(mode="json")

    assert payload["subtotal"] == "350.00"
    assert payload["tax"] == "17.50"
    assert payload["total"] == "367.50"
    assert payload["allowed_transitions"] == ["preparing", "cancelled"]


async def test_checkout_with_empty_cart_fails_without_side_effects(db, student, publisher):
    with pytest.raises(EmptyCartError):
        await order_service.checkout(db, student, publisher)

    assert await count_orders(db) == 0
    assert publisher.events == []


async def test_admin_cannot_checkout(db, admin, publisher):
    with pytest.raises(PermissionDeniedError):
        await order_service.checkout(db, admin, publisher)


async def test_checkout_rejects_unavailable_items_and_keeps_cart(db, student, admin, publisher):
    _sandwich, pizza = await _stocked_cart(db, student)
    await catalog.update_menu_item(db, admin, pizza.id, MenuItemUpdate(is_available=False))
    before = await cart_quantities(db, student)

    with pytest.raises(InvalidArgumentError, match="Pizza Margherita"):
        await order_service.checkout(db, student, publisher)

    assert await count_orders(db) == 0
    assert await cart_quantities(db, student) == before


async def test_order_keeps_price_snapshot_after_menu_change(db, student, admin, publisher):
    sandwich, _pizza = await _stocked_cart(db, student)
    order = await order_service.checkout(db, student, publisher)

    await catalog.update_menu_item(db, admin, sandwich.id, MenuItemUpdate(price=Decimal("80")))

    reloaded = await order_service.get_order(db, student, order.id)
    line = next(item for item in reloaded.items if item.menu_item_id == sandwich.id)
    assert line.price_at_order == Decimal("100")
    assert reloaded.total == Decimal("367.5")


async def test_failed_item_write_rolls_back_the_whole_order(db, student, publisher, monkeypatch):
    await _stocked_cart(db, student)
    before = await cart_quantities(db, student)
    build_items = order_service._build_order_items

    def build_invalid_items(order, entries):
        items = build_items(order, entries)
        items[-1].quantity = 0
        return items

    monkeypatch.setattr(order_service, "_build_order_items", build_invalid_items)

    with pytest.raises(OrderCreationFailedError):
        await order_service.checkout(db, student, publisher)

    assert await count_orders(db) == 0
    assert await cart_quantities(db, student) == before
    assert publisher.events == []


async def test_failed_cart_clear_keeps_order_and_never_double_orders(db, student, publisher, monkeypatch):
    await _stocked_cart(db, student)

    async def failing_delete(db, student_id, entry_ids):
        raise OperationalError("DELETE FROM cart_items", {}, Exception("disk I/O error"))

    monkeypatch.setattr(order_service, "_delete_cart_rows", failing_delete)

    order = await order_service.checkout(db, student, publisher)

    assert order.status == OrderStatus.PENDING
    assert await count_orders(db) == 1
    assert len(await cart_quantities(db, student)) == 2

    cart = await cart_service.get_cart(db, student)
    assert cart.items == []

    with pytest.raises(EmptyCartError):
        await order_service.checkout(db, student, publisher)
    assert await count_orders(db) == 1


async def test_adding_after_failed_clear_starts_a_fresh_entry(db, student, publisher, monkeypatch):
    sandwich, _pizza = await _stocked_cart(db, student)

    async def failing_delete(db, student_id, entry_ids):
        raise OperationalError("DELETE FROM cart_items", {}, Exception("disk I/O error"))

    monkeypatch.setattr(order_service, "_delete_cart_rows", failing_delete)
    await order_service.checkout(db, student, publisher)

    await cart_service.add_item(db, student, sandwich.id)

    assert await cart_quantities(db, student) == {sandwich.id: 1}


async def test_concurrent_checkouts_place_exactly_one_order(db, student, session_factory, publisher):
    await _stocked_cart(db, student)

    async def attempt():
        async with session_factory() as session:
            return await order_service.checkout(session, student, publisher)

    results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

    placed = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(placed) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], EmptyCartError)
    assert await count_orders(db) == 1
    assert publisher.topics() == [ORDER_PLACED_TOPIC]


async def test_order_number_collision_is_retried(db, student, publisher, monkeypatch):
    def fixed_number(attempt=1, now=None):
        return "ORD-123456" if attempt == 1 else f"ORD-123456-R{attempt}"

    monkeypatch.setattr(order_service, "generate_order_number", fixed_number)
    item = await make_menu_item(db)

    await fill_cart(db, student, (item, 1))
    first = await order_service.checkout(db, student, publisher)
    await fill_cart(db, student, (item, 1))
    second = await order_service.checkout(db, student, publisher)

    assert first.order_number == "ORD-123456"
    assert second.order_number == "ORD-123456-R2"


async def test_order_number_exhaustion_is_a_conflict(db, student, publisher, monkeypatch):
    monkeypatch.setattr(order_service, "generate_order_number", lambda attempt=1, now=None: "ORD-123456")
    item = await make_menu_item(db)
    await fill_cart(db, student, (item, 1))
    await order_service.checkout(db, student, publisher)

    await fill_cart(db, student, (item, 3))
    before = await cart_quantities(db, student)
    with pytest.raises(ConflictError):
        await order_service.checkout(db, student, publisher)

    assert await count_orders(db) == 1
    assert await cart_quantities(db, student) == before


async def test_non_collision_insert_failure_is_not_retried(db, student, publisher, monkeypatch):
    attempts = []

    def counting_number(attempt=1, now=None):
        attempts.append(attempt)
        return f"ORD-00000{attempt}"

    monkeypatch.setattr(order_service, "generate_order_number", counting_number)
    # Negative totals trip the orders check constraint rather than the order number key.
    monkeypatch.setattr(
        order_service,
        "compute_totals",
        lambda lines, tax_rate: Totals(subtotal=Decimal("-1"), tax=Decimal("0"), total=Decimal("-1")),
    )
    item = await make_menu_item(db)
    await fill_cart(db, student, (item, 1))
    before = await cart_quantities(db, student)

    with pytest.raises(OrderCreationFailedError):
        await order_service.checkout(db, student, publisher)

    assert attempts == [1]
    assert await count_orders(db) == 0
    assert await cart_quantities(db, student) == before
    assert publisher.events == []


def test_generate_order_number_format():
    now = datetime(2026, 1, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)
    millis = int(now.timestamp() * 1000)

    assert order_service.generate_order_number(1, now) == f"ORD-{millis % 1_000_000:06d}"
    retry = order_service.generate_order_number(2, now)
    assert retry.startswith(f"ORD-{millis % 1_000_000:06d}-")
    assert len(retry.rsplit("-", 1)[1]) == 4


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------


async def test_only_admins_update_status(db, student, publisher):
    await _stocked_cart(db, student)
    order = await order_service.checkout(db, student, publisher)

    with pytest.raises(PermissionDeniedError):
        await order_service.update_status(db, student, order.id, OrderStatus.PREPARING, publisher)


async def test_skipping_a_stage_is_an_invalid_transition(db, student, admin, publisher):
    await _stocked_cart(db, student)
    order = await order_service.checkout(db, student, publisher)

    with pytest.raises(InvalidTransitionError, match="'pending' to 'ready'"):
        await order_service.update_status(db, admin, order.id, OrderStatus.READY, publisher)

    reloaded = await order_service.get_order(db, admin, order.id)
    assert reloaded.status == OrderStatus.PENDING


async def test_full_fulfillment_path_stamps_completion(db, student, admin, publisher):
    await _stocked_cart(db, student)
    order = await order_service.checkout(db, student, publisher)

    completed = await _advance(
        db, admin, publisher, order.id, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED
    )

    assert completed.status == OrderStatus.COMPLETED
    assert completed.completed_at is not None
    assert publisher.topics() == [ORDER_PLACED_TOPIC] + [ORDER_STATUS_CHANGED_TOPIC] * 3
    _topic, _key, last = publisher.events[-1]
    assert (last.from_status, last.to_status) == ("ready", "completed")
    assert last.changed_by == admin.id

    with pytest.raises(InvalidTransitionError):
        await order_service.update_status(db, admin, order.id, OrderStatus.CANCELLED, publisher)


async def test_active_order_can_be_cancelled(db, student, admin, publisher):
    await _stocked_cart(db, student)
    order = await order_service.checkout(db, student, publisher)

    cancelled = await _advance(db, admin, publisher, order.id, OrderStatus.PREPARING, OrderStatus.CANCELLED)

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.completed_at is None


async def test_update_status_of_missing_order(db, admin, publisher):
    with pytest.raises(NotFoundError):
        await order_service.update_status(db, admin, uuid.uuid4(), OrderStatus.PREPARING, publisher)


async def test_compare_and_set_requires_expected_status(db, student, publisher):
    await _stocked_cart(db, student)
    order = await order_service.checkout(db, student, publisher)

    assert not await order_service.compare_and_set_status(
        db, order.id, OrderStatus.PREPARING, OrderStatus.READY
    )
    assert await order_service.compare_and_set_status(
        db, order.id, OrderStatus.PENDING, OrderStatus.PREPARING
    )
    await db.commit()

    reloaded = await order_service.get_order(db, student, order.id)
    assert reloaded.status == OrderStatus.PREPARING


async def test_concurrent_identical_transitions_apply_once(db, student, admin, session_factory, publisher):
    await _stocked_cart(db, student)
    order = await order_service.checkout(db, student, publisher)
    await db.commit()

    async def advance():
        async with session_factory() as session:
            return await order_service.update_status(session, admin, order.id, OrderStatus.PREPARING, publisher)

    results = await asyncio.gather(advance(), advance(), return_exceptions=True)

    succeeded = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], (InvalidTransitionError, ConflictError))
    assert publisher.topics().count(ORDER_STATUS_CHANGED_TOPIC) == 1


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def test_students_only_see_their_own_orders(db, student, other_student, admin, publisher):
    item = await make_menu_item(db)
    await fill_cart(db, student, (item, 1))
    mine = await order_service.checkout(db, student, publisher)
    await fill_cart(db, other_student, (item, 2))
    theirs = await order_service.checkout(db, other_student, publisher)

    assert [o.id for o in await order_service.list_orders(db, student)] == [mine.id]
    assert [o.id for o in await order_service.list_orders(db, admin)] == [theirs.id, mine.id]

    with pytest.raises(NotFoundError):
        await order_service.get_order(db, student, theirs.id)
    assert (await order_service.get_order(db, admin, theirs.id)).id == theirs.id


async def test_list_orders_filters_by_status(db, student, admin, publisher):
    item = await make_menu_item(db)
    await fill_cart(db, student, (item, 1))
    first = await order_service.checkout(db, student, publisher)
    await fill_cart(db, student, (item, 1))
    second = await order_service.checkout(db, student, publisher)
    await order_service.update_status(db, admin, first.id, OrderStatus.PREPARING, publisher)

    pending = await order_service.list_orders(db, student, status=OrderStatus.PENDING)
    preparing = await order_service.list_orders(db, admin, status=OrderStatus.PREPARING)

    assert [o.id for o in pending] == [second.id]
    assert [o.id for o in preparing] == [first.id]


async def test_order_stats_exclude_cancelled_revenue(db, student, admin, publisher):
    item = await make_menu_item(db, price="100")
    await fill_cart(db, student, (item, 1))
    kept = await order_service.checkout(db, student, publisher)
    await fill_cart(db, student, (item, 2))
    dropped = await order_service.checkout(db, student, publisher)
    await order_service.update_status(db, admin, dropped.id, OrderStatus.CANCELLED, publisher)

    stats = await order_service.order_stats(db, admin)

    assert stats.total_orders == 2
    assert stats.active_orders == 1
    assert stats.total_revenue == kept.total == Decimal("105")
    assert stats.menu_items == 1


async def test_order_stats_require_admin(db, student):
    with pytest.raises(PermissionDeniedError):
        await order_service.order_stats(db, student)


async def test_order_items_reference_their_cart_entries(db, student, publisher):
    sandwich, pizza = await _stocked_cart(db, student)
    entry_ids = set()
    for entry in await cart_service.list_entries(db, student.id):
        entry_ids.add(entry.id)

    order = await order_service.checkout(db, student, publisher)

    assert {item.cart_item_id for item in order.items} == entry_ids
