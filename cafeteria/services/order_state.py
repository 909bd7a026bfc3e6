"""
Fulfillment state machine.

pending -> preparing -> ready -> completed, with ``cancelled`` reachable from
every non-terminal state. Forward steps advance exactly one stage.
"""

from cafeteria.errors import InvalidTransitionError
from cafeteria.models.order import OrderStatus

LEGAL_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

ACTIVE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PREPARING})


def is_terminal(status: OrderStatus) -> bool:
    return not LEGAL_TRANSITIONS[status]


def allowed_transitions(current: OrderStatus) -> frozenset[OrderStatus]:
    return LEGAL_TRANSITIONS[current]


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    if target not in LEGAL_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move order from '{current.value}' to '{target.value}'"
        )
