from prometheus_client import Counter

ORDERS_PLACED = Counter(
    "cafeteria_orders_placed_total",
    "Orders created by checkout",
    ["payment_method"],
)

CHECKOUT_FAILURES = Counter(
    "cafeteria_checkout_failures_total",
    "Checkout attempts that did not produce an order",
    ["kind"],  # empty_cart | invalid_argument | conflict | order_creation_failed
)

STATUS_TRANSITIONS = Counter(
    "cafeteria_order_status_transitions_total",
    "Order status changes applied",
    ["to_status"],
)

CART_CLEAR_FAILURES = Counter(
    "cafeteria_cart_clear_failures_total",
    "Checkouts whose cart clear step failed after the order was written",
)

EVENTS_PUBLISHED = Counter(
    "cafeteria_events_published_total",
    "Order lifecycle events handed to the broker",
    ["topic", "outcome"],  # published | failed | skipped
)
