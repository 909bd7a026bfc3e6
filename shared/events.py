"""
Pydantic event schemas published by the ordering service.
All events extend EventBase which carries correlation/tracing metadata.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventBase(BaseModel):
    event_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_version: int = 1
    correlation_id: str  # carries X-Request-ID from the HTTP layer
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = {"extra": "ignore"}


class OrderItemEvent(BaseModel):
    menu_item_id: uuid.UUID
    quantity: int
    price_at_order: Decimal
    subtotal: Decimal

    model_config = {"extra": "ignore"}


class OrderPlacedEvent(EventBase):
    order_id: uuid.UUID
    order_number: str
    student_id: uuid.UUID
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    payment_method: str
    items: list[OrderItemEvent]


class OrderStatusChangedEvent(EventBase):
    order_id: uuid.UUID
    order_number: str
    student_id: uuid.UUID
    from_status: str
    to_status: str
    changed_by: uuid.UUID
