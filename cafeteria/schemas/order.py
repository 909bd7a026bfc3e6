import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from cafeteria.models.order import OrderStatus, PaymentMethod, PaymentStatus
from cafeteria.schemas.money import Money


class CheckoutRequest(BaseModel):
    payment_method: PaymentMethod = PaymentMethod.UPI
    notes: str | None = Field(default=None, max_length=500)


class StatusUpdate(BaseModel):
    status: OrderStatus


class OrderItemResponse(BaseModel):
    id: uuid.UUID
    menu_item_id: uuid.UUID
    menu_item_name: str
    is_vegetarian: bool
    quantity: int
    price_at_order: Money
    subtotal: Money


class OrderResponse(BaseModel):
    id: uuid.UUID
    order_number: str
    student_id: uuid.UUID
    status: OrderStatus
    subtotal: Money
    tax: Money
    total: Money
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    notes: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    items: list[OrderItemResponse]
    allowed_transitions: list[OrderStatus]


class OrderStatsResponse(BaseModel):
    total_orders: int
    active_orders: int
    total_revenue: Money
    menu_items: int
