import logging
import uuid

from fastapi import APIRouter, Depends
from fastapi import status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from cafeteria.database import get_db
from cafeteria.deps import get_caller, get_publisher, get_request_id
from cafeteria.models.order import OrderStatus
from cafeteria.schemas.order import CheckoutRequest, OrderResponse, OrderStatsResponse, StatusUpdate
from cafeteria.services import order_service
from cafeteria.services.authorization import Caller
from cafeteria.services.events import EventPublisher

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/checkout", response_model=OrderResponse, status_code=http_status.HTTP_201_CREATED)
async def checkout(
    body: CheckoutRequest | None = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    request_id: str = Depends(get_request_id),
) -> OrderResponse:
    body = body or CheckoutRequest()
    logger.info(
        "Received checkout request",
        extra={"request_id": request_id, "student_id": str(caller.id)},
    )
    order = await order_service.checkout(
        db,
        caller,
        publisher,
        payment_method=body.payment_method,
        notes=body.notes,
        request_id=request_id,
    )
    return order_service.build_response(order)


@router.get("", response_model=list[OrderResponse])
async def list_orders(
    status: OrderStatus | None = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> list[OrderResponse]:
    orders = await order_service.list_orders(db, caller, status=status)
    return [order_service.build_response(order) for order in orders]


@router.get("/stats", response_model=OrderStatsResponse)
async def order_stats(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> OrderStatsResponse:
    return await order_service.order_stats(db, caller)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    return order_service.build_response(await order_service.get_order(db, caller, order_id))


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: uuid.UUID,
    body: StatusUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    request_id: str = Depends(get_request_id),
) -> OrderResponse:
    logger.info(
        "Received status update request",
        extra={"request_id": request_id, "order_id": str(order_id), "to_status": body.status.value},
    )
    order = await order_service.update_status(
        db, caller, order_id, body.status, publisher, request_id=request_id
    )
    return order_service.build_response(order)
