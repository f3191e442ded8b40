import logging
from fastapi import APIRouter, Header, HTTPException, Query, status
from ordering.core.exceptions import OrderingError
from ordering.schemas.outbox import OutboxEventResponse
from ordering.schemas.response import SuccessResponse
from ordering.services.order_service import (
    create_order,
    get_order,
    get_order_by_number,
    get_order_events,
    list_orders,
    get_allowed_transitions,
    transition_status,
    cancel_order,
)
from ordering.schemas.order import (
    CancelRequest,
    OrderDetailResponse,
    OrderRequest,
    OrderStatusUpdate,
    TransitionsResponse,
)
from typing import Optional
from uuid import UUID

router = APIRouter()
log = logging.getLogger("ordering.api")


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_order_endpoint(
    request_data: OrderRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    """
    Creates an order. Retrying with the same Idempotency-Key returns the
    original order instead of creating a second one.
    """
    try:
        items_data = [item.model_dump() for item in request_data.items]
        order = await create_order(
            user_id=request_data.user_id,
            items=items_data,
            idempotency_token=idempotency_key,
            currency=request_data.currency,
        )
        data = OrderDetailResponse.from_order(order).model_dump(mode="json")
        return SuccessResponse(data=data)
    except OrderingError:
        raise
    except Exception as e:
        log.error(f"Error creating order: {e}")
        raise HTTPException(status_code=500, detail="Server failed to create order.")


@router.get("", response_model=SuccessResponse)
async def list_orders_endpoint(user_id: str = Query(..., min_length=1), limit: int = Query(50, ge=1, le=200)):
    """Lists a user's orders, newest first."""
    orders = await list_orders(user_id, limit=limit)
    data = [OrderDetailResponse.from_order(order).model_dump(mode="json") for order in orders]
    return SuccessResponse(data=data)


@router.get("/by-number/{order_number}", response_model=SuccessResponse)
async def get_order_by_number_endpoint(order_number: str):
    """Looks an order up by its human-readable number (ORD-YYYYMMDD-XXXXXXXX)."""
    order = await get_order_by_number(order_number)
    return SuccessResponse(data=OrderDetailResponse.from_order(order).model_dump(mode="json"))


@router.get("/{order_id}", response_model=SuccessResponse)
async def get_order_endpoint(order_id: UUID):
    """Fetches details for a specific order."""
    order = await get_order(order_id)
    return SuccessResponse(data=OrderDetailResponse.from_order(order).model_dump(mode="json"))


@router.get("/{order_id}/transitions", response_model=SuccessResponse)
async def get_transitions_endpoint(order_id: UUID):
    """Lists the statuses the order may move to next."""
    allowed = await get_allowed_transitions(order_id)
    data = TransitionsResponse(order_id=order_id, allowed=sorted(allowed, key=lambda s: s.value))
    return SuccessResponse(data=data.model_dump(mode="json"))


@router.get("/{order_id}/events", response_model=SuccessResponse)
async def get_order_events_endpoint(order_id: UUID):
    """The order's outbox events, oldest first, with their publish status."""
    events = await get_order_events(order_id)
    data = [OutboxEventResponse.from_event(event).model_dump(mode="json") for event in events]
    return SuccessResponse(data=data)


@router.patch("/{order_id}/status", response_model=SuccessResponse)
async def update_status_endpoint(order_id: UUID, payload: OrderStatusUpdate):
    """
    Moves the order to a new status (e.g. 'PAYMENT_PENDING', 'PROCESSING', 'COMPLETED').
    Illegal edges are rejected with 409.
    """
    order = await transition_status(order_id, payload.status, reason=payload.reason)
    log.info(f"Order {order_id} status updated to {order.status.value} via API.")
    return SuccessResponse(data=OrderDetailResponse.from_order(order).model_dump(mode="json"))


@router.post("/{order_id}/cancel", response_model=SuccessResponse)
async def cancel_order_endpoint(order_id: UUID, payload: Optional[CancelRequest] = None):
    """Cancels the order and records the reason."""
    reason = payload.reason if payload else ""
    order = await cancel_order(order_id, reason)
    return SuccessResponse(data=OrderDetailResponse.from_order(order).model_dump(mode="json"))
