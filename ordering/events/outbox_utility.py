from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ordering.models.order import Order, OrderStatus
from ordering.models.outbox import OutboxEvent, OutboxStatus
from ordering.stores.outbox_store import OutboxStore

ORDER_AGGREGATE = "ORDER"
ORDER_CREATED = "OrderCreated"


def event_type_for(status: OrderStatus) -> str:
    """PAYMENT_PENDING -> OrderPaymentPending, CANCELLED -> OrderCancelled."""
    words = OrderStatus(status).value.split("_")
    return "Order" + "".join(word.capitalize() for word in words)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def order_snapshot(order: Order) -> Dict[str, Any]:
    """
    Self-contained JSON view of the order. Consumers must be able to act on an
    event without calling back into this service.
    """
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status.value,
        "total_amount": str(order.total_amount),
        "currency": order.currency,
        "idempotency_key": order.idempotency_key,
        "items": [
            {
                "product_id": item.product_id,
                "product_name": item.product_name,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
                "total_price": str(item.total_price),
            }
            for item in order.items
        ],
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
        "completed_at": _iso(order.completed_at),
        "cancelled_at": _iso(order.cancelled_at),
        "cancellation_reason": order.cancellation_reason,
    }


async def create_outbox_event(
    session: AsyncSession,
    aggregate_type: str,
    aggregate_id: Any,
    event_type: str,
    payload: Dict[str, Any],
    created_at: Optional[datetime] = None,
) -> OutboxEvent:
    """
    Creates a new Outbox event record using the provided session (transaction).

    CRITICAL: Passing the caller's session ensures the event is created atomically with the business data.
    """
    event = OutboxEvent(
        aggregate_type=aggregate_type,
        aggregate_id=str(aggregate_id),
        event_type=event_type,
        payload=payload,
        status=OutboxStatus.PENDING,
        retry_count=0,
    )
    if created_at is not None:
        event.created_at = created_at
    return await OutboxStore(session).save(event)


async def record_order_event(
    session: AsyncSession,
    order: Order,
    event_type: str,
    previous_status: Optional[OrderStatus] = None,
) -> OutboxEvent:
    payload = {
        "event_type": event_type,
        "occurred_at": _iso(order.updated_at),
        "previous_status": previous_status.value if previous_status else None,
        "order": order_snapshot(order),
    }
    return await create_outbox_event(
        session,
        aggregate_type=ORDER_AGGREGATE,
        aggregate_id=order.id,
        event_type=event_type,
        payload=payload,
        created_at=order.updated_at,
    )
