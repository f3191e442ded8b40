from pydantic import BaseModel, Field
from typing import List, Optional
import uuid
from datetime import datetime
from decimal import Decimal

from ordering.models.order import Order, OrderStatus


class OrderItemRequest(BaseModel):
    """Schema for a single, already priced item in the order request."""
    product_id: str = Field(..., min_length=1, max_length=100)
    product_name: str = Field(..., min_length=1, max_length=255)
    quantity: int
    unit_price: Decimal


class OrderRequest(BaseModel):
    """Schema for the full order creation request body."""
    user_id: str = Field(..., min_length=1, max_length=100)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    items: List[OrderItemRequest]


class OrderStatusUpdate(BaseModel):
    """Schema for updating an order status."""
    status: OrderStatus
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: str = ""


class OrderItemResponse(BaseModel):
    """Schema for an item inside the detailed order response."""
    product_id: str
    product_name: str
    quantity: int
    unit_price: str  # Use string for Decimal type serialization
    total_price: str


class OrderDetailResponse(BaseModel):
    """Schema for detailed order information."""
    id: uuid.UUID
    order_number: str
    user_id: str
    status: OrderStatus
    total_amount: str
    currency: str
    total_items: int
    is_terminal: bool
    idempotency_key: Optional[str] = None
    items: List[OrderItemResponse]
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderDetailResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            status=order.status,
            total_amount=str(order.total_amount),
            currency=order.currency,
            total_items=order.total_items,
            is_terminal=order.is_terminal,
            idempotency_key=order.idempotency_key,
            items=[
                OrderItemResponse(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=str(item.unit_price),
                    total_price=str(item.total_price),
                )
                for item in order.items
            ],
            created_at=order.created_at,
            updated_at=order.updated_at,
            completed_at=order.completed_at,
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
        )


class TransitionsResponse(BaseModel):
    order_id: uuid.UUID
    allowed: List[OrderStatus]
