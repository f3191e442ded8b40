# ordering/models/__init__.py
from .order import Order, OrderItem, OrderStatus
from .outbox import OutboxEvent, OutboxStatus

# Export all models
__all__ = [
    "Order",
    "OrderItem",
    "OrderStatus",
    "OutboxEvent",
    "OutboxStatus",
]
