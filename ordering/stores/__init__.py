from .order_store import OrderStore
from .outbox_store import OutboxStore

__all__ = ["OrderStore", "OutboxStore"]
