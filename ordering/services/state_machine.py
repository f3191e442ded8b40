"""
Order status transition table.

The table is plain data: a mapping from each status to the statuses it may
move to. `transition` is the only code path that changes `Order.status`.
"""
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional

from ordering.core.db import utcnow
from ordering.core.exceptions import InvalidTransition
from ordering.models.order import Order, OrderStatus

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.PAYMENT_PENDING, OrderStatus.CANCELLED}),
    OrderStatus.PAYMENT_PENDING: frozenset({OrderStatus.PAYMENT_CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.PAYMENT_CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


def allowed_transitions(status: OrderStatus) -> FrozenSet[OrderStatus]:
    return TRANSITIONS.get(OrderStatus(status), frozenset())


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in allowed_transitions(current)


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus(status) in TERMINAL_STATES


def next_timestamp(previous: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """Returns `now`, nudged forward if needed so timestamps never go backwards."""
    now = now or utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def transition(
    order: Order,
    target: OrderStatus,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Moves `order` to `target` in place.

    Raises InvalidTransition (leaving the order untouched) when the edge is not
    in TRANSITIONS. Entering COMPLETED stamps `completed_at`; entering CANCELLED
    stamps `cancelled_at` and records `reason` (None becomes an empty string).
    """
    target = OrderStatus(target)
    if not can_transition(order.status, target):
        raise InvalidTransition(order.status, target)

    stamp = next_timestamp(order.updated_at, now)
    order.status = target
    order.updated_at = stamp

    if target == OrderStatus.COMPLETED:
        order.completed_at = stamp
    elif target == OrderStatus.CANCELLED:
        order.cancelled_at = stamp
        order.cancellation_reason = reason or ""

    return order
