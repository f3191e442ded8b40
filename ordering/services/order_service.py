import logging
from decimal import Decimal, InvalidOperation
from typing import Any, FrozenSet, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ordering.core.config import DEFAULT_CURRENCY, MAX_ORDER_ITEMS
from ordering.core.db import read_session, unit_of_work, utcnow
from ordering.core.exceptions import ConflictError, NotFound, ValidationError
from ordering.events.outbox_utility import ORDER_AGGREGATE, ORDER_CREATED, event_type_for, record_order_event
from ordering.models.order import Order, OrderItem, OrderStatus
from ordering.models.outbox import OutboxEvent
from ordering.services.state_machine import allowed_transitions, transition
from ordering.stores.order_store import OrderStore
from ordering.stores.outbox_store import OutboxStore

log = logging.getLogger("ordering.orders")

CENTS = Decimal("0.01")


def generate_order_number(order_id: UUID, now) -> str:
    return f"ORD-{now:%Y%m%d}-{order_id.hex[:8].upper()}"


def _to_money(value: Any, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a decimal amount, got {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite amount")
    return amount.quantize(CENTS)


def _validate_items(items: Sequence[Mapping[str, Any]], max_items: int) -> List[Tuple[str, str, int, Decimal]]:
    """Returns (product_id, product_name, quantity, unit_price) per line, or raises ValidationError."""
    if not items:
        raise ValidationError("Order must contain at least one item.")
    if len(items) > max_items:
        raise ValidationError(f"Order has {len(items)} items; at most {max_items} are allowed.")

    lines = []
    for position, item in enumerate(items, start=1):
        product_id = str(item.get("product_id") or "").strip()
        if not product_id:
            raise ValidationError(f"Item {position} is missing a product_id.")

        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"Item {position} ({product_id}) must have a positive integer quantity.")

        unit_price = _to_money(item.get("unit_price"), f"Item {position} unit_price")
        if unit_price < 0:
            raise ValidationError(f"Item {position} ({product_id}) has a negative unit_price.")

        product_name = str(item.get("product_name") or product_id)
        lines.append((product_id, product_name, quantity, unit_price))
    return lines


async def _find_by_token(token: str) -> Optional[Order]:
    async with read_session() as session:
        return await OrderStore(session).find_by_idempotency_token(token)


async def create_order(
    user_id: str,
    items: Sequence[Mapping[str, Any]],
    idempotency_token: Optional[str] = None,
    currency: Optional[str] = None,
    max_items: int = MAX_ORDER_ITEMS,
) -> Order:
    """
    Creates the Order and its OrderCreated OutboxEvent in one transaction.

    Submitting the same idempotency token again returns the order created the
    first time, without writing anything. Two concurrent submissions with the
    same token both pass the lookup; the loser fails the unique index on
    `idempotency_key` and returns the winner's order instead.
    """
    if idempotency_token is not None:
        if not idempotency_token.strip():
            raise ValidationError("Idempotency token must not be blank.")
        existing = await _find_by_token(idempotency_token)
        if existing is not None:
            log.info(f"Idempotency: token {idempotency_token} already used by order {existing.id}.")
            return existing

    if not user_id or not str(user_id).strip():
        raise ValidationError("user_id is required.")
    lines = _validate_items(items, max_items)

    now = utcnow()
    order_id = uuid4()
    order = Order(
        id=order_id,
        order_number=generate_order_number(order_id, now),
        user_id=str(user_id),
        status=OrderStatus.CREATED,
        currency=(currency or DEFAULT_CURRENCY).upper(),
        idempotency_key=idempotency_token,
        created_at=now,
        updated_at=now,
    )

    total = Decimal("0.00")
    for line_number, (product_id, product_name, quantity, unit_price) in enumerate(lines, start=1):
        line_total = (unit_price * quantity).quantize(CENTS)
        total += line_total
        order.items.append(
            OrderItem(
                line_number=line_number,
                product_id=product_id,
                product_name=product_name,
                quantity=quantity,
                unit_price=unit_price,
                total_price=line_total,
                created_at=now,
            )
        )
    order.total_amount = total

    try:
        async with unit_of_work() as session:
            await OrderStore(session).save(order)
            # ATOMIC EVENT: committed in the same transaction as the order rows
            await record_order_event(session, order, ORDER_CREATED)
    except IntegrityError:
        if idempotency_token is None:
            raise
        winner = await _find_by_token(idempotency_token)
        if winner is None:
            raise
        log.info(f"Idempotency: concurrent submission for token {idempotency_token} resolved to order {winner.id}.")
        return winner

    log.info(f"Order {order.order_number} ({order.id}) created for user {user_id}, total {total} {order.currency}.")
    return order


async def get_order(order_id: UUID) -> Order:
    async with read_session() as session:
        order = await OrderStore(session).find_by_id(order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    return order


async def get_order_by_number(order_number: str) -> Order:
    async with read_session() as session:
        order = await OrderStore(session).find_by_order_number(order_number)
    if order is None:
        raise NotFound(f"Order {order_number} not found")
    return order


async def get_order_events(order_id: UUID) -> List[OutboxEvent]:
    """The order's outbox history, oldest first, whatever its publish status."""
    await get_order(order_id)
    async with read_session() as session:
        return await OutboxStore(session).find_by_aggregate(ORDER_AGGREGATE, str(order_id))


async def list_orders(user_id: str, limit: int = 50) -> List[Order]:
    async with read_session() as session:
        return await OrderStore(session).list_by_user(user_id, limit=limit)


async def get_allowed_transitions(order_id: UUID) -> FrozenSet[OrderStatus]:
    order = await get_order(order_id)
    return allowed_transitions(order.status)


async def transition_status(order_id: UUID, new_status: OrderStatus, reason: Optional[str] = None) -> Order:
    """
    Moves the order along one edge of the transition table and records the
    matching Order<Status> event in the same transaction.

    Raises ValidationError for an unknown status, NotFound, InvalidTransition
    (nothing written) or ConflictError when another writer updated the order
    between our read and our write.
    """
    try:
        new_status = OrderStatus(new_status)
    except ValueError:
        raise ValidationError(f"Unknown order status: {new_status!r}")
    try:
        async with unit_of_work() as session:
            store = OrderStore(session)
            order = await store.find_by_id(order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")

            previous_status = order.status
            transition(order, new_status, reason=reason)
            await store.save(order)

            await record_order_event(session, order, event_type_for(new_status), previous_status)
    except StaleDataError as e:
        log.warning(f"Concurrent update detected on order {order_id} while moving to {new_status.value}.")
        raise ConflictError(f"Order {order_id} was modified concurrently; retry the request.") from e

    log.info(f"Order {order_id} moved from {previous_status.value} to {new_status.value}.")
    return order


async def cancel_order(order_id: UUID, reason: Optional[str] = "") -> Order:
    """Cancels the order, recording `reason` alongside the OrderCancelled event."""
    return await transition_status(order_id, OrderStatus.CANCELLED, reason=reason)
